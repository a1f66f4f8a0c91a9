"""Unit tests verifying the business logic layer against an in-memory workbook."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from shop_tracker import constants, core_logic, data_manager

from conftest import make_product, seed_products


FIXED_NOW = datetime(2025, 1, 2, 9, 30, 0, tzinfo=UTC)


def _stock(context, product_id):
    return core_logic.find_by_id(context, product_id).stock_quantity


def _failing_save(*_args, **_kwargs):
    raise PermissionError("workbook is open in Excel")


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings, workbook and store."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "shop.xlsx",
        shop_name="Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_username="admin",
    )
    workbook = Mock(name="workbook")
    products = [make_product("A101", stock=4)]

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)
    validate_layout = Mock()
    load_collection = Mock(side_effect=lambda _wb, key: products if key == constants.CollectionKey.PRODUCTS else [])

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)
    monkeypatch.setattr(data_manager, "validate_layout", validate_layout)
    monkeypatch.setattr(data_manager, "load_collection", load_collection)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.workbook is workbook
    assert core_logic.list_products(context) == products
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)
    validate_layout.assert_called_once_with(workbook)
    assert load_collection.call_count == len(constants.CollectionKey)


def test_ensure_schema_version_rejects_mismatch(context):
    """Schema mismatches should surface a RuntimeError with clear messaging."""

    bad_settings = replace(context.settings, schema_version="0.9")
    bad_context = core_logic.RuntimeContext(settings=bad_settings, workbook=context.workbook)
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_persist_context_writes_workbook(stocked_context):
    assert core_logic.persist_context(stocked_context) is None
    assert stocked_context.settings.data_file.exists()
    saved = data_manager.open_workbook(stocked_context.settings.data_file)
    assert len(data_manager.load_collection(saved, constants.CollectionKey.PRODUCTS)) == 3


def test_persist_context_returns_failure_on_os_error(monkeypatch, stocked_context):
    monkeypatch.setattr(data_manager, "save_workbook", _failing_save)

    failure = core_logic.persist_context(stocked_context, constants.CollectionKey.PRODUCTS)

    assert isinstance(failure, core_logic.PersistenceFailure)
    assert "workbook is open in Excel" in str(failure)


def test_operation_result_unwrap():
    assert core_logic.OperationResult(value=3).unwrap() == 3
    error = core_logic.InvalidInput("bad")
    result = core_logic.OperationResult(error=error)
    assert not result.ok
    with pytest.raises(core_logic.InvalidInput):
        result.unwrap()


def test_generate_transaction_id_uses_sortable_timestamp():
    assert core_logic.generate_transaction_id(prefix="S", when=FIXED_NOW) == "S20250102093000000000"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("role", "capability", "expected"),
    [
        (constants.Role.SHOPKEEPER, constants.Capability.MANAGE_INVENTORY, True),
        (constants.Role.SHOPKEEPER, constants.Capability.VIEW_REPORTS, True),
        (constants.Role.STAFF, constants.Capability.RECORD_SALES, True),
        (constants.Role.STAFF, constants.Capability.RECORD_PURCHASES, False),
        (constants.Role.STAFF, constants.Capability.VIEW_REPORTS, False),
        ("GUEST", constants.Capability.RECORD_SALES, False),
        (None, constants.Capability.RECORD_SALES, False),
    ],
)
def test_has_capability(role, capability, expected):
    actor = SimpleNamespace(username="someone", role=role)
    assert core_logic.has_capability(actor, capability) is expected


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------


def test_find_by_id_and_name_ignore_case(stocked_context):
    assert core_logic.find_by_id(stocked_context, "a101").product_id == "A101"
    assert core_logic.find_by_name(stocked_context, "COLA 330ML").product_id == "A101"
    assert core_logic.find_by_id(stocked_context, "Z999") is None
    assert core_logic.find_by_name(stocked_context, "Nothing") is None


def test_upsert_new_product_applies_opening_stock(context, shopkeeper):
    product = make_product("C300", name="Green Tea", cost="1.20", sell="2.50", stock=12)

    result = core_logic.upsert_product(context, shopkeeper, product, is_new=True)

    assert result.ok
    assert result.warning is None
    assert result.value.stock_quantity == 12
    assert _stock(context, "c300") == 12
    assert context.settings.data_file.exists()


def test_upsert_new_product_rejects_duplicate_id(stocked_context, shopkeeper):
    result = core_logic.upsert_product(
        stocked_context, shopkeeper, make_product("a101", name="Other"), is_new=True
    )
    assert isinstance(result.error, core_logic.DuplicateId)
    assert core_logic.find_by_id(stocked_context, "A101").name == "Cola 330ml"


def test_upsert_rejects_name_held_by_other_product(stocked_context, shopkeeper):
    result = core_logic.upsert_product(
        stocked_context, shopkeeper, make_product("C300", name="chocolate bar"), is_new=True
    )
    assert isinstance(result.error, core_logic.DuplicateName)
    assert core_logic.find_by_id(stocked_context, "C300") is None


def test_update_product_keeps_stock_and_own_name(stocked_context, shopkeeper):
    current = core_logic.find_by_id(stocked_context, "A101")
    desired = replace(current, selling_price=Decimal("11.00"), stock_quantity=999)

    result = core_logic.upsert_product(stocked_context, shopkeeper, desired, is_new=False)

    assert result.ok
    stored = core_logic.find_by_id(stocked_context, "A101")
    assert stored.selling_price == Decimal("11.00")
    assert stored.stock_quantity == 10


def test_update_unknown_product_fails(context, shopkeeper):
    result = core_logic.upsert_product(context, shopkeeper, make_product("Z999"), is_new=False)
    assert isinstance(result.error, core_logic.ProductNotFound)


@pytest.mark.parametrize(
    "product",
    [
        make_product("C300", cost="-1.00"),
        make_product("C300", sell="-0.01"),
        make_product("C300", name="   "),
        make_product("C300", category=""),
        make_product("C300", stock=-5),
    ],
)
def test_upsert_rejects_invalid_fields(context, shopkeeper, product):
    result = core_logic.upsert_product(context, shopkeeper, product, is_new=True)
    assert isinstance(result.error, core_logic.InvalidInput)
    assert core_logic.list_products(context) == []


def test_upsert_requires_management_role(context, staff):
    result = core_logic.upsert_product(context, staff, make_product("C300"), is_new=True)
    assert isinstance(result.error, core_logic.AccessDenied)
    assert core_logic.list_products(context) == []


def test_apply_stock_delta_moves_stock_without_persisting(monkeypatch, stocked_context):
    save = Mock()
    monkeypatch.setattr(data_manager, "save_workbook", save)

    result = core_logic.apply_stock_delta(stocked_context, "b200", 4)

    assert result.value == 7
    assert _stock(stocked_context, "B200") == 7
    save.assert_not_called()


def test_apply_stock_delta_rejects_overdraw(stocked_context):
    result = core_logic.apply_stock_delta(stocked_context, "B200", -4)

    assert isinstance(result.error, core_logic.InsufficientStock)
    assert result.error.available == 3
    assert result.error.requested == 4
    assert _stock(stocked_context, "B200") == 3


def test_apply_stock_delta_unknown_product(stocked_context):
    result = core_logic.apply_stock_delta(stocked_context, "Z999", 1)
    assert isinstance(result.error, core_logic.ProductNotFound)
    assert result.error.product_id == "Z999"


def test_remove_product_with_stock_fails(stocked_context, shopkeeper):
    result = core_logic.remove_product(stocked_context, shopkeeper, "A101")
    assert isinstance(result.error, core_logic.StockRemaining)
    assert core_logic.find_by_id(stocked_context, "A101") is not None


def test_remove_product_without_stock(context, shopkeeper):
    seed_products(context, make_product("C300", stock=0))

    result = core_logic.remove_product(context, shopkeeper, "c300")

    assert result.value.product_id == "C300"
    assert core_logic.find_by_id(context, "C300") is None


def test_remove_product_requires_management_role(context, staff):
    seed_products(context, make_product("C300", stock=0))
    result = core_logic.remove_product(context, staff, "C300")
    assert isinstance(result.error, core_logic.AccessDenied)


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def test_record_sale_commits_lines_and_snapshots_prices(stocked_context, shopkeeper, set_fixed_datetime):
    set_fixed_datetime(FIXED_NOW)

    result = core_logic.record_sale(
        stocked_context,
        shopkeeper,
        [("A101", 2), ("A102", 3), ("a101", 1)],
        "Cash",
    )

    assert result.ok
    sale = result.value
    assert _stock(stocked_context, "A101") == 7
    assert _stock(stocked_context, "A102") == 47
    assert [(line.product_id, line.quantity) for line in sale.lines] == [("A101", 2), ("A102", 3), ("A101", 1)]
    assert sale.lines[1].unit_selling_price == Decimal("12.50")
    assert sale.lines[1].unit_cost_price == Decimal("5.00")
    assert sale.total_revenue == Decimal("67.50")
    assert sale.total_cost == Decimal("30.00")
    assert sale.timestamp == FIXED_NOW
    assert sale.recorded_by == "admin"
    assert sale.transaction_id == "S20250102093000000000"
    assert core_logic.list_sales(stocked_context) == [sale]


def test_record_sale_rejects_aggregated_overdraw(stocked_context, shopkeeper):
    """Two lines of 6 against 10 units must fail as a request for 12."""

    result = core_logic.record_sale(stocked_context, shopkeeper, [("A101", 6), ("A101", 6)], "Cash")

    assert isinstance(result.error, core_logic.InsufficientStock)
    assert result.error.product_id == "A101"
    assert result.error.available == 10
    assert result.error.requested == 12
    assert _stock(stocked_context, "A101") == 10
    assert core_logic.list_sales(stocked_context) == []


def test_record_sale_is_all_or_nothing(stocked_context, shopkeeper):
    before = {product.product_id: product.stock_quantity for product in core_logic.list_products(stocked_context)}

    result = core_logic.record_sale(stocked_context, shopkeeper, [("A101", 2), ("B200", 4)], "Cash")

    assert isinstance(result.error, core_logic.InsufficientStock)
    after = {product.product_id: product.stock_quantity for product in core_logic.list_products(stocked_context)}
    assert after == before
    assert core_logic.list_sales(stocked_context) == []


def test_record_sale_unknown_product(stocked_context, shopkeeper):
    result = core_logic.record_sale(stocked_context, shopkeeper, [("A101", 1), ("Z999", 1)], "Cash")
    assert isinstance(result.error, core_logic.ProductNotFound)
    assert result.error.product_id == "Z999"
    assert _stock(stocked_context, "A101") == 10


@pytest.mark.parametrize(
    ("lines", "payment_method"),
    [
        ([], "Cash"),
        ([("A101", 0)], "Cash"),
        ([("A101", -2)], "Cash"),
        ([("A101", 1.5)], "Cash"),
        ([("A101", 1)], "  "),
    ],
)
def test_record_sale_rejects_invalid_input(stocked_context, shopkeeper, lines, payment_method):
    result = core_logic.record_sale(stocked_context, shopkeeper, lines, payment_method)
    assert isinstance(result.error, core_logic.InvalidInput)
    assert _stock(stocked_context, "A101") == 10


def test_record_sale_allowed_for_staff(stocked_context, staff):
    result = core_logic.record_sale(
        stocked_context, staff, [core_logic.SaleLineRequest("B200", 1)], "Card"
    )
    assert result.ok
    assert result.value.recorded_by == "sam"
    assert _stock(stocked_context, "B200") == 2


def test_record_sale_denied_for_unknown_role(stocked_context):
    intruder = SimpleNamespace(username="guest", role="GUEST")

    result = core_logic.record_sale(stocked_context, intruder, [("A101", 1)], "Cash")

    assert isinstance(result.error, core_logic.AccessDenied)
    assert _stock(stocked_context, "A101") == 10
    assert core_logic.list_sales(stocked_context) == []


def test_sale_prices_are_not_rewritten_by_later_price_changes(stocked_context, shopkeeper):
    sale = core_logic.record_sale(stocked_context, shopkeeper, [("A101", 1)], "Cash").unwrap()
    current = core_logic.find_by_id(stocked_context, "A101")

    core_logic.upsert_product(stocked_context, shopkeeper, replace(current, selling_price=Decimal("99.00")), is_new=False)

    assert core_logic.list_sales(stocked_context)[0].lines[0].unit_selling_price == Decimal("10.00")
    assert sale.total_revenue == Decimal("10.00")


def test_record_sale_generates_distinct_ids_for_same_instant(stocked_context, shopkeeper, set_fixed_datetime):
    set_fixed_datetime(FIXED_NOW)

    first = core_logic.record_sale(stocked_context, shopkeeper, [("A101", 1)], "Cash").unwrap()
    second = core_logic.record_sale(stocked_context, shopkeeper, [("A101", 1)], "Cash").unwrap()

    assert first.transaction_id != second.transaction_id
    assert second.transaction_id.startswith(first.transaction_id)


def test_record_sale_keeps_mutation_when_save_fails(monkeypatch, stocked_context, shopkeeper):
    monkeypatch.setattr(data_manager, "save_workbook", _failing_save)

    result = core_logic.record_sale(stocked_context, shopkeeper, [("A101", 4)], "Cash")

    assert result.ok
    assert isinstance(result.warning, core_logic.PersistenceFailure)
    assert _stock(stocked_context, "A101") == 6
    assert len(core_logic.list_sales(stocked_context)) == 1


def test_record_sale_persists_products_and_sales(stocked_context, shopkeeper):
    core_logic.record_sale(stocked_context, shopkeeper, [("A101", 4)], "Cash").unwrap()

    saved = data_manager.open_workbook(stocked_context.settings.data_file)
    products = {row.product_id: row for row in data_manager.load_collection(saved, constants.CollectionKey.PRODUCTS)}
    (sale,) = data_manager.load_collection(saved, constants.CollectionKey.SALES)
    assert products["A101"].stock_quantity == 6
    assert sale.total_revenue == Decimal("40")


def test_aggregate_demand_sums_case_insensitively():
    requests = [
        core_logic.SaleLineRequest("A101", 2),
        core_logic.SaleLineRequest("B200", 1),
        core_logic.SaleLineRequest("a101", 3),
    ]
    assert core_logic.aggregate_demand(requests) == {"a101": 5, "b200": 1}


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


def test_record_purchase_restocks_and_updates_cost(stocked_context, shopkeeper, set_fixed_datetime):
    set_fixed_datetime(FIXED_NOW)

    result = core_logic.record_purchase(stocked_context, shopkeeper, "A102", 20, Decimal("6.00"), "Wholesale Ltd")

    assert result.ok
    product = core_logic.find_by_id(stocked_context, "A102")
    assert product.stock_quantity == 70
    assert product.cost_price == Decimal("6.00")
    assert product.selling_price == Decimal("12.50")
    purchase = result.value
    assert purchase.purchase_date == date(2025, 1, 2)
    assert purchase.supplier_name == "Wholesale Ltd"
    assert core_logic.list_purchases(stocked_context) == [purchase]


def test_record_purchase_accepts_explicit_date(stocked_context, shopkeeper):
    result = core_logic.record_purchase(
        stocked_context, shopkeeper, "a102", 1, "6.00", "Wholesale Ltd", purchase_date=date(2024, 12, 31)
    )
    assert result.value.purchase_date == date(2024, 12, 31)
    assert result.value.product_id == "A102"


@pytest.mark.parametrize(("quantity", "cost"), [(0, "6.00"), (-3, "6.00"), (5, "0"), (5, "-1"), (5, "abc")])
def test_record_purchase_rejects_invalid_input(stocked_context, shopkeeper, quantity, cost):
    result = core_logic.record_purchase(stocked_context, shopkeeper, "A102", quantity, cost, "Supplier")
    assert isinstance(result.error, core_logic.InvalidInput)
    assert _stock(stocked_context, "A102") == 50
    assert core_logic.list_purchases(stocked_context) == []


def test_record_purchase_unknown_product(stocked_context, shopkeeper):
    result = core_logic.record_purchase(stocked_context, shopkeeper, "Z999", 5, "1.00", "Supplier")
    assert isinstance(result.error, core_logic.ProductNotFound)
    assert core_logic.find_by_id(stocked_context, "Z999") is None


def test_record_purchase_requires_management_role(stocked_context, staff):
    result = core_logic.record_purchase(stocked_context, staff, "A102", 5, "6.00", "Supplier")
    assert isinstance(result.error, core_logic.AccessDenied)
    assert _stock(stocked_context, "A102") == 50


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def test_resolve_actor_maps_seed_user(runtime_context):
    actor = core_logic.resolve_actor(runtime_context, "ADMIN")
    assert actor == core_logic.Actor(username="admin", role=constants.Role.SHOPKEEPER)


def test_resolve_actor_unknown_user(runtime_context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.resolve_actor(runtime_context, "nobody")


def test_resolve_actor_inactive_user(runtime_context, shopkeeper):
    core_logic.add_user(runtime_context, shopkeeper, "old", "Old Hand", "STAFF", is_active=False).unwrap()
    with pytest.raises(core_logic.AccessDenied):
        core_logic.resolve_actor(runtime_context, "old")


def test_add_user_registers_staff(runtime_context, shopkeeper):
    result = core_logic.add_user(runtime_context, shopkeeper, "sam", "Sam", constants.Role.STAFF)

    assert result.value == data_manager.UserRow("sam", "Sam", "STAFF", True)
    assert core_logic.resolve_actor(runtime_context, "sam").role is constants.Role.STAFF
    assert [user.username for user in core_logic.list_users(runtime_context)] == ["admin", "sam"]


def test_add_user_rejects_duplicate_username(runtime_context, shopkeeper):
    result = core_logic.add_user(runtime_context, shopkeeper, "Admin", "Another", "STAFF")
    assert isinstance(result.error, core_logic.DuplicateId)


def test_add_user_rejects_unknown_role(runtime_context, shopkeeper):
    result = core_logic.add_user(runtime_context, shopkeeper, "sam", "Sam", "MANAGER")
    assert isinstance(result.error, core_logic.InvalidInput)


def test_add_user_requires_management_role(runtime_context, staff):
    result = core_logic.add_user(runtime_context, staff, "eve", "Eve", "STAFF")
    assert isinstance(result.error, core_logic.AccessDenied)


def test_list_users_hides_inactive_unless_asked(runtime_context, shopkeeper):
    core_logic.add_user(runtime_context, shopkeeper, "old", "Old Hand", "STAFF", is_active=False).unwrap()

    assert [user.username for user in core_logic.list_users(runtime_context)] == ["admin"]
    everyone = core_logic.list_users(runtime_context, include_inactive=True)
    assert [user.username for user in everyone] == ["admin", "old"]


def test_update_user_changes_only_given_fields(runtime_context, shopkeeper):
    core_logic.add_user(runtime_context, shopkeeper, "sam", "Sam", "STAFF").unwrap()

    result = core_logic.update_user(runtime_context, shopkeeper, "SAM", role="shopkeeper")

    assert result.warning is None
    assert result.value == data_manager.UserRow("sam", "Sam", "SHOPKEEPER", True)
    reloaded = core_logic.refresh_context(runtime_context)
    assert core_logic.get_user(reloaded, "sam").role == "SHOPKEEPER"


def test_update_user_deactivation_blocks_login(runtime_context, shopkeeper):
    core_logic.add_user(runtime_context, shopkeeper, "sam", "Sam", "STAFF").unwrap()

    core_logic.update_user(runtime_context, shopkeeper, "sam", is_active=False).unwrap()

    with pytest.raises(core_logic.AccessDenied):
        core_logic.resolve_actor(runtime_context, "sam")
    core_logic.update_user(runtime_context, shopkeeper, "sam", is_active=True).unwrap()
    assert core_logic.resolve_actor(runtime_context, "sam").role is constants.Role.STAFF


@pytest.mark.parametrize(
    ("changes", "error"),
    [
        ({"role": "MANAGER"}, core_logic.InvalidInput),
        ({"display_name": "   "}, core_logic.InvalidInput),
    ],
)
def test_update_user_rejects_invalid_fields(runtime_context, shopkeeper, changes, error):
    core_logic.add_user(runtime_context, shopkeeper, "sam", "Sam", "STAFF").unwrap()

    result = core_logic.update_user(runtime_context, shopkeeper, "sam", **changes)

    assert isinstance(result.error, error)
    assert core_logic.get_user(runtime_context, "sam") == data_manager.UserRow("sam", "Sam", "STAFF", True)


def test_update_user_refuses_own_account(runtime_context, shopkeeper):
    result = core_logic.update_user(runtime_context, shopkeeper, "Admin", is_active=False)

    assert isinstance(result.error, core_logic.AccessDenied)
    assert core_logic.get_user(runtime_context, "admin").is_active is True


def test_update_unknown_user_fails(runtime_context, shopkeeper):
    result = core_logic.update_user(runtime_context, shopkeeper, "ghost", display_name="Ghost")
    assert isinstance(result.error, core_logic.MissingReferenceError)


def test_remove_user_deletes_other_account(runtime_context, shopkeeper):
    core_logic.add_user(runtime_context, shopkeeper, "sam", "Sam", "STAFF").unwrap()

    removed = core_logic.remove_user(runtime_context, shopkeeper, "Sam").unwrap()

    assert removed.username == "sam"
    reloaded = core_logic.refresh_context(runtime_context)
    assert [user.username for user in core_logic.list_users(reloaded, include_inactive=True)] == ["admin"]


def test_remove_user_refuses_own_account(runtime_context, shopkeeper):
    result = core_logic.remove_user(runtime_context, shopkeeper, "admin")

    assert isinstance(result.error, core_logic.AccessDenied)
    assert core_logic.get_user(runtime_context, "admin").username == "admin"


@pytest.mark.parametrize("operation", ["update", "remove"])
def test_user_maintenance_requires_management_role(runtime_context, shopkeeper, staff, operation):
    core_logic.add_user(runtime_context, shopkeeper, "eve", "Eve", "STAFF").unwrap()

    if operation == "update":
        result = core_logic.update_user(runtime_context, staff, "eve", is_active=False)
    else:
        result = core_logic.remove_user(runtime_context, staff, "eve")

    assert isinstance(result.error, core_logic.AccessDenied)
    assert core_logic.get_user(runtime_context, "eve").is_active is True
