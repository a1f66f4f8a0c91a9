"""Business logic layer for Shop Tracker.

This module owns the in-memory stock ledger and the rules that mutate it:
product maintenance, the two-phase sale coordinator and the purchase
recorder. It consumes the Data Access Layer (DAL) for all I/O. The store is
hydrated once when the runtime context is loaded and written back after every
successful mutation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, ROLE_CAPABILITIES, Capability, CollectionKey, Role
from .data_manager import ProductRow, PurchaseRow, SaleLineRow, SalesTransactionRow, UserRow


T = TypeVar("T")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, user, or record is unknown."""


class AccessDenied(BusinessRuleViolation):
    """Raised when the actor's role does not grant the requested capability."""


class ProductNotFound(MissingReferenceError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product ID {product_id} not found")
        self.product_id = product_id


class DuplicateId(BusinessRuleViolation):
    """Raised when a new record reuses an identifier already in the store."""


class DuplicateName(BusinessRuleViolation):
    """Raised when a product name is already held by a different product."""


class InsufficientStock(BusinessRuleViolation):
    def __init__(self, product_id: str, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for {product_id}: available {available}, requested {requested}"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class InvalidInput(BusinessRuleViolation, ValueError):
    """Raised for non-positive quantities or prices and malformed arguments."""


class StockRemaining(BusinessRuleViolation):
    """Raised when removing a product that still has units on hand."""


class PersistenceFailure(Exception):
    """Describes a failed workbook write after an in-memory mutation stood.

    Never raised by the public operations; it is returned as the warning of
    an :class:`OperationResult` so callers can prompt for a retry.
    """


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of a public operation: a value, an error, or a value plus warning."""

    value: Optional[T] = None
    error: Optional[BusinessRuleViolation] = None
    warning: Optional[PersistenceFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass(frozen=True)
class Actor:
    """Authenticated caller handed to every guarded operation."""

    username: str
    role: Role


@dataclass(frozen=True)
class SaleLineRequest:
    """One requested product/quantity pair of a sale."""

    product_id: str
    quantity: int


SaleLineInput = Union[SaleLineRequest, Tuple[str, int]]


@dataclass
class ShopStore:
    """Authoritative in-memory state hydrated from the workbook.

    Products and users are keyed by their case-folded identifier so lookups
    are case-insensitive while the stored rows keep the spelling they were
    entered with.
    """

    products: Dict[str, ProductRow] = field(default_factory=dict)
    sales: List[SalesTransactionRow] = field(default_factory=list)
    purchases: List[PurchaseRow] = field(default_factory=list)
    users: Dict[str, UserRow] = field(default_factory=dict)


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the workbook and the hydrated store."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: ShopStore = field(default_factory=ShopStore, repr=False, compare=False)


def _key(identifier: str) -> str:
    return str(identifier).strip().casefold()


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def _actor_name(actor: Any) -> str:
    return str(getattr(actor, "username", "") or "unknown")


def hydrate_store(workbook: Workbook) -> ShopStore:
    """Load every collection from ``workbook`` into a fresh :class:`ShopStore`."""

    products = data_manager.load_collection(workbook, CollectionKey.PRODUCTS)
    users = data_manager.load_collection(workbook, CollectionKey.USERS)
    store = ShopStore(
        products={_key(product.product_id): product for product in products},
        sales=data_manager.load_collection(workbook, CollectionKey.SALES),
        purchases=data_manager.load_collection(workbook, CollectionKey.PURCHASES),
        users={_key(user.username): user for user in users},
    )
    log.debug(
        "Hydrated store with %d products, %d sales, %d purchases, %d users",
        len(store.products),
        len(store.sales),
        len(store.purchases),
        len(store.users),
    )
    return store


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings, the workbook and the in-memory store.

    The helper forms the foundation for all business logic calls by resolving
    ``config.ini``, parsing settings, opening the workbook, validating its
    sheet layout and hydrating the store exactly once.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or sheets are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    data_manager.validate_layout(workbook)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook, store=hydrate_store(workbook))


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext, *keys: CollectionKey) -> Optional[PersistenceFailure]:
    """Write the named collections (all when none given) and save the workbook.

    Args:
        context (RuntimeContext): Runtime context whose store should be
            written back.
        *keys (CollectionKey): Collections touched by the caller's mutation.

    Returns:
        PersistenceFailure | None: ``None`` on success. When the workbook
            cannot be written the failure is logged and returned; the
            in-memory store keeps the mutation.
    """
    targets = keys or tuple(CollectionKey)
    store = context.store
    collections = {
        CollectionKey.PRODUCTS: list(store.products.values()),
        CollectionKey.SALES: list(store.sales),
        CollectionKey.PURCHASES: list(store.purchases),
        CollectionKey.USERS: list(store.users.values()),
    }
    try:
        for key in targets:
            data_manager.save_collection(context.workbook, key, collections[key])
        data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    except OSError as exc:
        log.error("Failed to persist workbook '%s': %s", context.settings.data_file, exc)
        return PersistenceFailure(
            f"Changes are kept in memory but could not be saved to "
            f"'{context.settings.data_file}': {exc}"
        )
    log.info(
        "Persisted %s to workbook '%s'",
        ", ".join(key.value for key in targets),
        context.settings.data_file,
    )
    return None


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook and store from disk, discarding unsaved modifications.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, store=hydrate_store(workbook))


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


def has_capability(actor: Any, capability: Capability) -> bool:
    """Return whether ``actor``'s role claim grants ``capability``.

    Any object exposing a ``role`` attribute is accepted; unknown or missing
    roles grant nothing.
    """
    try:
        role = Role(getattr(actor, "role", None))
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def require_capability(actor: Any, capability: Capability) -> None:
    if not has_capability(actor, capability):
        log.warning(
            "Access denied for '%s' (role=%s) on %s",
            _actor_name(actor),
            getattr(actor, "role", None),
            capability.value,
        )
        raise AccessDenied(f"Access denied: {capability.value} is not permitted for this user")


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: Any) -> int:
    """Validate that a quantity is a strictly positive whole number.

    Raises:
        InvalidInput: If ``quantity`` is not an ``int`` or is zero or negative.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise InvalidInput("Quantity must be a whole number greater than zero")
    return quantity


def to_money(amount: Any) -> Decimal:
    """Coerce ``amount`` into a :class:`~decimal.Decimal`.

    Raises:
        InvalidInput: If the value is not a finite number.
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInput(f"Invalid monetary value: {amount!r}") from exc
    if not value.is_finite():
        raise InvalidInput(f"Invalid monetary value: {amount!r}")
    return value


def require_positive_money(amount: Any) -> Decimal:
    value = to_money(amount)
    if value <= Decimal("0"):
        log.error("Monetary value validation failed: %s", value)
        raise InvalidInput("Amount must be greater than zero")
    return value


def require_nonnegative_money(amount: Any) -> Decimal:
    value = to_money(amount)
    if value < Decimal("0"):
        log.error("Monetary value validation failed: %s", value)
        raise InvalidInput("Amount must be zero or positive")
    return value


def require_text(value: Any, label: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise InvalidInput(f"{label} is required")
    return text


def generate_transaction_id(*, prefix: str = "S", when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``."""
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def _unique_id(prefix: str, when: datetime, taken: Iterable[str]) -> str:
    # identical timestamps only happen with caller-supplied times
    existing = set(taken)
    base = generate_transaction_id(prefix=prefix, when=when)
    candidate, counter = base, 1
    while candidate in existing:
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------


def find_by_id(context: RuntimeContext, product_id: str) -> Optional[ProductRow]:
    """Return the product whose id matches ``product_id`` ignoring case."""
    return context.store.products.get(_key(product_id))


def find_by_name(context: RuntimeContext, name: str) -> Optional[ProductRow]:
    """Return the product whose name matches ``name`` ignoring case."""
    wanted = _key(name)
    for product in context.store.products.values():
        if _key(product.name) == wanted:
            return product
    return None


def list_products(context: RuntimeContext) -> List[ProductRow]:
    """Return a snapshot copy of every product in the ledger."""
    return list(context.store.products.values())


def get_product(context: RuntimeContext, product_id: str) -> ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        ProductNotFound: If ``product_id`` is absent from the ledger.
    """
    product = find_by_id(context, product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise ProductNotFound(product_id)
    return product


def _apply_stock_delta(context: RuntimeContext, product_id: str, delta: int) -> int:
    product = get_product(context, product_id)
    new_quantity = product.stock_quantity + delta
    if delta < 0 and new_quantity < 0:
        raise InsufficientStock(product.product_id, product.stock_quantity, -delta)
    context.store.products[_key(product.product_id)] = replace(product, stock_quantity=new_quantity)
    log.debug("Stock for '%s' moved %+d to %d", product.product_id, delta, new_quantity)
    return new_quantity


def apply_stock_delta(context: RuntimeContext, product_id: str, delta: int) -> OperationResult[int]:
    """Apply a signed stock change; the single gate for stock mutation.

    The change only touches the in-memory ledger. Callers persist once their
    whole operation has been applied.

    Args:
        context (RuntimeContext): Runtime context holding the ledger.
        product_id (str): Case-insensitive product identifier.
        delta (int): Positive for receipts, negative for depletion.

    Returns:
        OperationResult[int]: The new stock quantity, or ``ProductNotFound``
            / ``InsufficientStock`` when the change is rejected.
    """
    try:
        return OperationResult(value=_apply_stock_delta(context, product_id, delta))
    except BusinessRuleViolation as exc:
        log.warning("Stock change rejected for '%s': %s", product_id, exc)
        return OperationResult(error=exc)


def _upsert_product(context: RuntimeContext, actor: Any, product: ProductRow, is_new: bool) -> ProductRow:
    require_capability(actor, Capability.MANAGE_INVENTORY)
    product_id = require_text(product.product_id, "Product ID")
    name = require_text(product.name, "Product name")
    category = require_text(product.category, "Category")
    cost_price = require_nonnegative_money(product.cost_price)
    selling_price = require_nonnegative_money(product.selling_price)
    opening_stock = product.stock_quantity
    if is_new and (not isinstance(opening_stock, int) or opening_stock < 0):
        raise InvalidInput("Opening stock must be zero or a positive whole number")

    key = _key(product_id)
    holder = find_by_name(context, name)
    if holder is not None and _key(holder.product_id) != key:
        raise DuplicateName(f"Product name '{name}' is already used by {holder.product_id}")

    existing = context.store.products.get(key)
    if is_new:
        if existing is not None:
            raise DuplicateId(f"Product ID {existing.product_id} already exists")
        context.store.products[key] = ProductRow(
            product_id=product_id,
            name=name,
            category=category,
            cost_price=cost_price,
            selling_price=selling_price,
            stock_quantity=0,
        )
        if opening_stock:
            _apply_stock_delta(context, product_id, opening_stock)
    else:
        if existing is None:
            raise ProductNotFound(product_id)
        context.store.products[key] = replace(
            existing,
            name=name,
            category=category,
            cost_price=cost_price,
            selling_price=selling_price,
        )
    return context.store.products[key]


def upsert_product(
    context: RuntimeContext,
    actor: Any,
    product: ProductRow,
    *,
    is_new: bool,
) -> OperationResult[ProductRow]:
    """Insert a new product or update the mutable fields of an existing one.

    Names must stay unique ignoring case; a product may keep its own name on
    update. Updates merge name, category and prices but never stock. A new
    product's ``stock_quantity`` is treated as opening stock and applied
    through :func:`apply_stock_delta` after the product is created with zero
    units.

    Args:
        context (RuntimeContext): Runtime context holding the ledger.
        actor: Caller whose role must grant inventory management.
        product (ProductRow): Desired product state.
        is_new (bool): ``True`` to insert, ``False`` to update.

    Returns:
        OperationResult[ProductRow]: The stored product, or one of
            ``AccessDenied``, ``InvalidInput``, ``DuplicateName``,
            ``DuplicateId`` or ``ProductNotFound``. A failed save is carried
            as the warning.
    """
    try:
        stored = _upsert_product(context, actor, product, is_new)
    except BusinessRuleViolation as exc:
        log.warning("Product save rejected for '%s': %s", product.product_id, exc)
        return OperationResult(error=exc)

    log.info(
        "%s product '%s' (%s)",
        "Added" if is_new else "Updated",
        stored.product_id,
        stored.name,
    )
    return OperationResult(value=stored, warning=persist_context(context, CollectionKey.PRODUCTS))


def remove_product(context: RuntimeContext, actor: Any, product_id: str) -> OperationResult[ProductRow]:
    """Delete a product that has no units left on hand.

    Returns:
        OperationResult[ProductRow]: The removed product, or
            ``AccessDenied``, ``ProductNotFound`` or ``StockRemaining``.
    """
    try:
        require_capability(actor, Capability.MANAGE_INVENTORY)
        product = get_product(context, product_id)
        if product.stock_quantity > 0:
            raise StockRemaining(
                f"Cannot remove {product.product_id}: {product.stock_quantity} units in stock"
            )
    except BusinessRuleViolation as exc:
        log.warning("Product removal rejected for '%s': %s", product_id, exc)
        return OperationResult(error=exc)

    del context.store.products[_key(product.product_id)]
    log.info("Removed product '%s'", product.product_id)
    return OperationResult(value=product, warning=persist_context(context, CollectionKey.PRODUCTS))


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def _normalize_lines(lines: Sequence[SaleLineInput]) -> List[SaleLineRequest]:
    requests: List[SaleLineRequest] = []
    for line in lines:
        if isinstance(line, SaleLineRequest):
            requests.append(line)
            continue
        try:
            product_id, quantity = line
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"Malformed sale line: {line!r}") from exc
        requests.append(SaleLineRequest(product_id=str(product_id), quantity=quantity))

    if not requests:
        raise InvalidInput("A sale needs at least one line item")
    for request in requests:
        require_text(request.product_id, "Product ID")
        require_positive_quantity(request.quantity)
    return requests


def aggregate_demand(requests: Iterable[SaleLineRequest]) -> Dict[str, int]:
    """Sum requested quantities per distinct product, ignoring id case.

    Keys are case-folded ids in first-seen order.
    """
    demand: Dict[str, int] = {}
    for request in requests:
        key = _key(request.product_id)
        demand[key] = demand.get(key, 0) + request.quantity
    return demand


def _validate_demand(context: RuntimeContext, requests: Sequence[SaleLineRequest], demand: Dict[str, int]) -> None:
    spelled = {}
    for request in requests:
        spelled.setdefault(_key(request.product_id), request.product_id)

    for key, requested in demand.items():
        product = context.store.products.get(key)
        if product is None:
            raise ProductNotFound(spelled[key])
        if requested > product.stock_quantity:
            raise InsufficientStock(product.product_id, product.stock_quantity, requested)


def _commit_lines(context: RuntimeContext, requests: Sequence[SaleLineRequest], demand: Dict[str, int]) -> Tuple[SaleLineRow, ...]:
    snapshot = {key: context.store.products[key] for key in demand}
    committed: List[SaleLineRow] = []
    try:
        for request in requests:
            _apply_stock_delta(context, request.product_id, -request.quantity)
            product = context.store.products[_key(request.product_id)]
            committed.append(
                SaleLineRow(
                    product_id=product.product_id,
                    quantity=request.quantity,
                    unit_selling_price=product.selling_price,
                    unit_cost_price=product.cost_price,
                )
            )
    except BusinessRuleViolation:
        context.store.products.update(snapshot)
        log.error("Sale commit failed after validation; restored %d products", len(snapshot))
        raise
    return tuple(committed)


def record_sale(
    context: RuntimeContext,
    actor: Any,
    lines: Sequence[SaleLineInput],
    payment_method: str,
    *,
    timestamp: Optional[datetime] = None,
) -> OperationResult[SalesTransactionRow]:
    """Validate and commit a multi-line sale against the stock ledger.

    The sale runs in two phases. First the requested quantities are summed
    per distinct product and every product is checked against that combined
    demand. Only when all products pass are the per-line stock deltas
    applied and the commit-time prices snapshotted into the lines. A
    rejected sale leaves every stock figure untouched.

    Args:
        context (RuntimeContext): Runtime context holding the ledger.
        actor: Caller whose role must grant ``RECORD_SALES``.
        lines (Sequence[SaleLineRequest | tuple[str, int]]): Requested
            product/quantity pairs; a product may appear more than once.
        payment_method (str): Free-text payment method, e.g. ``"Cash"``.
        timestamp (datetime | None): Override for the commit time.

    Returns:
        OperationResult[SalesTransactionRow]: The committed transaction, or
            ``AccessDenied``, ``InvalidInput``, ``ProductNotFound`` or
            ``InsufficientStock``. A failed save is carried as the warning.
    """
    try:
        require_capability(actor, Capability.RECORD_SALES)
        requests = _normalize_lines(lines)
        method = require_text(payment_method, "Payment method")
        demand = aggregate_demand(requests)
        _validate_demand(context, requests, demand)
        sale_lines = _commit_lines(context, requests, demand)
    except BusinessRuleViolation as exc:
        log.warning("Sale rejected for '%s': %s", _actor_name(actor), exc)
        return OperationResult(error=exc)

    moment = _resolve_timestamp(timestamp)
    transaction = SalesTransactionRow(
        transaction_id=_unique_id("S", moment, (sale.transaction_id for sale in context.store.sales)),
        timestamp=moment,
        payment_method=method,
        recorded_by=_actor_name(actor),
        lines=sale_lines,
    )
    context.store.sales.append(transaction)
    log.info(
        "Recorded sale '%s' with %d lines (revenue=%s, cost=%s)",
        transaction.transaction_id,
        len(transaction.lines),
        transaction.total_revenue,
        transaction.total_cost,
    )
    warning = persist_context(context, CollectionKey.PRODUCTS, CollectionKey.SALES)
    return OperationResult(value=transaction, warning=warning)


def list_sales(context: RuntimeContext) -> List[SalesTransactionRow]:
    """Return the committed sales history in commit order."""
    return list(context.store.sales)


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


def record_purchase(
    context: RuntimeContext,
    actor: Any,
    product_id: str,
    quantity: int,
    cost_price: Any,
    supplier_name: str,
    *,
    purchase_date: Optional[date] = None,
) -> OperationResult[PurchaseRow]:
    """Receive stock from a supplier and adopt the purchase cost.

    A purchase can only restock an existing product; it never creates one.

    Args:
        context (RuntimeContext): Runtime context holding the ledger.
        actor: Caller whose role must grant ``RECORD_PURCHASES``.
        product_id (str): Case-insensitive id of the received product.
        quantity (int): Units received, strictly positive.
        cost_price (Decimal | str): Unit cost, strictly positive. Becomes the
            product's current cost price.
        supplier_name (str): Free-text supplier name.
        purchase_date (date | None): Defaults to today (UTC).

    Returns:
        OperationResult[PurchaseRow]: The appended purchase, or
            ``AccessDenied``, ``InvalidInput`` or ``ProductNotFound``.
    """
    try:
        require_capability(actor, Capability.RECORD_PURCHASES)
        require_positive_quantity(quantity)
        unit_cost = require_positive_money(cost_price)
        product = get_product(context, product_id)
        _apply_stock_delta(context, product.product_id, quantity)
    except BusinessRuleViolation as exc:
        log.warning("Purchase rejected for '%s': %s", product_id, exc)
        return OperationResult(error=exc)

    key = _key(product.product_id)
    context.store.products[key] = replace(context.store.products[key], cost_price=unit_cost)

    moment = _resolve_timestamp(None)
    purchase = PurchaseRow(
        purchase_id=_unique_id("P", moment, (row.purchase_id for row in context.store.purchases)),
        product_id=product.product_id,
        quantity=quantity,
        cost_price=unit_cost,
        purchase_date=purchase_date or moment.date(),
        supplier_name=(supplier_name or "").strip(),
    )
    context.store.purchases.append(purchase)
    log.info(
        "Recorded purchase '%s' of %d x '%s' at %s from '%s'",
        purchase.purchase_id,
        quantity,
        product.product_id,
        unit_cost,
        purchase.supplier_name,
    )
    warning = persist_context(context, CollectionKey.PRODUCTS, CollectionKey.PURCHASES)
    return OperationResult(value=purchase, warning=warning)


def list_purchases(context: RuntimeContext) -> List[PurchaseRow]:
    """Return every recorded purchase in the order it was appended."""
    return list(context.store.purchases)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def list_users(context: RuntimeContext, *, include_inactive: bool = False) -> List[UserRow]:
    users = context.store.users.values()
    return [user for user in users if include_inactive or user.is_active]


def get_user(context: RuntimeContext, username: str) -> UserRow:
    """Resolve a user record by username, ignoring case.

    Raises:
        MissingReferenceError: If ``username`` is unknown.
    """
    user = context.store.users.get(_key(username))
    if user is None:
        log.warning("User lookup failed for '%s'", username)
        raise MissingReferenceError(f"Unknown user: {username}")
    return user


def resolve_actor(context: RuntimeContext, username: str) -> Actor:
    """Build the :class:`Actor` for ``username`` from the users sheet.

    The core never authenticates; it trusts the session collaborator to
    have done so and only maps the username onto its role claim.

    Raises:
        MissingReferenceError: If ``username`` is unknown.
        AccessDenied: If the user is inactive or carries an unknown role.
    """
    user = get_user(context, username)
    if not user.is_active:
        raise AccessDenied(f"User '{user.username}' is inactive")
    try:
        role = Role(user.role)
    except ValueError as exc:
        raise AccessDenied(f"User '{user.username}' has unknown role '{user.role}'") from exc
    return Actor(username=user.username, role=role)


def _parse_role(role: Union[Role, str]) -> Role:
    try:
        return Role(str(getattr(role, "value", role)).strip().upper())
    except ValueError as exc:
        raise InvalidInput(f"Unknown role: {role}") from exc


def add_user(
    context: RuntimeContext,
    actor: Any,
    username: str,
    display_name: str,
    role: Union[Role, str],
    *,
    is_active: bool = True,
) -> OperationResult[UserRow]:
    """Register a new shop user.

    Returns:
        OperationResult[UserRow]: The new user, or ``AccessDenied``,
            ``InvalidInput`` or ``DuplicateId``.
    """
    try:
        require_capability(actor, Capability.MANAGE_USERS)
        name = require_text(username, "Username")
        claimed_role = _parse_role(role)
        if _key(name) in context.store.users:
            raise DuplicateId(f"Username '{name}' already exists")
    except BusinessRuleViolation as exc:
        log.warning("User registration rejected for '%s': %s", username, exc)
        return OperationResult(error=exc)

    user = UserRow(
        username=name,
        display_name=(display_name or name).strip(),
        role=claimed_role.value,
        is_active=is_active,
    )
    context.store.users[_key(name)] = user
    log.info("Added user '%s' with role %s", user.username, user.role)
    return OperationResult(value=user, warning=persist_context(context, CollectionKey.USERS))


def update_user(
    context: RuntimeContext,
    actor: Any,
    username: str,
    *,
    display_name: Optional[str] = None,
    role: Union[Role, str, None] = None,
    is_active: Optional[bool] = None,
) -> OperationResult[UserRow]:
    """Change the display name, role or active flag of another user.

    Fields left as ``None`` keep their stored value. Deactivated users stay
    in the sheet so historic sales still name who recorded them, but
    :func:`resolve_actor` refuses them.

    Returns:
        OperationResult[UserRow]: The updated user, or ``AccessDenied``,
            ``MissingReferenceError`` or ``InvalidInput``.
    """
    try:
        require_capability(actor, Capability.MANAGE_USERS)
        if _key(_actor_name(actor)) == _key(username):
            raise AccessDenied("You cannot change your own account")
        current = get_user(context, username)
        changes: Dict[str, Any] = {}
        if display_name is not None:
            changes["display_name"] = require_text(display_name, "Display name")
        if role is not None:
            changes["role"] = _parse_role(role).value
        if is_active is not None:
            changes["is_active"] = bool(is_active)
    except BusinessRuleViolation as exc:
        log.warning("User update rejected for '%s': %s", username, exc)
        return OperationResult(error=exc)

    user = replace(current, **changes)
    context.store.users[_key(user.username)] = user
    log.info("Updated user '%s': %s", user.username, ", ".join(sorted(changes)) or "no changes")
    return OperationResult(value=user, warning=persist_context(context, CollectionKey.USERS))


def remove_user(context: RuntimeContext, actor: Any, username: str) -> OperationResult[UserRow]:
    """Delete another user's account.

    Returns:
        OperationResult[UserRow]: The removed user, or ``AccessDenied`` or
            ``MissingReferenceError``.
    """
    try:
        require_capability(actor, Capability.MANAGE_USERS)
        if _key(_actor_name(actor)) == _key(username):
            raise AccessDenied("You cannot remove your own account")
        user = get_user(context, username)
    except BusinessRuleViolation as exc:
        log.warning("User removal rejected for '%s': %s", username, exc)
        return OperationResult(error=exc)

    del context.store.users[_key(user.username)]
    log.info("Removed user '%s'", user.username)
    return OperationResult(value=user, warning=persist_context(context, CollectionKey.USERS))
