"""Data access layer for Shop Tracker.

This module provides low-level helpers that read from and write to the shop
workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Collection operations: loading every record of an entity collection and
   overwriting a collection wholesale after the business layer mutated it.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import CollectionKey, SheetName


CONFIG_FILE_NAME = "config.ini"
DEFAULT_SPAN_DAYS = 7
DEFAULT_TOP_N = 5
FALSE_STRINGS = frozenset({"", "false", "0", "no", "n", "off"})

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "ProductName",
        "Category",
        "CostPrice",
        "SellingPrice",
        "StockQuantity",
    ],
    SheetName.SALES.value: [
        "TransactionID",
        "Timestamp",
        "PaymentMethod",
        "RecordedBy",
    ],
    SheetName.SALE_LINES.value: [
        "TransactionID",
        "LineNumber",
        "ProductID",
        "Quantity",
        "UnitSellingPrice",
        "UnitCostPrice",
    ],
    SheetName.PURCHASES.value: [
        "PurchaseID",
        "ProductID",
        "Quantity",
        "CostPrice",
        "PurchaseDate",
        "SupplierName",
    ],
    SheetName.USERS.value: [
        "Username",
        "DisplayName",
        "Role",
        "IsActive",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_username: str
    default_span_days: int = DEFAULT_SPAN_DAYS
    default_top_n: int = DEFAULT_TOP_N


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    category: str
    cost_price: Decimal
    selling_price: Decimal
    stock_quantity: int = 0


@dataclass(frozen=True)
class SaleLineRow:
    """One product line of a sale with its commit-time price snapshot."""

    product_id: str
    quantity: int
    unit_selling_price: Decimal
    unit_cost_price: Decimal

    @property
    def line_revenue(self) -> Decimal:
        return self.unit_selling_price * self.quantity

    @property
    def line_cost(self) -> Decimal:
        return self.unit_cost_price * self.quantity


@dataclass(frozen=True)
class SalesTransactionRow:
    """A committed sale joined from the ``Sales`` and ``SaleLines`` sheets.

    Totals are always derived from the line items; no independent total is
    stored in the workbook.
    """

    transaction_id: str
    timestamp: Optional[datetime]
    payment_method: str
    recorded_by: str
    lines: Tuple[SaleLineRow, ...] = ()

    @property
    def total_revenue(self) -> Decimal:
        return sum((line.line_revenue for line in self.lines), Decimal("0"))

    @property
    def total_cost(self) -> Decimal:
        return sum((line.line_cost for line in self.lines), Decimal("0"))

    @property
    def sale_date(self) -> Optional[date]:
        return self.timestamp.date() if self.timestamp is not None else None


@dataclass(frozen=True)
class PurchaseRow:
    """In-memory view of a row from the ``Purchases`` sheet."""

    purchase_id: str
    product_id: str
    quantity: int
    cost_price: Decimal
    purchase_date: Optional[date]
    supplier_name: str


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    username: str
    display_name: str
    role: str
    is_active: bool


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    The function expands user home references (``~``), resolves the absolute
    path, and validates that the file exists before parsing it. Validation of
    required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` entries are mandatory. The ``[Reports]``
    section is optional and falls back to module defaults. Relative
    ``DataFile`` paths are anchored at ``base_path`` (or the current working
    directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a report default is not a positive integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
        default_username = parser.get("Defaults", "DefaultUser")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    span_days = parser.getint("Reports", "DefaultSpanDays", fallback=DEFAULT_SPAN_DAYS)
    top_n = parser.getint("Reports", "DefaultTopN", fallback=DEFAULT_TOP_N)
    if span_days < 1 or top_n < 1:
        raise ValueError("Report defaults must be positive integers")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_username=default_username,
        default_span_days=span_days,
        default_top_n=top_n,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the shop workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand. I/O errors propagate as
    :class:`OSError`; the business layer decides how to surface them.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def validate_layout(workbook: Workbook) -> None:
    """Check that every managed sheet exists with the expected header row.

    Raises:
        KeyError: If a sheet is missing or its header deviates from
            :data:`SHEET_COLUMNS`.
    """

    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name not in workbook.sheetnames:
            raise KeyError(f"Workbook is missing sheet: {sheet_name}")
        header = [cell.value for cell in workbook[sheet_name][1]][: len(columns)]
        if header != list(columns):
            raise KeyError(f"Unexpected header on sheet '{sheet_name}': {header}")


def _iter_data_rows(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[Any, ...]]:
    width = len(SHEET_COLUMNS[sheet_name])
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, max_col=width, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield tuple(raw)


def replace_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> int:
    """Overwrite every data row of ``sheet_name`` while keeping the header.

    Returns:
        int: Number of rows written.
    """

    sheet = workbook[sheet_name]
    previous_last_row = sheet.max_row
    written = 0
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            # assign through the attribute so ``None`` clears stale values
            sheet.cell(row=row_index, column=column_index).value = value
        written += 1

    stale_rows = previous_last_row - (written + 1)
    if stale_rows > 0:
        sheet.delete_rows(written + 2, stale_rows)
    return written


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for raw in _iter_data_rows(workbook, SheetName.PRODUCTS.value):
        yield deserialize_product(raw)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Iterate over the ``Users`` worksheet and yield typed records."""

    for raw in _iter_data_rows(workbook, SheetName.USERS.value):
        yield deserialize_user(raw)


def iter_purchases(workbook: Workbook) -> Iterable[PurchaseRow]:
    """Stream purchase records from the ``Purchases`` worksheet."""

    for raw in _iter_data_rows(workbook, SheetName.PURCHASES.value):
        yield deserialize_purchase(raw)


def iter_sales(workbook: Workbook) -> Iterable[SalesTransactionRow]:
    """Stream committed sales, joining each header with its line items.

    Lines are grouped by ``TransactionID`` and ordered by ``LineNumber``.
    Headers keep their worksheet order, which is the commit order. Lines whose
    transaction header is missing are ignored with a warning.
    """

    lines_by_transaction: Dict[str, List[Tuple[int, SaleLineRow]]] = {}
    for raw in _iter_data_rows(workbook, SheetName.SALE_LINES.value):
        transaction_id, line_number, line = deserialize_sale_line(raw)
        lines_by_transaction.setdefault(transaction_id, []).append((line_number, line))

    seen: set[str] = set()
    for raw in _iter_data_rows(workbook, SheetName.SALES.value):
        transaction_id = str(raw[0])
        seen.add(transaction_id)
        numbered = sorted(lines_by_transaction.get(transaction_id, []), key=lambda item: item[0])
        yield deserialize_sale(raw, tuple(line for _, line in numbered))

    orphans = set(lines_by_transaction) - seen
    if orphans:
        log.warning("Ignoring sale lines without a transaction header: %s", ", ".join(sorted(orphans)))


def write_products(workbook: Workbook, records: Iterable[ProductRow]) -> None:
    replace_rows(workbook, SheetName.PRODUCTS.value, (serialize_product(r) for r in records))


def write_users(workbook: Workbook, records: Iterable[UserRow]) -> None:
    replace_rows(workbook, SheetName.USERS.value, (serialize_user(r) for r in records))


def write_purchases(workbook: Workbook, records: Iterable[PurchaseRow]) -> None:
    replace_rows(workbook, SheetName.PURCHASES.value, (serialize_purchase(r) for r in records))


def write_sales(workbook: Workbook, records: Iterable[SalesTransactionRow]) -> None:
    """Overwrite both the ``Sales`` and ``SaleLines`` sheets."""

    records = list(records)
    replace_rows(workbook, SheetName.SALES.value, (serialize_sale(r) for r in records))
    replace_rows(
        workbook,
        SheetName.SALE_LINES.value,
        (row for record in records for row in serialize_sale_lines(record)),
    )


_LOADERS: Mapping[CollectionKey, Callable[[Workbook], Iterable[Any]]] = {
    CollectionKey.PRODUCTS: iter_products,
    CollectionKey.SALES: iter_sales,
    CollectionKey.PURCHASES: iter_purchases,
    CollectionKey.USERS: iter_users,
}

_WRITERS: Mapping[CollectionKey, Callable[[Workbook, Iterable[Any]], None]] = {
    CollectionKey.PRODUCTS: write_products,
    CollectionKey.SALES: write_sales,
    CollectionKey.PURCHASES: write_purchases,
    CollectionKey.USERS: write_users,
}


def load_collection(workbook: Workbook, key: CollectionKey) -> List[Any]:
    """Load every record of ``key`` from the workbook.

    Returns:
        list: Typed records in worksheet order; empty when the sheet holds
            only its header.
    """

    records = list(_LOADERS[CollectionKey(key)](workbook))
    log.debug("Loaded %d records for collection '%s'", len(records), key)
    return records


def save_collection(workbook: Workbook, key: CollectionKey, records: Sequence[Any]) -> None:
    """Overwrite the whole ``key`` collection in the workbook (not on disk)."""

    _WRITERS[CollectionKey(key)](workbook, records)
    log.debug("Staged %d records for collection '%s'", len(records), key)


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.category,
        record.cost_price,
        record.selling_price,
        record.stock_quantity,
    ]


def serialize_user(record: UserRow) -> list[object]:
    return [record.username, record.display_name, record.role, record.is_active]


def serialize_purchase(record: PurchaseRow) -> list[object]:
    return [
        record.purchase_id,
        record.product_id,
        record.quantity,
        record.cost_price,
        record.purchase_date.isoformat() if record.purchase_date is not None else None,
        record.supplier_name,
    ]


def serialize_sale(record: SalesTransactionRow) -> list[object]:
    """Convert a sale header into the ``Sales`` column ordering.

    Derived totals are intentionally absent; they are recomputed from the
    line items on load.
    """

    return [
        record.transaction_id,
        record.timestamp.isoformat() if record.timestamp is not None else None,
        record.payment_method,
        record.recorded_by,
    ]


def serialize_sale_lines(record: SalesTransactionRow) -> list[list[object]]:
    return [
        [
            record.transaction_id,
            number,
            line.product_id,
            line.quantity,
            line.unit_selling_price,
            line.unit_cost_price,
        ]
        for number, line in enumerate(record.lines, start=1)
    ]


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: object) -> int:
    return int(Decimal(str(raw))) if raw is not None else 0


def _to_text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _to_flag(raw: object) -> bool:
    if raw is None:
        return False
    if isinstance(raw, str):
        return raw.strip().casefold() not in FALSE_STRINGS
    return bool(raw)


def _to_datetime(raw: object) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw
    text = str(raw).strip()
    return datetime.fromisoformat(text) if text else None


def _to_date(raw: object) -> Optional[date]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw).strip()
    return date.fromisoformat(text[:10]) if text else None


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Prices become :class:`~decimal.Decimal` instances, the stock column an
    ``int``, and id/name fields are coerced to ``str`` to avoid surprises
    caused by Excel automatically interpreting numbers.
    """

    product_id, name, category, cost_raw, sell_raw, stock_raw = raw_row
    return ProductRow(
        product_id=str(product_id),
        name=_to_text(name),
        category=_to_text(category),
        cost_price=_to_decimal(cost_raw),
        selling_price=_to_decimal(sell_raw),
        stock_quantity=_to_int(stock_raw),
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    username, display_name, role, is_active = raw_row
    return UserRow(
        username=str(username),
        display_name=_to_text(display_name),
        role=_to_text(role).upper(),
        is_active=_to_flag(is_active),
    )


def deserialize_purchase(raw_row: Sequence[object]) -> PurchaseRow:
    purchase_id, product_id, quantity, cost_raw, date_raw, supplier = raw_row
    return PurchaseRow(
        purchase_id=str(purchase_id),
        product_id=_to_text(product_id),
        quantity=_to_int(quantity),
        cost_price=_to_decimal(cost_raw),
        purchase_date=_to_date(date_raw),
        supplier_name=_to_text(supplier),
    )


def deserialize_sale(raw_row: Sequence[object], lines: Tuple[SaleLineRow, ...]) -> SalesTransactionRow:
    """Convert a ``Sales`` row plus its already-typed lines into a record.

    Blank timestamps stay ``None`` so that reports can exclude undated sales.
    """

    transaction_id, timestamp_raw, payment_method, recorded_by = raw_row
    return SalesTransactionRow(
        transaction_id=str(transaction_id),
        timestamp=_to_datetime(timestamp_raw),
        payment_method=_to_text(payment_method),
        recorded_by=_to_text(recorded_by),
        lines=lines,
    )


def deserialize_sale_line(raw_row: Sequence[object]) -> Tuple[str, int, SaleLineRow]:
    transaction_id, line_number, product_id, quantity, sell_raw, cost_raw = raw_row
    line = SaleLineRow(
        product_id=_to_text(product_id),
        quantity=_to_int(quantity),
        unit_selling_price=_to_decimal(sell_raw),
        unit_cost_price=_to_decimal(cost_raw),
    )
    return str(transaction_id), _to_int(line_number), line
