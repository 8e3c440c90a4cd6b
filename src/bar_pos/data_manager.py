"""Data access layer for Bar POS.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere; transactional guarantees
are layered on top by :mod:`bar_pos.document_store`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Record operations: loading typed records from a worksheet and writing,
   replacing, or deleting individual rows keyed by their document id.
"""


from __future__ import annotations

import configparser
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from filelock import FileLock
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import (
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_LOG_DIR_NAME,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_TRANSACTION_ATTEMPTS,
    DEFAULT_PRODUCT_NAME,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
SALES_SHEET = SheetName.SALES.value
PURCHASES_SHEET = SheetName.PURCHASES.value
COMANDAS_SHEET = SheetName.COMANDAS.value
ORDERS_SHEET = SheetName.ORDERS.value

# Column layout of every worksheet, in the order written by the setup script.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "Title",
        "BuyPrice",
        "SellPrice",
        "Stock",
        "UrlImage",
        "Color",
    ],
    SALES_SHEET: [
        "SaleID",
        "Date",
        "Items",
        "Total",
        "PaymentMethod",
        "SaleType",
        "Status",
        "CanceledAt",
        "OriginID",
    ],
    PURCHASES_SHEET: [
        "PurchaseID",
        "ProductID",
        "Amount",
        "UnityValue",
        "Date",
    ],
    COMANDAS_SHEET: [
        "ComandaID",
        "CustomerName",
        "Items",
        "Total",
        "CreatedAt",
        "Status",
        "ClosedAt",
        "SaleID",
    ],
    ORDERS_SHEET: [
        "OrderID",
        "CustomerName",
        "CustomerPhone",
        "Items",
        "ItemsTotal",
        "ShippingCost",
        "Total",
        "DeliveryType",
        "Address",
        "Status",
        "CreatedAt",
        "ScheduledDate",
        "ActualDeliveryDate",
        "PaymentDate",
        "ClosingDate",
        "CanceledDate",
        "PaymentMethod",
        "SaleID",
        "Observations",
    ],
}

# Header holding the document id on each sheet, and the matching record field.
KEY_COLUMNS: Mapping[str, str] = {
    PRODUCTS_SHEET: "ProductID",
    SALES_SHEET: "SaleID",
    PURCHASES_SHEET: "PurchaseID",
    COMANDAS_SHEET: "ComandaID",
    ORDERS_SHEET: "OrderID",
}

KEY_FIELDS: Mapping[str, str] = {
    PRODUCTS_SHEET: "product_id",
    SALES_SHEET: "sale_id",
    PURCHASES_SHEET: "purchase_id",
    COMANDAS_SHEET: "comanda_id",
    ORDERS_SHEET: "order_id",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    max_transaction_attempts: int = DEFAULT_MAX_TRANSACTION_ATTEMPTS
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    log_dir: Optional[Path] = None
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def resolved_log_dir(self) -> Path:
        """Directory for the rotating log, next to the workbook by default."""
        if self.log_dir is not None:
            return self.log_dir
        return Path(self.data_file).parent / DEFAULT_LOG_DIR_NAME


@dataclass(frozen=True)
class LineItem:
    """Price snapshot of one product line on a sale, tab, or order."""

    product_id: str
    product_name: str
    quantity: int
    price_at_sale: Decimal
    price_at_cost: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.price_at_sale * self.quantity

    @property
    def cost_subtotal(self) -> Decimal:
        return self.price_at_cost * self.quantity


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    title: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int
    url_image: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    date: Optional[datetime]
    items: Tuple[LineItem, ...]
    total: Decimal
    payment_method: Optional[str]
    sale_type: str
    status: str
    canceled_at: Optional[datetime] = None
    origin_id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseRow:
    """In-memory view of a row from the ``Purchases`` sheet."""

    purchase_id: str
    product_id: str
    amount: int
    unity_value: Decimal
    date: Optional[datetime]


@dataclass(frozen=True)
class ComandaRow:
    """In-memory view of a row from the ``Comandas`` sheet."""

    comanda_id: str
    customer_name: str
    items: Tuple[LineItem, ...]
    total: Decimal
    created_at: Optional[datetime]
    status: str
    closed_at: Optional[datetime] = None
    sale_id: Optional[str] = None


@dataclass(frozen=True)
class OrderRow:
    """In-memory view of a row from the ``Orders`` sheet."""

    order_id: Optional[str]
    customer_name: str
    items: Tuple[LineItem, ...]
    items_total: Decimal
    shipping_cost: Decimal
    total: Decimal
    delivery_type: str
    status: str
    created_at: Optional[datetime]
    scheduled_date: Optional[datetime]
    customer_phone: Optional[str] = None
    address: Optional[str] = None
    actual_delivery_date: Optional[datetime] = None
    payment_date: Optional[datetime] = None
    closing_date: Optional[datetime] = None
    canceled_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    sale_id: Optional[str] = None
    observations: Optional[str] = None


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

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

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

    ``DataFile``, ``StoreName`` and ``SchemaVersion`` under ``[System]`` are
    mandatory. ``LogDir`` and ``LogLevel`` under ``[System]`` are optional and
    control where the rotating package log goes. Under ``[Transactions]``,
    ``MaxAttempts`` bounds how many times a conflicting transaction is retried
    and ``LockTimeout`` is how many seconds a client waits for the workbook
    lock held by another client. Relative paths are expanded against
    ``base_path`` when provided, or against the current working directory as a
    fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container with the resolved data
            file path, store metadata, schema version, and retry budget.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If ``MaxAttempts`` is not a positive integer, ``LockTimeout``
            is negative, or ``LogLevel`` is not a standard logging level.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    max_attempts = parser.getint(
        "Transactions", "MaxAttempts", fallback=DEFAULT_MAX_TRANSACTION_ATTEMPTS)
    if max_attempts < 1:
        raise ValueError(f"MaxAttempts must be at least 1, got {max_attempts}")

    lock_timeout = parser.getfloat(
        "Transactions", "LockTimeout", fallback=DEFAULT_LOCK_TIMEOUT_SECONDS)
    if lock_timeout < 0:
        raise ValueError(f"LockTimeout must not be negative, got {lock_timeout}")

    log_level = parser.get("System", "LogLevel", fallback=DEFAULT_LOG_LEVEL).strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"Unknown LogLevel: {log_level}")

    if base_path is None:
        base_path = Path.cwd()
    data_file_path = _anchor(Path(data_file_raw), base_path)
    log_dir_raw = parser.get("System", "LogDir", fallback=None)
    log_dir = _anchor(Path(log_dir_raw).expanduser(), base_path) if log_dir_raw else None

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        max_transaction_attempts=max_attempts,
        lock_timeout=lock_timeout,
        log_dir=log_dir,
        log_level=log_level,
    )


def _anchor(path: Path, base_path: Path) -> Path:
    return path if path.is_absolute() else (base_path / path).resolve()


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    The provided path is expanded (supporting ``~``), resolved to its absolute
    form, and verified for existence. Every expected sheet must be present.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
        KeyError: If the workbook lacks one of the sheets in ``SHEET_COLUMNS``.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    missing = [name for name in SHEET_COLUMNS if name not in wb.sheetnames]
    if missing:
        raise KeyError(f"Workbook {data_file} is missing sheets: {', '.join(missing)}")
    log.debug("Opened workbook '%s'", data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def workbook_lock(data_file: Path, *, timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> FileLock:
    """Return the cross-process lock guarding ``data_file``.

    The lock lives in ``<data_file>.lock`` beside the workbook. One lock object
    is shared per path inside a process, so nested acquisition by the same
    thread is reentrant while other threads and processes wait up to
    ``timeout`` seconds before :class:`filelock.Timeout` is raised.
    """

    data_file = Path(data_file).expanduser().resolve()
    lock_path = data_file.with_name(data_file.name + ".lock")
    return FileLock(str(lock_path), timeout=timeout, is_singleton=True)


def workbook_fingerprint(data_file: Path) -> Optional[str]:
    """Return a SHA-256 digest of the workbook bytes, or ``None`` if absent."""

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        return None
    return hashlib.sha256(data_file.read_bytes()).hexdigest()


def record_key(sheet_name: str, record: Any) -> str:
    """Return the document id stored on ``record`` for the given sheet."""

    return getattr(record, KEY_FIELDS[sheet_name])


def iter_records(workbook: Workbook, sheet_name: str) -> Iterable[Any]:
    """Iterate over the typed records stored on ``sheet_name``.

    The iterator skips the header row and any fully empty rows. Each remaining
    row is mapped by header title and converted with the deserializer
    registered for the sheet.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): One of the sheet names in ``SHEET_COLUMNS``.

    Yields:
        Any: One record dataclass per meaningful row, in sheet order.
    """

    sheet = workbook[sheet_name]
    headers = _header_titles(sheet)
    deserialize = DESERIALIZERS[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize(dict(zip(headers, raw)))


def read_record(workbook: Workbook, sheet_name: str, record_id: str) -> Optional[Any]:
    """Return the record whose key column equals ``record_id``, if any.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): Sheet to search.
        record_id (str): Document id to match against the key column.

    Returns:
        Any | None: The deserialized record, or ``None`` when no row matches.
    """

    row_index = locate_row(workbook, sheet_name, KEY_COLUMNS[sheet_name], record_id)
    if row_index is None:
        return None
    sheet = workbook[sheet_name]
    headers = _header_titles(sheet)
    raw = [cell.value for cell in sheet[row_index]]
    return DESERIALIZERS[sheet_name](dict(zip(headers, raw)))


def write_record(workbook: Workbook, sheet_name: str, record: Any) -> None:
    """Insert or fully replace the row holding ``record``.

    The record is serialized into a column mapping and written by header
    title, so the physical column order of the sheet does not matter. When no
    row carries the record's id a new row is appended.

    Args:
        workbook (Workbook): Workbook whose sheet should be modified.
        sheet_name (str): Sheet receiving the record.
        record (Any): Record dataclass matching the sheet.

    Raises:
        KeyError: If the sheet lacks a column the serializer produces.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    values = SERIALIZERS[sheet_name](record)
    for column in values:
        if column not in header_map:
            raise KeyError(f"Unknown {sheet_name} column: {column}")

    row_index = locate_row(workbook, sheet_name, KEY_COLUMNS[sheet_name], record_key(sheet_name, record))
    if row_index is None:
        row: List[object] = [None] * len(header_map)
        for column, value in values.items():
            row[header_map[column] - 1] = value
        sheet.append(row)
        return

    for column, value in values.items():
        sheet.cell(row=row_index, column=header_map[column], value=value)


def delete_record(workbook: Workbook, sheet_name: str, record_id: str) -> bool:
    """Remove the row holding ``record_id``.

    Returns:
        bool: ``True`` when a row was removed, ``False`` when none matched.
    """

    row_index = locate_row(workbook, sheet_name, KEY_COLUMNS[sheet_name], record_id)
    if row_index is None:
        return False
    workbook[sheet_name].delete_rows(row_index)
    return True


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def _header_titles(sheet: Worksheet) -> List[Optional[str]]:
    return [cell.value for cell in sheet[1]]


def _header_map(sheet: Worksheet) -> Dict[str, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def to_decimal(raw: object, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce spreadsheet or user input into a :class:`~decimal.Decimal`.

    ``None``, blank strings and unparseable values fall back to ``default``.
    Floats are routed through ``str`` so ``4.1`` becomes ``Decimal("4.1")``.
    """

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return Decimal(str(raw).strip())
    except InvalidOperation:
        return default


def to_int(raw: object, default: int = 0) -> int:
    """Coerce a numeric cell or string into an ``int`` (truncating decimals)."""

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return int(Decimal(str(raw).strip()))
    except (InvalidOperation, ValueError):
        return default


def _optional_text(raw: object) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw)
    return text if text != "" else None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(raw: object) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    value = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    # Hand-edited cells carry no zone; stored timestamps are UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def serialize_items(items: Sequence[LineItem]) -> str:
    """Encode line items as the JSON array stored in an ``Items`` cell.

    Prices are written as strings to keep their exact decimal value.
    """

    payload = [
        {
            "idProduct": item.product_id,
            "productName": item.product_name,
            "quantity": item.quantity,
            "priceAtSale": str(item.price_at_sale),
            "priceAtCost": str(item.price_at_cost),
        }
        for item in items
    ]
    return json.dumps(payload, ensure_ascii=False)


def deserialize_items(raw: object) -> Tuple[LineItem, ...]:
    """Decode an ``Items`` cell back into an immutable tuple of line items.

    Raises:
        ValueError: If the cell does not contain a JSON array.
    """

    if raw is None or raw == "":
        return ()
    payload = json.loads(str(raw))
    if not isinstance(payload, list):
        raise ValueError(f"Items cell must hold a JSON array, got: {raw!r}")
    return tuple(
        LineItem(
            product_id=str(entry["idProduct"]),
            product_name=str(entry.get("productName") or DEFAULT_PRODUCT_NAME),
            quantity=to_int(entry.get("quantity"), default=1),
            price_at_sale=to_decimal(entry.get("priceAtSale")),
            price_at_cost=to_decimal(entry.get("priceAtCost")),
        )
        for entry in payload
    )


# ---------------------------------------------------------------------------
# Row serializers
# ---------------------------------------------------------------------------


def serialize_product(record: ProductRow) -> Dict[str, object]:
    return {
        "ProductID": record.product_id,
        "Title": record.title,
        "BuyPrice": record.buy_price,
        "SellPrice": record.sell_price,
        "Stock": record.stock,
        "UrlImage": record.url_image,
        "Color": record.color,
    }


def deserialize_product(row: Mapping[str, object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric columns are normalized (prices to :class:`~decimal.Decimal`,
    stock to ``int``) and the id is coerced to ``str`` to avoid surprises
    caused by Excel interpreting numeric-looking identifiers.
    """

    return ProductRow(
        product_id=str(row.get("ProductID")),
        title=str(row.get("Title") or ""),
        buy_price=to_decimal(row.get("BuyPrice")),
        sell_price=to_decimal(row.get("SellPrice")),
        stock=to_int(row.get("Stock")),
        url_image=_optional_text(row.get("UrlImage")),
        color=_optional_text(row.get("Color")),
    )


def serialize_sale(record: SaleRow) -> Dict[str, object]:
    return {
        "SaleID": record.sale_id,
        "Date": _format_datetime(record.date),
        "Items": serialize_items(record.items),
        "Total": record.total,
        "PaymentMethod": record.payment_method,
        "SaleType": record.sale_type,
        "Status": record.status,
        "CanceledAt": _format_datetime(record.canceled_at),
        "OriginID": record.origin_id,
    }


def deserialize_sale(row: Mapping[str, object]) -> SaleRow:
    return SaleRow(
        sale_id=str(row.get("SaleID")),
        date=_parse_datetime(row.get("Date")),
        items=deserialize_items(row.get("Items")),
        total=to_decimal(row.get("Total")),
        payment_method=_optional_text(row.get("PaymentMethod")),
        sale_type=str(row.get("SaleType") or ""),
        status=str(row.get("Status") or ""),
        canceled_at=_parse_datetime(row.get("CanceledAt")),
        origin_id=_optional_text(row.get("OriginID")),
    )


def serialize_purchase(record: PurchaseRow) -> Dict[str, object]:
    return {
        "PurchaseID": record.purchase_id,
        "ProductID": record.product_id,
        "Amount": record.amount,
        "UnityValue": record.unity_value,
        "Date": _format_datetime(record.date),
    }


def deserialize_purchase(row: Mapping[str, object]) -> PurchaseRow:
    return PurchaseRow(
        purchase_id=str(row.get("PurchaseID")),
        product_id=str(row.get("ProductID")),
        amount=to_int(row.get("Amount")),
        unity_value=to_decimal(row.get("UnityValue")),
        date=_parse_datetime(row.get("Date")),
    )


def serialize_comanda(record: ComandaRow) -> Dict[str, object]:
    return {
        "ComandaID": record.comanda_id,
        "CustomerName": record.customer_name,
        "Items": serialize_items(record.items),
        "Total": record.total,
        "CreatedAt": _format_datetime(record.created_at),
        "Status": record.status,
        "ClosedAt": _format_datetime(record.closed_at),
        "SaleID": record.sale_id,
    }


def deserialize_comanda(row: Mapping[str, object]) -> ComandaRow:
    return ComandaRow(
        comanda_id=str(row.get("ComandaID")),
        customer_name=str(row.get("CustomerName") or ""),
        items=deserialize_items(row.get("Items")),
        total=to_decimal(row.get("Total")),
        created_at=_parse_datetime(row.get("CreatedAt")),
        status=str(row.get("Status") or ""),
        closed_at=_parse_datetime(row.get("ClosedAt")),
        sale_id=_optional_text(row.get("SaleID")),
    )


def serialize_order(record: OrderRow) -> Dict[str, object]:
    return {
        "OrderID": record.order_id,
        "CustomerName": record.customer_name,
        "CustomerPhone": record.customer_phone,
        "Items": serialize_items(record.items),
        "ItemsTotal": record.items_total,
        "ShippingCost": record.shipping_cost,
        "Total": record.total,
        "DeliveryType": record.delivery_type,
        "Address": record.address,
        "Status": record.status,
        "CreatedAt": _format_datetime(record.created_at),
        "ScheduledDate": _format_datetime(record.scheduled_date),
        "ActualDeliveryDate": _format_datetime(record.actual_delivery_date),
        "PaymentDate": _format_datetime(record.payment_date),
        "ClosingDate": _format_datetime(record.closing_date),
        "CanceledDate": _format_datetime(record.canceled_date),
        "PaymentMethod": record.payment_method,
        "SaleID": record.sale_id,
        "Observations": record.observations,
    }


def deserialize_order(row: Mapping[str, object]) -> OrderRow:
    """Convert a raw ``Orders`` row into an :class:`OrderRow`.

    Optional text columns stay ``None`` when blank and every date column is
    parsed from its ISO-8601 text.
    """

    return OrderRow(
        order_id=str(row.get("OrderID")),
        customer_name=str(row.get("CustomerName") or ""),
        customer_phone=_optional_text(row.get("CustomerPhone")),
        items=deserialize_items(row.get("Items")),
        items_total=to_decimal(row.get("ItemsTotal")),
        shipping_cost=to_decimal(row.get("ShippingCost")),
        total=to_decimal(row.get("Total")),
        delivery_type=str(row.get("DeliveryType") or ""),
        address=_optional_text(row.get("Address")),
        status=str(row.get("Status") or ""),
        created_at=_parse_datetime(row.get("CreatedAt")),
        scheduled_date=_parse_datetime(row.get("ScheduledDate")),
        actual_delivery_date=_parse_datetime(row.get("ActualDeliveryDate")),
        payment_date=_parse_datetime(row.get("PaymentDate")),
        closing_date=_parse_datetime(row.get("ClosingDate")),
        canceled_date=_parse_datetime(row.get("CanceledDate")),
        payment_method=_optional_text(row.get("PaymentMethod")),
        sale_id=_optional_text(row.get("SaleID")),
        observations=_optional_text(row.get("Observations")),
    )


SERIALIZERS: Mapping[str, Callable[[Any], Dict[str, object]]] = {
    PRODUCTS_SHEET: serialize_product,
    SALES_SHEET: serialize_sale,
    PURCHASES_SHEET: serialize_purchase,
    COMANDAS_SHEET: serialize_comanda,
    ORDERS_SHEET: serialize_order,
}

DESERIALIZERS: Mapping[str, Callable[[Mapping[str, object]], Any]] = {
    PRODUCTS_SHEET: deserialize_product,
    SALES_SHEET: deserialize_sale,
    PURCHASES_SHEET: deserialize_purchase,
    COMANDAS_SHEET: deserialize_comanda,
    ORDERS_SHEET: deserialize_order,
}

