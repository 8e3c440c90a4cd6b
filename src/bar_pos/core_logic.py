"""Business logic layer for Bar POS.

This module contains the inventory-consistency engine: every operation that
moves stock and money together (sales, purchases, tabs, and scheduled orders)
runs as a single transaction on the :class:`~bar_pos.document_store.DocumentStore`
so that a failure never leaves a partially applied change behind. It consumes
the Data Access Layer (DAL) only through the store.

Stock discipline: ``Product.stock`` is changed exclusively through the ledger
helpers below. Decrements read the product inside the transaction and refuse
to go below zero; increments use the store's atomic :class:`Increment`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook

from . import configure_file_logging, data_manager, log
from .constants import (
    DEFAULT_PRODUCT_COLOR,
    DEFAULT_PRODUCT_NAME,
    EXPECTED_SCHEMA_VERSION,
    ComandaStatus,
    DeliveryType,
    OrderBucket,
    OrderStatus,
    PaymentMethod,
    SaleStatus,
    SaleType,
)
from .data_manager import (
    COMANDAS_SHEET,
    ORDERS_SHEET,
    PRODUCTS_SHEET,
    PURCHASES_SHEET,
    SALES_SHEET,
    ComandaRow,
    LineItem,
    OrderRow,
    ProductRow,
    PurchaseRow,
    SaleRow,
)
from .document_store import (
    SERVER_TIMESTAMP,
    DocumentMissing,
    DocumentRef,
    DocumentStore,
    Increment,
    Query,
    Subscription,
    Transaction,
    TransactionConflict,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, sale, purchase, tab, or order is unknown."""


class ProductNotFound(MissingReferenceError):
    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Unknown product id: {product_id}")


class SaleNotFound(MissingReferenceError):
    def __init__(self, sale_id: str) -> None:
        self.sale_id = sale_id
        super().__init__(f"Unknown sale id: {sale_id}")


class PurchaseNotFound(MissingReferenceError):
    def __init__(self, purchase_id: str) -> None:
        self.purchase_id = purchase_id
        super().__init__(f"Unknown purchase id: {purchase_id}")


class ComandaNotFound(MissingReferenceError):
    def __init__(self, comanda_id: str) -> None:
        self.comanda_id = comanda_id
        super().__init__(f"Unknown comanda id: {comanda_id}")


class OrderNotFound(MissingReferenceError):
    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Unknown order id: {order_id}")


class InsufficientStock(BusinessRuleViolation):
    """Raised when a reservation asks for more units than a product holds."""

    def __init__(self, product_id: str, requested: int, available: int, product_name: Optional[str] = None) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        label = product_name or product_id
        super().__init__(
            f"Insufficient stock for '{label}': requested {requested}, available {available}"
        )


class InsufficientStockForReversal(BusinessRuleViolation):
    """Raised when deleting a purchase would drive stock below zero."""

    def __init__(self, purchase_id: str, product_id: str, amount: int, stock: int) -> None:
        self.purchase_id = purchase_id
        self.product_id = product_id
        self.amount = amount
        self.stock = stock
        super().__init__(
            f"Cannot reverse purchase '{purchase_id}': product '{product_id}' holds {stock} "
            f"unit(s) but the purchase added {amount}"
        )


class OrderMissingId(BusinessRuleViolation):
    """Raised when an order without an id is handed to finalization."""


class InvalidStatusTransition(BusinessRuleViolation):
    """Raised when a tab or order is asked to move to a state it cannot reach."""

    def __init__(self, entity: str, entity_id: str, current: str, target: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(f"{entity} '{entity_id}' cannot move from '{current}' to '{target}'")


# Allowed order transitions; finished and canceled are terminal.
ORDER_TRANSITIONS: Mapping[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.FINISHED, OrderStatus.CANCELED}),
    OrderStatus.FINISHED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}

RawLineItem = Union[LineItem, Mapping[str, Any]]


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the document store used by the BLL.

    ``_disk`` remembers the fingerprint of the workbook file this context was
    loaded from (or last saved to), so that :func:`persist_context` can refuse
    to overwrite commits another client saved in the meantime.
    """

    settings: data_manager.ConfigSettings
    store: DocumentStore
    _disk: Dict[str, Optional[str]] = field(default_factory=dict, repr=False, compare=False)

    @property
    def max_attempts(self) -> int:
        return self.settings.max_transaction_attempts


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale.

    ``total`` defaults to the sum of ``price_at_sale * quantity`` when omitted.
    """

    items: Sequence[RawLineItem]
    total: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    sale_type: SaleType = SaleType.PDV


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording a stock intake."""

    product_id: str
    amount: int
    unity_value: Decimal


@dataclass(frozen=True)
class ComandaCommand:
    """User intent for opening a tab."""

    customer_name: str
    items: Sequence[RawLineItem]
    total: Optional[Decimal] = None


@dataclass(frozen=True)
class OrderCommand:
    """User intent for scheduling a delivery or pickup order."""

    customer_name: str
    items: Sequence[RawLineItem]
    scheduled_date: datetime
    delivery_type: DeliveryType = DeliveryType.PICKUP
    shipping_cost: Decimal = Decimal("0")
    items_total: Optional[Decimal] = None
    customer_phone: Optional[str] = None
    address: Optional[str] = None
    observations: Optional[str] = None


@dataclass(frozen=True)
class SalesReport:
    """Revenue, cost, and profit over a date range."""

    revenue: Decimal
    cost: Decimal
    profit: Decimal
    sales_count: int
    margin: Decimal


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def _open_store(
    settings: data_manager.ConfigSettings,
    opener: Callable[[Path], Workbook],
) -> Tuple[DocumentStore, Optional[str]]:
    with data_manager.workbook_lock(settings.data_file, timeout=settings.lock_timeout):
        workbook = opener(settings.data_file)
        fingerprint = data_manager.workbook_fingerprint(settings.data_file)
    return DocumentStore(workbook), fingerprint


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and open the document store for the BLL.

    The helper resolves ``config.ini``, parses settings, points the package
    log at the configured directory, and opens the Excel workbook that backs
    every collection while holding the workbook lock. The resulting
    :class:`RuntimeContext` bundles the immutable settings with a live store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for business operations.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
        filelock.Timeout: If another client holds the workbook lock too long.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    configure_file_logging(settings.resolved_log_dir, settings.log_level)
    store, fingerprint = _open_store(settings, data_manager.open_workbook)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store, _disk={"fingerprint": fingerprint})


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


def persist_context(context: RuntimeContext) -> None:
    """Persist the store's workbook to the configured data file.

    The save happens under the workbook lock. When the file on disk no longer
    matches the one this context loaded, another client has saved commits
    that this context never saw; overwriting would drop them, so the save is
    refused and the caller must reload and repeat its operations.

    Raises:
        TransactionConflict: If the workbook changed on disk since it was
            loaded or last saved through this context.
        filelock.Timeout: If another client holds the workbook lock too long.
    """
    data_file = context.settings.data_file
    with data_manager.workbook_lock(data_file, timeout=context.settings.lock_timeout):
        expected = context._disk.get("fingerprint")
        current = data_manager.workbook_fingerprint(data_file)
        if expected is not None and current != expected:
            log.error("Workbook '%s' was modified by another client; refusing to overwrite it", data_file)
            raise TransactionConflict(f"Workbook {data_file} changed on disk since it was loaded")
        data_manager.save_workbook(context.store.workbook, destination=data_file)
        context._disk["fingerprint"] = data_manager.workbook_fingerprint(data_file)
    log.info("Persisted workbook '%s'", data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new store is created, so document versions and subscriptions held by the
    previous context do not carry over.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    store, fingerprint = _open_store(context.settings, data_manager.refresh_workbook)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store, _disk={"fingerprint": fingerprint})


# ---------------------------------------------------------------------------
# Validation and line items
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_text(value: Optional[str], label: str) -> str:
    """Return ``value`` stripped, rejecting blank input with ``ValueError``."""
    text = (value or "").strip()
    if not text:
        log.error("Required text field '%s' is blank", label)
        raise ValueError(f"{label} must not be blank")
    return text


def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def coerce_line_item(raw: RawLineItem) -> LineItem:
    """Normalize a cart line into a :class:`LineItem` snapshot.

    Mappings may use either ``snake_case`` keys or the wire names stored in
    the workbook (``idProduct``, ``productName``, ``priceAtSale`` ...).
    Quantities become ``int`` (1 when missing), prices become ``Decimal``
    (0 when missing), and a missing name is replaced by
    ``DEFAULT_PRODUCT_NAME`` instead of rejecting the line.

    Raises:
        ValueError: If the product id is missing, the quantity is not
            positive, or a price is negative.
    """
    if isinstance(raw, LineItem):
        product_id, name = raw.product_id, raw.product_name
        quantity, price, cost = raw.quantity, raw.price_at_sale, raw.price_at_cost
    else:
        product_id = _pick(raw, "product_id", "idProduct")
        name = _pick(raw, "product_name", "productName", "name")
        quantity = _pick(raw, "quantity")
        price = _pick(raw, "price_at_sale", "priceAtSale")
        cost = _pick(raw, "price_at_cost", "priceAtCost")

    if product_id is None or not str(product_id).strip():
        raise ValueError("Line item is missing its product id")

    quantity_value = data_manager.to_int(quantity, default=1)
    require_positive_quantity(quantity_value)
    price_value = data_manager.to_decimal(price)
    cost_value = data_manager.to_decimal(cost)
    require_nonnegative_money(price_value)
    require_nonnegative_money(cost_value)

    label = str(name).strip() if name is not None else ""
    return LineItem(
        product_id=str(product_id).strip(),
        product_name=label or DEFAULT_PRODUCT_NAME,
        quantity=quantity_value,
        price_at_sale=price_value,
        price_at_cost=cost_value,
    )


def coerce_line_items(items: Iterable[RawLineItem]) -> Tuple[LineItem, ...]:
    """Coerce a whole cart, rejecting empty carts with ``ValueError``."""
    coerced = tuple(coerce_line_item(item) for item in items)
    if not coerced:
        raise ValueError("At least one item is required")
    return coerced


def aggregate_quantities(items: Iterable[LineItem]) -> Dict[str, int]:
    """Sum quantities per product id, preserving first-seen order."""
    demand: Dict[str, int] = {}
    for item in items:
        demand[item.product_id] = demand.get(item.product_id, 0) + item.quantity
    return demand


def sum_items(items: Iterable[LineItem]) -> Decimal:
    return sum((item.subtotal for item in items), Decimal("0"))


def merge_line_items(existing: Sequence[LineItem], additions: Sequence[LineItem]) -> Tuple[LineItem, ...]:
    """Merge ``additions`` into ``existing`` without mutating either.

    A product already on the list accumulates quantity and keeps its original
    price snapshot; a new product is appended at the end.
    """
    merged: List[LineItem] = list(existing)
    for addition in additions:
        for index, item in enumerate(merged):
            if item.product_id == addition.product_id:
                merged[index] = LineItem(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity + addition.quantity,
                    price_at_sale=item.price_at_sale,
                    price_at_cost=item.price_at_cost,
                )
                break
        else:
            merged.append(addition)
    return tuple(merged)


def _resolve_total(total: Optional[Decimal], items: Sequence[LineItem]) -> Decimal:
    value = sum_items(items) if total is None else data_manager.to_decimal(total)
    require_nonnegative_money(value)
    return value


def _require_payment_method(method: Union[PaymentMethod, str]) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError as exc:
        log.error("Unsupported payment method provided: %s", method)
        raise BusinessRuleViolation(f"Unsupported payment method: {method}") from exc


def _as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with stored timestamps."""
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------


def _product_ref(context: RuntimeContext, product_id: str) -> DocumentRef:
    return context.store.ref(PRODUCTS_SHEET, product_id)


def _read_products(transaction: Transaction, context: RuntimeContext, product_ids: Iterable[str]) -> Dict[str, ProductRow]:
    """Read every product inside ``transaction`` or fail with ``ProductNotFound``."""
    products: Dict[str, ProductRow] = {}
    for product_id in product_ids:
        product = transaction.get(_product_ref(context, product_id))
        if product is None:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise ProductNotFound(product_id)
        products[product_id] = product
    return products


def _check_stock(products: Mapping[str, ProductRow], demand: Mapping[str, int]) -> None:
    """Reject the whole demand if any single product falls short."""
    for product_id, quantity in demand.items():
        product = products[product_id]
        if product.stock < quantity:
            log.warning(
                "Insufficient stock for product '%s': requested %s, available %s",
                product_id,
                quantity,
                product.stock,
            )
            raise InsufficientStock(product_id, quantity, product.stock, product.title)


def _stage_stock_delta(transaction: Transaction, context: RuntimeContext, demand: Mapping[str, int], *, sign: int) -> None:
    for product_id, quantity in demand.items():
        transaction.update(_product_ref(context, product_id), stock=Increment(sign * quantity))


def reserve(context: RuntimeContext, product_id: str, quantity: int) -> ProductRow:
    """Atomically decrement one product's stock after checking sufficiency.

    Args:
        context (RuntimeContext): Runtime context providing the store.
        product_id (str): Product to reserve units of.
        quantity (int): Units to take; must be positive.

    Returns:
        ProductRow: The product as committed after the decrement.

    Raises:
        ProductNotFound: If the product does not exist.
        InsufficientStock: If the product holds fewer than ``quantity`` units.
            Stock is left untouched.
    """
    require_positive_quantity(quantity)
    demand = {product_id: quantity}

    def _apply(transaction: Transaction) -> None:
        products = _read_products(transaction, context, demand)
        _check_stock(products, demand)
        _stage_stock_delta(transaction, context, demand, sign=-1)

    context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info("Reserved %s unit(s) of product '%s'", quantity, product_id)
    return get_product(context, product_id)


def restore(context: RuntimeContext, product_id: str, quantity: int) -> None:
    """Atomically return ``quantity`` units to a product's stock.

    Restores never validate stock; callers guard against double restores by
    checking the status of the document being reversed first.
    """
    require_positive_quantity(quantity)
    increment_stock(context, product_id, quantity)
    log.info("Restored %s unit(s) of product '%s'", quantity, product_id)


def increment_stock(context: RuntimeContext, product_id: str, delta: int) -> None:
    """Apply an unvalidated atomic ``stock += delta`` without reading first.

    Only increments are accepted; every decrement must go through
    :func:`reserve` or a transaction that checks stock.

    Raises:
        ValueError: If ``delta`` is negative.
        ProductNotFound: If the product does not exist.
    """
    if delta < 0:
        raise ValueError("Stock decrements must go through reserve()")
    try:
        context.store.update(_product_ref(context, product_id), stock=Increment(delta))
    except DocumentMissing as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise ProductNotFound(product_id) from exc


def calculate_inventory(context: RuntimeContext) -> Dict[str, int]:
    """Return the committed stock of every product keyed by product id."""
    inventory = {product.product_id: product.stock for product in list_products(context)}
    log.debug("Calculated inventory balances for %d products", len(inventory))
    return inventory


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def add_product(
    context: RuntimeContext,
    *,
    title: str,
    sell_price: Decimal,
    buy_price: Decimal = Decimal("0"),
    stock: int = 0,
    url_image: Optional[str] = None,
    color: Optional[str] = DEFAULT_PRODUCT_COLOR,
) -> ProductRow:
    """Register a new product with a generated id.

    The opening ``stock`` is written as part of the creation; afterwards stock
    only changes through the ledger.

    Raises:
        ValueError: If the title is blank, the sell price is not positive, the
            buy price is negative, or the opening stock is negative.
    """
    title = require_text(title, "Product title")
    sell_price = data_manager.to_decimal(sell_price)
    buy_price = data_manager.to_decimal(buy_price)
    if sell_price <= Decimal("0"):
        log.error("Sell price validation failed: %s", sell_price)
        raise ValueError("Sell price must be greater than zero")
    require_nonnegative_money(buy_price)
    if stock < 0:
        raise ValueError("Opening stock must be zero or positive")

    record = ProductRow(
        product_id="",
        title=title,
        buy_price=buy_price,
        sell_price=sell_price,
        stock=stock,
        url_image=url_image or None,
        color=color or None,
    )
    ref = context.store.add(PRODUCTS_SHEET, record)
    log.info("Registered product '%s' (%s) with stock %s", ref.doc_id, title, stock)
    return get_product(context, ref.doc_id)


def update_product(context: RuntimeContext, product_id: str, **field_values: Any) -> ProductRow:
    """Update catalog fields of an existing product.

    ``stock`` and ``product_id`` cannot be edited here.

    Raises:
        BusinessRuleViolation: If ``stock`` or ``product_id`` is included.
        KeyError: If a field name is not a product field.
        ProductNotFound: If the product does not exist.
    """
    forbidden = {"stock", "product_id"} & set(field_values)
    if forbidden:
        log.warning("Rejected direct edit of %s on product '%s'", ", ".join(sorted(forbidden)), product_id)
        raise BusinessRuleViolation("Product stock and id cannot be edited directly")
    known = {f.name for f in fields(ProductRow)}
    for name in field_values:
        if name not in known:
            raise KeyError(f"Unknown product field: {name}")
    for name in ("buy_price", "sell_price"):
        if name in field_values:
            field_values[name] = data_manager.to_decimal(field_values[name])
            require_nonnegative_money(field_values[name])

    if field_values:
        try:
            context.store.update(_product_ref(context, product_id), **field_values)
        except DocumentMissing as exc:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise ProductNotFound(product_id) from exc
        log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(field_values)))
    return get_product(context, product_id)


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product from the catalog. Historical snapshots are unaffected."""
    ref = _product_ref(context, product_id)

    def _apply(transaction: Transaction) -> None:
        if transaction.get(ref) is None:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise ProductNotFound(product_id)
        transaction.delete(ref)

    context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info("Deleted product '%s'", product_id)


def get_product(context: RuntimeContext, product_id: str) -> ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        ProductNotFound: If ``product_id`` is absent from the store.
    """
    product = context.store.get(_product_ref(context, product_id))
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise ProductNotFound(product_id)
    return product


def _products_query() -> Query:
    return Query(PRODUCTS_SHEET).order_by("title")


def list_products(context: RuntimeContext) -> List[ProductRow]:
    return context.store.query(_products_query())


def watch_products(context: RuntimeContext, callback: Optional[Callable[[List[ProductRow]], None]] = None) -> Subscription:
    """Subscribe to the full product catalog; the caller must close the handle."""
    return context.store.subscribe(_products_query(), callback)


def build_line_item(context: RuntimeContext, product_id: str, quantity: int) -> LineItem:
    """Snapshot a product's current name and prices into a cart line."""
    product = get_product(context, product_id)
    return coerce_line_item(
        LineItem(
            product_id=product.product_id,
            product_name=product.title,
            quantity=quantity,
            price_at_sale=product.sell_price,
            price_at_cost=product.buy_price,
        )
    )


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def _stage_sale(
    transaction: Transaction,
    context: RuntimeContext,
    *,
    items: Tuple[LineItem, ...],
    total: Decimal,
    payment_method: PaymentMethod,
    sale_type: SaleType,
    origin_id: Optional[str] = None,
) -> DocumentRef:
    ref = context.store.new_ref(SALES_SHEET)
    transaction.set(
        ref,
        SaleRow(
            sale_id=ref.doc_id,
            date=SERVER_TIMESTAMP,
            items=items,
            total=total,
            payment_method=payment_method.value,
            sale_type=sale_type.value,
            status=SaleStatus.COMPLETED.value,
            origin_id=origin_id,
        ),
    )
    return ref


def process_sale(context: RuntimeContext, command: SaleCommand, *, affect_stock: bool = True) -> SaleRow:
    """Validate stock for a whole cart and record the sale atomically.

    Within one transaction the routine reads every distinct product on the
    cart, aborts with :class:`InsufficientStock` if any summed quantity exceeds
    the product's stock, and otherwise decrements each product and writes a
    ``completed`` sale stamped with the server time. Either everything commits
    or nothing does.

    Args:
        context (RuntimeContext): Runtime context providing the store.
        command (SaleCommand): Cart, total, payment method, and sale type.
        affect_stock (bool): ``False`` records the sale without touching stock,
            for callers whose units already left the shelf (delivered orders,
            settled tabs).

    Returns:
        SaleRow: The committed sale.

    Raises:
        ProductNotFound: If a cart line references an unknown product.
        InsufficientStock: If any product cannot cover its demand.
        BusinessRuleViolation: If the payment method or sale type is unknown.
        ValueError: If the cart is empty or holds invalid quantities/prices.
        TransactionConflict: If concurrent writers exhausted the retry budget.
    """
    items = coerce_line_items(command.items)
    total = _resolve_total(command.total, items)
    payment_method = _require_payment_method(command.payment_method)
    try:
        sale_type = SaleType(command.sale_type)
    except ValueError as exc:
        log.error("Unsupported sale type provided: %s", command.sale_type)
        raise BusinessRuleViolation(f"Unsupported sale type: {command.sale_type}") from exc
    demand = aggregate_quantities(items)

    def _apply(transaction: Transaction) -> DocumentRef:
        if affect_stock:
            products = _read_products(transaction, context, demand)
            _check_stock(products, demand)
            _stage_stock_delta(transaction, context, demand, sign=-1)
        return _stage_sale(
            transaction,
            context,
            items=items,
            total=total,
            payment_method=payment_method,
            sale_type=sale_type,
        )

    sale_ref = context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info(
        "Recorded %s sale '%s' with %d item(s) (total=%s, payment=%s, stock_moved=%s)",
        sale_type.value,
        sale_ref.doc_id,
        len(items),
        total,
        payment_method.value,
        affect_stock,
    )
    return get_sale(context, sale_ref.doc_id)


def cancel_sale(context: RuntimeContext, sale_id: str) -> SaleRow:
    """Cancel a sale and return its units to stock in one transaction.

    The sale is kept with ``status = canceled`` so reports still see it. A
    sale that is already canceled is returned unchanged and stock is not
    restored a second time.

    Raises:
        SaleNotFound: If ``sale_id`` does not resolve.
        ProductNotFound: If a product on the sale no longer exists.
    """
    ref = context.store.ref(SALES_SHEET, sale_id)

    def _apply(transaction: Transaction) -> bool:
        sale = transaction.get(ref)
        if sale is None:
            log.warning("Sale lookup failed for id '%s'", sale_id)
            raise SaleNotFound(sale_id)
        if sale.status == SaleStatus.CANCELED.value:
            return False
        demand = aggregate_quantities(sale.items)
        _read_products(transaction, context, demand)
        _stage_stock_delta(transaction, context, demand, sign=1)
        transaction.update(ref, status=SaleStatus.CANCELED.value, canceled_at=SERVER_TIMESTAMP)
        return True

    changed = context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    if changed:
        log.info("Canceled sale '%s' and restored its stock", sale_id)
    else:
        log.info("Sale '%s' was already canceled; nothing restored", sale_id)
    return get_sale(context, sale_id)


def get_sale(context: RuntimeContext, sale_id: str) -> SaleRow:
    sale = context.store.get(context.store.ref(SALES_SHEET, sale_id))
    if sale is None:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise SaleNotFound(sale_id)
    return sale


def _sales_query(start: Optional[datetime] = None, end: Optional[datetime] = None) -> Query:
    query = Query(SALES_SHEET)
    if start is not None:
        query = query.where("date", ">=", _as_utc(start))
    if end is not None:
        query = query.where("date", "<=", _as_utc(end))
    return query.order_by("date", descending=True)


def list_sales(context: RuntimeContext) -> List[SaleRow]:
    """Return every sale, newest first."""
    return context.store.query(_sales_query())


def list_sales_between(context: RuntimeContext, start: datetime, end: datetime) -> List[SaleRow]:
    """Return sales dated within ``[start, end]`` (inclusive), newest first.

    Naive datetimes are interpreted as UTC.
    """
    return context.store.query(_sales_query(start, end))


def watch_sales(
    context: RuntimeContext,
    callback: Optional[Callable[[List[SaleRow]], None]] = None,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Subscription:
    return context.store.subscribe(_sales_query(start, end), callback)


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


def add_purchase(context: RuntimeContext, command: PurchaseCommand) -> PurchaseRow:
    """Record a stock intake and update the product's cost basis atomically.

    In one transaction the product's stock grows by ``amount``, its
    ``buy_price`` is overwritten with ``unity_value``, and a purchase record
    stamped with the server time is written.

    Raises:
        ProductNotFound: If the product does not exist.
        ValueError: If ``amount`` is not positive or ``unity_value`` negative.
    """
    amount = data_manager.to_int(command.amount)
    unity_value = data_manager.to_decimal(command.unity_value)
    require_positive_quantity(amount)
    require_nonnegative_money(unity_value)
    product_ref = _product_ref(context, command.product_id)

    def _apply(transaction: Transaction) -> DocumentRef:
        if transaction.get(product_ref) is None:
            log.warning("Purchase targets unknown product '%s'", command.product_id)
            raise ProductNotFound(command.product_id)
        transaction.update(product_ref, stock=Increment(amount), buy_price=unity_value)
        purchase_ref = context.store.new_ref(PURCHASES_SHEET)
        transaction.set(
            purchase_ref,
            PurchaseRow(
                purchase_id=purchase_ref.doc_id,
                product_id=command.product_id,
                amount=amount,
                unity_value=unity_value,
                date=SERVER_TIMESTAMP,
            ),
        )
        return purchase_ref

    purchase_ref = context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info(
        "Recorded purchase '%s' for product '%s' (amount=%s, unity_value=%s)",
        purchase_ref.doc_id,
        command.product_id,
        amount,
        unity_value,
    )
    return get_purchase(context, purchase_ref.doc_id)


def delete_purchase(context: RuntimeContext, purchase_id: str) -> PurchaseRow:
    """Delete a purchase and take its units back out of stock.

    Returns:
        PurchaseRow: The purchase as it was before deletion.

    Raises:
        PurchaseNotFound: If the purchase does not exist.
        ProductNotFound: If its product no longer exists.
        InsufficientStockForReversal: If the product holds fewer units than
            the purchase added.
    """
    ref = context.store.ref(PURCHASES_SHEET, purchase_id)

    def _apply(transaction: Transaction) -> PurchaseRow:
        purchase = transaction.get(ref)
        if purchase is None:
            log.warning("Purchase lookup failed for id '%s'", purchase_id)
            raise PurchaseNotFound(purchase_id)
        product_ref = _product_ref(context, purchase.product_id)
        product = transaction.get(product_ref)
        if product is None:
            log.warning("Product '%s' missing while reversing purchase '%s'", purchase.product_id, purchase_id)
            raise ProductNotFound(purchase.product_id)
        if product.stock < purchase.amount:
            log.warning(
                "Refused to reverse purchase '%s': stock %s below amount %s",
                purchase_id,
                product.stock,
                purchase.amount,
            )
            raise InsufficientStockForReversal(purchase_id, purchase.product_id, purchase.amount, product.stock)
        transaction.update(product_ref, stock=Increment(-purchase.amount))
        transaction.delete(ref)
        return purchase

    purchase = context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info("Deleted purchase '%s' and removed %s unit(s) of '%s'", purchase_id, purchase.amount, purchase.product_id)
    return purchase


def get_purchase(context: RuntimeContext, purchase_id: str) -> PurchaseRow:
    purchase = context.store.get(context.store.ref(PURCHASES_SHEET, purchase_id))
    if purchase is None:
        log.warning("Purchase lookup failed for id '%s'", purchase_id)
        raise PurchaseNotFound(purchase_id)
    return purchase


def list_purchases(context: RuntimeContext, product_id: Optional[str] = None) -> List[PurchaseRow]:
    """Return purchases newest first, optionally for a single product."""
    query = Query(PURCHASES_SHEET)
    if product_id is not None:
        query = query.where("product_id", "==", product_id)
    return context.store.query(query.order_by("date", descending=True))


# ---------------------------------------------------------------------------
# Tabs (comandas)
# ---------------------------------------------------------------------------


def _comanda_ref(context: RuntimeContext, comanda_id: str) -> DocumentRef:
    return context.store.ref(COMANDAS_SHEET, comanda_id)


def _read_open_comanda(transaction: Transaction, ref: DocumentRef, target: ComandaStatus) -> ComandaRow:
    comanda = transaction.get(ref)
    if comanda is None:
        log.warning("Comanda lookup failed for id '%s'", ref.doc_id)
        raise ComandaNotFound(ref.doc_id)
    if comanda.status != ComandaStatus.OPEN.value:
        log.warning("Comanda '%s' is %s, not open", ref.doc_id, comanda.status)
        raise InvalidStatusTransition("Comanda", ref.doc_id, comanda.status, target.value)
    return comanda


def open_comanda(context: RuntimeContext, command: ComandaCommand) -> ComandaRow:
    """Open a tab, reserving stock for its first items immediately.

    Stock for every item is checked and decremented in the same transaction
    that creates the tab, so a shortfall on any line leaves nothing behind.

    Raises:
        ValueError: If the customer name is blank or the cart invalid.
        ProductNotFound: If a line references an unknown product.
        InsufficientStock: If any product cannot cover its demand.
    """
    customer_name = require_text(command.customer_name, "Customer name")
    items = coerce_line_items(command.items)
    total = _resolve_total(command.total, items)
    demand = aggregate_quantities(items)

    def _apply(transaction: Transaction) -> DocumentRef:
        products = _read_products(transaction, context, demand)
        _check_stock(products, demand)
        _stage_stock_delta(transaction, context, demand, sign=-1)
        ref = context.store.new_ref(COMANDAS_SHEET)
        transaction.set(
            ref,
            ComandaRow(
                comanda_id=ref.doc_id,
                customer_name=customer_name,
                items=items,
                total=total,
                created_at=SERVER_TIMESTAMP,
                status=ComandaStatus.OPEN.value,
            ),
        )
        return ref

    ref = context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info("Opened comanda '%s' for %s (total=%s)", ref.doc_id, customer_name, total)
    return get_comanda(context, ref.doc_id)


def add_items_to_comanda(
    context: RuntimeContext,
    comanda_id: str,
    items: Sequence[RawLineItem],
    additional_total: Optional[Decimal] = None,
) -> ComandaRow:
    """Reserve stock for more items and merge them into an open tab.

    Lines for a product already on the tab accumulate quantity; new products
    are appended. The tab total grows by ``additional_total`` (the sum of the
    new lines when omitted).

    Raises:
        ComandaNotFound: If the tab does not exist.
        InvalidStatusTransition: If the tab is already closed.
        ProductNotFound: If a line references an unknown product.
        InsufficientStock: If any product cannot cover its demand.
    """
    new_items = coerce_line_items(items)
    additional = _resolve_total(additional_total, new_items)
    demand = aggregate_quantities(new_items)
    ref = _comanda_ref(context, comanda_id)

    def _apply(transaction: Transaction) -> None:
        comanda = _read_open_comanda(transaction, ref, ComandaStatus.OPEN)
        products = _read_products(transaction, context, demand)
        _check_stock(products, demand)
        _stage_stock_delta(transaction, context, demand, sign=-1)
        transaction.update(
            ref,
            items=merge_line_items(comanda.items, new_items),
            total=comanda.total + additional,
        )

    context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info("Added %d item(s) to comanda '%s' (+%s)", len(new_items), comanda_id, additional)
    return get_comanda(context, comanda_id)


def close_comanda(
    context: RuntimeContext,
    comanda_id: str,
    payment_method: Optional[Union[PaymentMethod, str]] = None,
) -> ComandaRow:
    """Close an open tab. Closing never touches stock.

    Without ``payment_method`` this is a pure status flip and the caller is
    responsible for having recorded the payment. With ``payment_method`` the
    settling sale (tab items and total, ``sale_type = pdv``, no stock effect)
    is written in the same transaction and its id stored on the tab.

    Raises:
        ComandaNotFound: If the tab does not exist.
        InvalidStatusTransition: If the tab is already closed.
        BusinessRuleViolation: If the payment method is unknown.
    """
    method = _require_payment_method(payment_method) if payment_method is not None else None
    ref = _comanda_ref(context, comanda_id)

    def _apply(transaction: Transaction) -> Optional[DocumentRef]:
        comanda = _read_open_comanda(transaction, ref, ComandaStatus.CLOSED)
        changes: Dict[str, Any] = {
            "status": ComandaStatus.CLOSED.value,
            "closed_at": SERVER_TIMESTAMP,
        }
        sale_ref = None
        if method is not None:
            sale_ref = _stage_sale(
                transaction,
                context,
                items=comanda.items,
                total=comanda.total,
                payment_method=method,
                sale_type=SaleType.PDV,
                origin_id=comanda.comanda_id,
            )
            changes["sale_id"] = sale_ref.doc_id
        transaction.update(ref, **changes)
        return sale_ref

    sale_ref = context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    if sale_ref is None:
        log.info("Closed comanda '%s'", comanda_id)
    else:
        log.info("Closed comanda '%s' settled by sale '%s'", comanda_id, sale_ref.doc_id)
    return get_comanda(context, comanda_id)


def get_comanda(context: RuntimeContext, comanda_id: str) -> ComandaRow:
    comanda = context.store.get(_comanda_ref(context, comanda_id))
    if comanda is None:
        log.warning("Comanda lookup failed for id '%s'", comanda_id)
        raise ComandaNotFound(comanda_id)
    return comanda


def _open_comandas_query() -> Query:
    return (
        Query(COMANDAS_SHEET)
        .where("status", "==", ComandaStatus.OPEN.value)
        .order_by("created_at", descending=True)
    )


def list_open_comandas(context: RuntimeContext) -> List[ComandaRow]:
    """Return open tabs, most recently opened first."""
    return context.store.query(_open_comandas_query())


def watch_open_comandas(context: RuntimeContext, callback: Optional[Callable[[List[ComandaRow]], None]] = None) -> Subscription:
    return context.store.subscribe(_open_comandas_query(), callback)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def _order_ref(context: RuntimeContext, order_id: str) -> DocumentRef:
    return context.store.ref(ORDERS_SHEET, order_id)


def _read_order(transaction: Transaction, ref: DocumentRef) -> OrderRow:
    order = transaction.get(ref)
    if order is None:
        log.warning("Order lookup failed for id '%s'", ref.doc_id)
        raise OrderNotFound(ref.doc_id)
    return order


def can_transition(current: Union[OrderStatus, str], target: Union[OrderStatus, str]) -> bool:
    """Return whether an order may move from ``current`` to ``target``."""
    try:
        return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]
    except ValueError:
        return False


def _require_transition(order: OrderRow, target: OrderStatus) -> None:
    if not can_transition(order.status, target):
        log.warning("Order '%s' cannot move from '%s' to '%s'", order.order_id, order.status, target.value)
        raise InvalidStatusTransition("Order", order.order_id or "", order.status, target.value)


def add_order(context: RuntimeContext, command: OrderCommand) -> OrderRow:
    """Schedule a new order in ``pending``.

    The total is always computed here as ``items_total + shipping_cost``;
    ``items_total`` defaults to the sum of the lines. No stock moves until the
    order is delivered.

    Raises:
        ValueError: If the customer name is blank, the cart is empty or
            invalid, or the shipping cost is negative.
        BusinessRuleViolation: If the delivery type is unknown or a delivery
            order has no address.
    """
    customer_name = require_text(command.customer_name, "Customer name")
    items = coerce_line_items(command.items)
    try:
        delivery_type = DeliveryType(command.delivery_type)
    except ValueError as exc:
        log.error("Unsupported delivery type provided: %s", command.delivery_type)
        raise BusinessRuleViolation(f"Unsupported delivery type: {command.delivery_type}") from exc
    address = (command.address or "").strip() or None
    if delivery_type is DeliveryType.DELIVERY and address is None:
        log.warning("Rejected delivery order for %s without an address", customer_name)
        raise BusinessRuleViolation("Delivery orders require an address")
    shipping_cost = data_manager.to_decimal(command.shipping_cost)
    require_nonnegative_money(shipping_cost)
    items_total = _resolve_total(command.items_total, items)

    record = OrderRow(
        order_id=None,
        customer_name=customer_name,
        customer_phone=(command.customer_phone or "").strip() or None,
        items=items,
        items_total=items_total,
        shipping_cost=shipping_cost,
        total=items_total + shipping_cost,
        delivery_type=delivery_type.value,
        address=address,
        status=OrderStatus.PENDING.value,
        created_at=SERVER_TIMESTAMP,
        scheduled_date=_as_utc(command.scheduled_date),
        observations=(command.observations or "").strip() or None,
    )
    ref = context.store.add(ORDERS_SHEET, record)
    log.info("Scheduled %s order '%s' for %s (total=%s)", delivery_type.value, ref.doc_id, customer_name, record.total)
    return get_order(context, ref.doc_id)


def mark_as_delivered(context: RuntimeContext, order_id: str) -> OrderRow:
    """Hand a pending order over and take its units out of stock.

    Every item is checked and decremented in one transaction together with the
    status change and the ``actual_delivery_date`` stamp.

    Raises:
        OrderNotFound: If the order does not exist.
        InvalidStatusTransition: If the order is not pending.
        ProductNotFound: If a line references an unknown product.
        InsufficientStock: If any product cannot cover its demand.
    """
    ref = _order_ref(context, order_id)

    def _apply(transaction: Transaction) -> None:
        order = _read_order(transaction, ref)
        _require_transition(order, OrderStatus.DELIVERED)
        demand = aggregate_quantities(order.items)
        products = _read_products(transaction, context, demand)
        _check_stock(products, demand)
        _stage_stock_delta(transaction, context, demand, sign=-1)
        transaction.update(ref, status=OrderStatus.DELIVERED.value, actual_delivery_date=SERVER_TIMESTAMP)

    context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info("Order '%s' delivered", order_id)
    return get_order(context, order_id)


def finalize_order(context: RuntimeContext, order: OrderRow, payment_method: Union[PaymentMethod, str]) -> OrderRow:
    """Collect payment for a delivered order and record it as a sale.

    The sale (``sale_type = order``) is built from the stored order's items
    and total and does not move stock again, since the units left at delivery.
    Sale creation and the switch to ``finished`` with ``payment_date`` and
    ``closing_date`` commit together.

    Args:
        context (RuntimeContext): Runtime context providing the store.
        order (OrderRow): The order to finalize; only its id is trusted.
        payment_method (PaymentMethod | str): How the customer paid.

    Returns:
        OrderRow: The finished order, carrying the new ``sale_id``.

    Raises:
        OrderMissingId: If ``order`` carries no id.
        OrderNotFound: If the order does not exist.
        InvalidStatusTransition: If the order is not delivered.
    """
    order_id = getattr(order, "order_id", None)
    if not order_id:
        log.error("Refused to finalize an order without an id")
        raise OrderMissingId("Cannot finalize an order without an id")
    method = _require_payment_method(payment_method)
    ref = _order_ref(context, order_id)

    def _apply(transaction: Transaction) -> DocumentRef:
        current = _read_order(transaction, ref)
        _require_transition(current, OrderStatus.FINISHED)
        sale_ref = _stage_sale(
            transaction,
            context,
            items=current.items,
            total=current.total,
            payment_method=method,
            sale_type=SaleType.ORDER,
            origin_id=order_id,
        )
        transaction.update(
            ref,
            status=OrderStatus.FINISHED.value,
            payment_date=SERVER_TIMESTAMP,
            closing_date=SERVER_TIMESTAMP,
            payment_method=method.value,
            sale_id=sale_ref.doc_id,
        )
        return sale_ref

    sale_ref = context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    log.info("Finalized order '%s' as sale '%s' (%s)", order_id, sale_ref.doc_id, method.value)
    return get_order(context, order_id)


def cancel_order(context: RuntimeContext, order_id: str) -> OrderRow:
    """Cancel a pending or delivered order.

    A delivered order gets its units back in the same transaction that flips
    the status; a pending order never moved stock. Cancelling an order that
    is already canceled is a no-op, so stock is never restored twice.

    Raises:
        OrderNotFound: If the order does not exist.
        InvalidStatusTransition: If the order is finished.
        ProductNotFound: If a delivered line's product no longer exists.
    """
    ref = _order_ref(context, order_id)

    def _apply(transaction: Transaction) -> bool:
        order = _read_order(transaction, ref)
        if order.status == OrderStatus.CANCELED.value:
            return False
        _require_transition(order, OrderStatus.CANCELED)
        if order.status == OrderStatus.DELIVERED.value:
            demand = aggregate_quantities(order.items)
            _read_products(transaction, context, demand)
            _stage_stock_delta(transaction, context, demand, sign=1)
        transaction.update(ref, status=OrderStatus.CANCELED.value, canceled_date=SERVER_TIMESTAMP)
        return True

    changed = context.store.run_transaction(_apply, max_attempts=context.max_attempts)
    if changed:
        log.info("Canceled order '%s'", order_id)
    else:
        log.info("Order '%s' was already canceled", order_id)
    return get_order(context, order_id)


def get_order(context: RuntimeContext, order_id: str) -> OrderRow:
    order = context.store.get(_order_ref(context, order_id))
    if order is None:
        log.warning("Order lookup failed for id '%s'", order_id)
        raise OrderNotFound(order_id)
    return order


def _orders_query() -> Query:
    return Query(ORDERS_SHEET).order_by("created_at", descending=True)


def list_orders(context: RuntimeContext) -> List[OrderRow]:
    """Return every order, newest first."""
    return context.store.query(_orders_query())


def list_orders_by_status(context: RuntimeContext, status: Union[OrderStatus, str]) -> List[OrderRow]:
    query = (
        Query(ORDERS_SHEET)
        .where("status", "==", OrderStatus(status).value)
        .order_by("created_at", descending=True)
    )
    return context.store.query(query)


def filter_active_orders(orders: Iterable[OrderRow], bucket: Union[OrderBucket, str] = OrderBucket.ALL) -> List[OrderRow]:
    """Filter an order list client-side into one of the board buckets.

    ``all`` keeps every order that is neither finished nor canceled,
    ``pending`` keeps pending orders, and ``delivery`` keeps delivered ones.
    """
    bucket = OrderBucket(bucket)
    if bucket is OrderBucket.PENDING:
        wanted = {OrderStatus.PENDING.value}
    elif bucket is OrderBucket.DELIVERY:
        wanted = {OrderStatus.DELIVERED.value}
    else:
        wanted = {OrderStatus.PENDING.value, OrderStatus.DELIVERED.value}
    return [order for order in orders if order.status in wanted]


def list_active_orders(context: RuntimeContext, bucket: Union[OrderBucket, str] = OrderBucket.ALL) -> List[OrderRow]:
    return filter_active_orders(list_orders(context), bucket)


def watch_orders(context: RuntimeContext, callback: Optional[Callable[[List[OrderRow]], None]] = None) -> Subscription:
    return context.store.subscribe(_orders_query(), callback)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def compute_report(
    context: RuntimeContext,
    start: datetime,
    end: datetime,
    product_id: Optional[str] = None,
) -> SalesReport:
    """Aggregate revenue, cost, profit, and margin for a date range.

    Only ``completed`` sales dated within ``[start, end]`` are considered.
    Per matching line, revenue adds ``price_at_sale * quantity`` and cost adds
    ``price_at_cost * quantity``. With ``product_id`` only that product's lines
    match, and a sale is counted once if at least one of its lines matched.
    ``margin`` is ``profit / revenue * 100``, or zero without revenue.

    Args:
        context (RuntimeContext): Runtime context providing the store.
        start (datetime): Inclusive lower bound; naive values are UTC.
        end (datetime): Inclusive upper bound; naive values are UTC.
        product_id (str | None): Optional product filter.

    Returns:
        SalesReport: Aggregated figures for the range.

    Raises:
        ValueError: If ``end`` precedes ``start``.
    """
    if _as_utc(end) < _as_utc(start):
        raise ValueError("Report end must not precede its start")

    revenue = Decimal("0")
    cost = Decimal("0")
    sales_count = 0
    for sale in list_sales_between(context, start, end):
        if sale.status != SaleStatus.COMPLETED.value:
            continue
        matched = False
        for item in sale.items:
            if product_id and item.product_id != product_id:
                continue
            revenue += item.subtotal
            cost += item.cost_subtotal
            matched = True
        if matched:
            sales_count += 1

    profit = revenue - cost
    margin = (profit / revenue * 100) if revenue > 0 else Decimal("0")
    log.debug(
        "Calculated report %s..%s: revenue=%s cost=%s profit=%s sales=%s",
        start,
        end,
        revenue,
        cost,
        profit,
        sales_count,
    )
    return SalesReport(revenue=revenue, cost=cost, profit=profit, sales_count=sales_count, margin=margin)


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "ProductNotFound",
    "SaleNotFound",
    "PurchaseNotFound",
    "ComandaNotFound",
    "OrderNotFound",
    "InsufficientStock",
    "InsufficientStockForReversal",
    "OrderMissingId",
    "InvalidStatusTransition",
    "TransactionConflict",
    "RuntimeContext",
    "SaleCommand",
    "PurchaseCommand",
    "ComandaCommand",
    "OrderCommand",
    "SalesReport",
]
