"""Unit tests for the business logic layer: catalog, ledger, sales, purchases, reports."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest

from bar_pos import constants, core_logic, data_manager
from bar_pos.document_store import DocumentStore

from conftest import BASE_MOMENT, run_in_threads


def _sale(context, *lines, payment=constants.PaymentMethod.CASH, total=None):
    items = [core_logic.build_line_item(context, product.product_id, quantity) for product, quantity in lines]
    return core_logic.process_sale(context, core_logic.SaleCommand(items=items, total=total, payment_method=payment))


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings and a store into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "data.xlsx",
        store_name="Bar",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert isinstance(context.store, DocumentStore)
    assert context.store.workbook is workbook
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)


def test_load_runtime_context_logs_beside_workbook(config_file):
    context = core_logic.load_runtime_context(config_file)

    log_file = context.settings.data_file.parent / constants.DEFAULT_LOG_DIR_NAME / "bar_pos.log"
    assert log_file.exists()
    assert "Loaded runtime context" in log_file.read_text(encoding="utf-8")


def test_load_runtime_context_honours_log_settings(config_factory):
    bundle = config_factory()
    bundle.config_path.write_text(
        bundle.config_path.read_text().replace(
            "[Transactions]", "LogDir = custom_logs\nLogLevel = WARNING\n\n[Transactions]"
        )
    )

    context = core_logic.load_runtime_context(bundle.config_path)

    assert context.settings.resolved_log_dir == (bundle.directory / "custom_logs").resolve()
    assert logging.getLogger("bar_pos").getEffectiveLevel() == logging.WARNING
    assert (bundle.directory / "custom_logs" / "bar_pos.log").exists()


def test_ensure_schema_version_rejects_mismatch(context):
    bad_context = core_logic.RuntimeContext(
        settings=replace(context.settings, schema_version="0.9"),
        store=context.store,
    )
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_persist_and_refresh_context(context, product_factory):
    product = product_factory(stock=4)
    core_logic.persist_context(context)

    reloaded = core_logic.refresh_context(context)

    assert reloaded.store is not context.store
    assert core_logic.get_product(reloaded, product.product_id).stock == 4


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


def test_coerce_line_item_accepts_wire_names_and_fills_defaults():
    item = core_logic.coerce_line_item({"idProduct": "P1", "priceAtSale": "7.5"})

    assert item == data_manager.LineItem("P1", constants.DEFAULT_PRODUCT_NAME, 1, Decimal("7.5"), Decimal("0"))


def test_coerce_line_item_accepts_snake_case_mapping():
    item = core_logic.coerce_line_item(
        {"product_id": "P2", "product_name": " Gin ", "quantity": "3", "price_at_sale": 20, "price_at_cost": 8}
    )

    assert item.product_name == "Gin"
    assert item.quantity == 3
    assert item.subtotal == Decimal("60")
    assert item.cost_subtotal == Decimal("24")


@pytest.mark.parametrize(
    "raw",
    [
        {"quantity": 1},
        {"idProduct": "P1", "quantity": 0},
        {"idProduct": "P1", "quantity": -2},
        {"idProduct": "P1", "priceAtSale": "-1"},
    ],
)
def test_coerce_line_item_rejects_invalid_lines(raw):
    with pytest.raises(ValueError):
        core_logic.coerce_line_item(raw)


def test_coerce_line_items_rejects_empty_cart():
    with pytest.raises(ValueError):
        core_logic.coerce_line_items([])


def test_aggregate_quantities_sums_repeated_products():
    items = core_logic.coerce_line_items(
        [{"idProduct": "P1", "quantity": 2}, {"idProduct": "P2"}, {"idProduct": "P1", "quantity": 3}]
    )

    assert core_logic.aggregate_quantities(items) == {"P1": 5, "P2": 1}


def test_merge_line_items_accumulates_and_appends():
    existing = (data_manager.LineItem("P1", "Beer", 2, Decimal("10"), Decimal("4")),)
    additions = (
        data_manager.LineItem("P1", "Beer", 1, Decimal("12"), Decimal("5")),
        data_manager.LineItem("P2", "Gin", 1, Decimal("20"), Decimal("8")),
    )

    merged = core_logic.merge_line_items(existing, additions)

    assert [(item.product_id, item.quantity) for item in merged] == [("P1", 3), ("P2", 1)]
    assert merged[0].price_at_sale == Decimal("10")
    assert existing[0].quantity == 2


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def test_add_product_generates_id_and_defaults(context):
    product = core_logic.add_product(context, title="  Lager ", sell_price=Decimal("9.90"))

    assert product.product_id.startswith("P")
    assert product.title == "Lager"
    assert product.stock == 0
    assert product.buy_price == Decimal("0")
    assert product.color == constants.DEFAULT_PRODUCT_COLOR


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "  "},
        {"sell_price": Decimal("0")},
        {"buy_price": Decimal("-1")},
        {"stock": -1},
    ],
)
def test_add_product_validates_input(context, overrides):
    arguments = {"title": "Beer", "sell_price": Decimal("10"), **overrides}
    with pytest.raises(ValueError):
        core_logic.add_product(context, **arguments)
    assert core_logic.list_products(context) == []


def test_update_product_changes_catalog_fields(context, product_factory):
    product = product_factory()

    updated = core_logic.update_product(context, product.product_id, title="Draft Beer", sell_price="11.50")

    assert updated.title == "Draft Beer"
    assert updated.sell_price == Decimal("11.50")
    assert updated.stock == product.stock


def test_update_product_refuses_stock_edits(context, product_factory):
    product = product_factory(stock=3)

    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.update_product(context, product.product_id, stock=100)
    with pytest.raises(KeyError):
        core_logic.update_product(context, product.product_id, flavour="lime")
    assert core_logic.get_product(context, product.product_id).stock == 3


def test_update_and_delete_unknown_product(context):
    with pytest.raises(core_logic.ProductNotFound):
        core_logic.update_product(context, "P-missing", title="Ghost")
    with pytest.raises(core_logic.ProductNotFound):
        core_logic.delete_product(context, "P-missing")


def test_delete_product_keeps_sale_snapshots(context, product_factory):
    product = product_factory()
    sale = _sale(context, (product, 1))

    core_logic.delete_product(context, product.product_id)

    assert core_logic.list_products(context) == []
    assert core_logic.get_sale(context, sale.sale_id).items[0].product_name == "Beer"


def test_list_products_orders_by_title(context, product_factory):
    product_factory("Whisky")
    product_factory("Beer")

    assert [p.title for p in core_logic.list_products(context)] == ["Beer", "Whisky"]


def test_watch_products_receives_catalog_changes(context, product_factory):
    snapshots = []
    subscription = core_logic.watch_products(context, snapshots.append)
    product_factory("Beer")
    subscription.close()
    product_factory("Gin")

    assert [[p.title for p in snapshot] for snapshot in snapshots] == [[], ["Beer"]]
    assert context.store.active_subscriptions == 0


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------


def test_reserve_decrements_stock(context, product_factory):
    product = product_factory(stock=5)

    result = core_logic.reserve(context, product.product_id, 3)

    assert result.stock == 2


def test_reserve_refuses_to_go_negative(context, product_factory):
    product = product_factory(stock=2)

    with pytest.raises(core_logic.InsufficientStock) as excinfo:
        core_logic.reserve(context, product.product_id, 3)

    assert excinfo.value.product_id == product.product_id
    assert excinfo.value.requested == 3
    assert excinfo.value.available == 2
    assert core_logic.get_product(context, product.product_id).stock == 2


def test_reserve_unknown_product(context):
    with pytest.raises(core_logic.ProductNotFound):
        core_logic.reserve(context, "P-missing", 1)


def test_restore_and_increment_stock(context, product_factory):
    product = product_factory(stock=0)

    core_logic.restore(context, product.product_id, 4)
    core_logic.increment_stock(context, product.product_id, 1)

    assert core_logic.calculate_inventory(context) == {product.product_id: 5}


def test_increment_stock_rejects_decrements_and_unknown_products(context, product_factory):
    product = product_factory(stock=1)

    with pytest.raises(ValueError):
        core_logic.increment_stock(context, product.product_id, -1)
    with pytest.raises(core_logic.ProductNotFound):
        core_logic.increment_stock(context, "P-missing", 1)


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def test_process_sale_decrements_stock_and_records_sale(context, product_factory):
    """A valid cart moves stock and money in one step."""

    product = product_factory(stock=5, sell_price="10", buy_price="4")

    sale = _sale(context, (product, 3), payment=constants.PaymentMethod.PIX, total=Decimal("30"))

    assert core_logic.get_product(context, product.product_id).stock == 2
    assert sale.status == constants.SaleStatus.COMPLETED.value
    assert sale.sale_type == constants.SaleType.PDV.value
    assert sale.payment_method == "pix"
    assert sale.total == Decimal("30")
    assert sale.date is not None
    assert sale.items[0].price_at_cost == Decimal("4")


def test_process_sale_defaults_total_to_item_sum(context, product_factory):
    beer = product_factory("Beer", sell_price="10")
    gin = product_factory("Gin", sell_price="25.50")

    sale = _sale(context, (beer, 2), (gin, 1))

    assert sale.total == Decimal("45.50")


def test_process_sale_insufficient_stock_changes_nothing(context, product_factory):
    product = product_factory(stock=5)

    with pytest.raises(core_logic.InsufficientStock):
        _sale(context, (product, 6))

    assert core_logic.get_product(context, product.product_id).stock == 5
    assert core_logic.list_sales(context) == []


def test_process_sale_is_all_or_nothing_across_products(context, product_factory):
    beer = product_factory("Beer", stock=10)
    gin = product_factory("Gin", stock=1)

    with pytest.raises(core_logic.InsufficientStock) as excinfo:
        _sale(context, (beer, 3), (gin, 2))

    assert excinfo.value.product_id == gin.product_id
    assert core_logic.calculate_inventory(context) == {beer.product_id: 10, gin.product_id: 1}
    assert core_logic.list_sales(context) == []


def test_process_sale_checks_summed_quantity_per_product(context, product_factory):
    """Two lines for the same product must be checked against stock together."""

    product = product_factory(stock=4)
    items = [
        core_logic.build_line_item(context, product.product_id, 3),
        core_logic.build_line_item(context, product.product_id, 2),
    ]

    with pytest.raises(core_logic.InsufficientStock):
        core_logic.process_sale(context, core_logic.SaleCommand(items=items))

    assert core_logic.get_product(context, product.product_id).stock == 4


def test_process_sale_unknown_product(context):
    command = core_logic.SaleCommand(items=[{"idProduct": "P-missing", "quantity": 1}])
    with pytest.raises(core_logic.ProductNotFound):
        core_logic.process_sale(context, command)
    assert core_logic.list_sales(context) == []


def test_process_sale_rejects_unknown_payment_method(context, product_factory):
    product = product_factory()
    items = [core_logic.build_line_item(context, product.product_id, 1)]

    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.process_sale(context, core_logic.SaleCommand(items=items, payment_method="card"))
    assert core_logic.get_product(context, product.product_id).stock == 10


def test_process_sale_without_stock_effect(context, product_factory):
    product = product_factory(stock=0)
    items = [core_logic.build_line_item(context, product.product_id, 2)]

    sale = core_logic.process_sale(
        context,
        core_logic.SaleCommand(items=items, sale_type=constants.SaleType.ORDER),
        affect_stock=False,
    )

    assert sale.sale_type == "order"
    assert core_logic.get_product(context, product.product_id).stock == 0


def test_process_sale_logs_success(context, product_factory, caplog):
    product = product_factory()
    with caplog.at_level(logging.INFO, logger="bar_pos"):
        _sale(context, (product, 1))
    assert "Recorded pdv sale" in caplog.text


def test_cancel_sale_restores_stock_once(context, product_factory):
    product = product_factory(stock=5)
    sale = _sale(context, (product, 3))

    canceled = core_logic.cancel_sale(context, sale.sale_id)
    again = core_logic.cancel_sale(context, sale.sale_id)

    assert canceled.status == constants.SaleStatus.CANCELED.value
    assert canceled.canceled_at is not None
    assert again.canceled_at == canceled.canceled_at
    assert core_logic.get_product(context, product.product_id).stock == 5
    assert len(core_logic.list_sales(context)) == 1


def test_concurrent_sales_never_oversell(racing_context, product_factory):
    product = product_factory(stock=50)
    item = core_logic.build_line_item(racing_context, product.product_id, 1)

    def sell(_index):
        sold = 0
        for _ in range(20):
            try:
                core_logic.process_sale(racing_context, core_logic.SaleCommand(items=[item]))
            except core_logic.InsufficientStock:
                continue
            sold += 1
        return sold

    sold = sum(run_in_threads(8, sell))

    stock = core_logic.get_product(racing_context, product.product_id).stock
    recorded = sum(line.quantity for sale in core_logic.list_sales(racing_context) for line in sale.items)
    assert stock == 0
    assert sold == recorded == 50


def test_cancel_unknown_sale(context):
    with pytest.raises(core_logic.SaleNotFound):
        core_logic.cancel_sale(context, "S-missing")


def test_list_sales_between_is_inclusive_and_newest_first(context, product_factory, clock):
    product = product_factory(stock=10)
    clock.jump_to(datetime(2024, 5, 1, 12, 0, tzinfo=UTC))
    first = _sale(context, (product, 1))
    clock.jump_to(datetime(2024, 5, 2, 12, 0, tzinfo=UTC))
    second = _sale(context, (product, 1))
    clock.jump_to(datetime(2024, 6, 1, 12, 0, tzinfo=UTC))
    _sale(context, (product, 1))

    listed = core_logic.list_sales_between(context, first.date, datetime(2024, 5, 31))

    assert [sale.sale_id for sale in listed] == [second.sale_id, first.sale_id]


def test_list_sales_between_accepts_hand_edited_dates(context, product_factory):
    product = product_factory(stock=10)
    sale = _sale(context, (product, 1))
    sheet = context.store.workbook[data_manager.SALES_SHEET]
    row = data_manager.locate_row(context.store.workbook, data_manager.SALES_SHEET, "SaleID", sale.sale_id)
    date_column = list(data_manager.SHEET_COLUMNS[data_manager.SALES_SHEET]).index("Date") + 1
    sheet.cell(row=row, column=date_column).value = datetime(2024, 5, 1, 12, 0)

    listed = core_logic.list_sales_between(
        context, datetime(2024, 5, 1, tzinfo=UTC), datetime(2024, 5, 2, tzinfo=UTC)
    )

    assert [entry.sale_id for entry in listed] == [sale.sale_id]
    assert listed[0].date == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def test_watch_sales_buffers_snapshots_until_closed(context, product_factory):
    product = product_factory(stock=10)
    subscription = core_logic.watch_sales(context)
    sale = _sale(context, (product, 2))
    core_logic.cancel_sale(context, sale.sale_id)
    subscription.close()

    statuses = [[row.status for row in snapshot] for snapshot in subscription]

    assert statuses == [[], ["completed"], ["canceled"]]


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


def test_add_purchase_increments_stock_and_updates_cost(context, product_factory):
    product = product_factory(stock=2, buy_price="4")

    purchase = core_logic.add_purchase(
        context, core_logic.PurchaseCommand(product.product_id, 10, Decimal("5"))
    )

    updated = core_logic.get_product(context, product.product_id)
    assert updated.stock == 12
    assert updated.buy_price == Decimal("5")
    assert purchase.purchase_id.startswith("B")
    assert purchase.date is not None
    assert core_logic.list_purchases(context, product.product_id) == [purchase]


def test_add_purchase_unknown_product_writes_nothing(context):
    with pytest.raises(core_logic.ProductNotFound):
        core_logic.add_purchase(context, core_logic.PurchaseCommand("P-missing", 1, Decimal("1")))
    assert core_logic.list_purchases(context) == []


@pytest.mark.parametrize(("amount", "unity_value"), [(0, "1"), (-3, "1"), (2, "-0.01")])
def test_add_purchase_validates_amounts(context, product_factory, amount, unity_value):
    product = product_factory()
    with pytest.raises(ValueError):
        core_logic.add_purchase(context, core_logic.PurchaseCommand(product.product_id, amount, Decimal(unity_value)))


def test_delete_purchase_reverses_stock(context, product_factory):
    product = product_factory(stock=0)
    purchase = core_logic.add_purchase(context, core_logic.PurchaseCommand(product.product_id, 6, Decimal("3")))

    deleted = core_logic.delete_purchase(context, purchase.purchase_id)

    assert deleted == purchase
    assert core_logic.get_product(context, product.product_id).stock == 0
    with pytest.raises(core_logic.PurchaseNotFound):
        core_logic.get_purchase(context, purchase.purchase_id)


def test_delete_purchase_refuses_negative_stock(context, product_factory):
    product = product_factory(stock=0)
    purchase = core_logic.add_purchase(context, core_logic.PurchaseCommand(product.product_id, 6, Decimal("3")))
    _sale(context, (product, 4))

    with pytest.raises(core_logic.InsufficientStockForReversal):
        core_logic.delete_purchase(context, purchase.purchase_id)

    assert core_logic.get_product(context, product.product_id).stock == 2
    assert core_logic.get_purchase(context, purchase.purchase_id) == purchase


def test_delete_unknown_purchase(context):
    with pytest.raises(core_logic.PurchaseNotFound):
        core_logic.delete_purchase(context, "B-missing")


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def test_compute_report_totals_completed_sales(context, product_factory, clock):
    beer = product_factory("Beer", stock=20, sell_price="10", buy_price="4")
    gin = product_factory("Gin", stock=20, sell_price="30", buy_price="12")
    clock.jump_to(BASE_MOMENT)
    _sale(context, (beer, 3))
    _sale(context, (beer, 1), (gin, 1))
    canceled = _sale(context, (gin, 2))
    core_logic.cancel_sale(context, canceled.sale_id)

    report = core_logic.compute_report(context, BASE_MOMENT, BASE_MOMENT + timedelta(hours=1))

    assert report.revenue == Decimal("70")
    assert report.cost == Decimal("28")
    assert report.profit == Decimal("42")
    assert report.sales_count == 2
    assert report.margin == Decimal("60")


def test_compute_report_filters_by_product(context, product_factory, clock):
    beer = product_factory("Beer", stock=20, sell_price="10", buy_price="4")
    gin = product_factory("Gin", stock=20, sell_price="30", buy_price="12")
    clock.jump_to(BASE_MOMENT)
    _sale(context, (beer, 3))
    _sale(context, (beer, 1), (gin, 1))

    report = core_logic.compute_report(
        context, BASE_MOMENT, BASE_MOMENT + timedelta(hours=1), product_id=gin.product_id
    )

    assert report.revenue == Decimal("30")
    assert report.cost == Decimal("12")
    assert report.sales_count == 1


def test_compute_report_without_revenue_has_zero_margin(context):
    report = core_logic.compute_report(context, BASE_MOMENT, BASE_MOMENT + timedelta(days=1))

    assert report == core_logic.SalesReport(Decimal("0"), Decimal("0"), Decimal("0"), 0, Decimal("0"))


def test_compute_report_excludes_sales_outside_range(context, product_factory, clock):
    product = product_factory(stock=10)
    clock.jump_to(BASE_MOMENT - timedelta(days=2))
    _sale(context, (product, 1))

    report = core_logic.compute_report(context, BASE_MOMENT, BASE_MOMENT + timedelta(days=1))

    assert report.sales_count == 0


def test_compute_report_rejects_inverted_range(context):
    with pytest.raises(ValueError):
        core_logic.compute_report(context, BASE_MOMENT, BASE_MOMENT - timedelta(seconds=1))
