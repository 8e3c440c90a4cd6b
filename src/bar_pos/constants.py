"""Enumerations shared across Bar POS modules.

Centralises domain constants so that the data access layer (DAL), the
document store, the business logic layer (BLL), and the CLI rely on a single
source of truth for statuses, payment methods, and worksheet names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Retry budget for optimistic transactions when config.ini does not set one.
DEFAULT_MAX_TRANSACTION_ATTEMPTS = 5

# Seconds a client waits for another client to release the workbook lock.
DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0

DEFAULT_LOG_LEVEL = "INFO"

# Log directory created next to the workbook when config.ini names none.
DEFAULT_LOG_DIR_NAME = ".logs"

# Label stored on line items that arrive without a product name.
DEFAULT_PRODUCT_NAME = "Unnamed product"

DEFAULT_PRODUCT_COLOR = "#FDD835"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CASH = "cash"
    PIX = "pix"


class SaleType(str, Enum):
    """Tag distinguishing counter sales from sales generated by orders."""

    PDV = "pdv"
    ORDER = "order"


class SaleStatus(str, Enum):
    COMPLETED = "completed"
    CANCELED = "canceled"


class ComandaStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class OrderStatus(str, Enum):
    """Lifecycle states of a scheduled order."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FINISHED = "finished"
    CANCELED = "canceled"


class DeliveryType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class OrderBucket(str, Enum):
    """Client-side groupings used when listing active orders."""

    ALL = "all"
    PENDING = "pending"
    DELIVERY = "delivery"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    SALES = "Sales"
    PURCHASES = "Purchases"
    COMANDAS = "Comandas"
    ORDERS = "Orders"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_MAX_TRANSACTION_ATTEMPTS",
    "DEFAULT_PRODUCT_NAME",
    "DEFAULT_PRODUCT_COLOR",
    "PaymentMethod",
    "SaleType",
    "SaleStatus",
    "ComandaStatus",
    "OrderStatus",
    "DeliveryType",
    "OrderBucket",
    "SheetName",
]
