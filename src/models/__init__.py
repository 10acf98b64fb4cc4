# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from src.models.customer import Customer
from src.models.customer_check import CustomerCheck
from src.models.enums import CheckStatus, OrderStatus, PaymentType, StatementEntryType
from src.models.order import Order
from src.models.order_item import OrderItem
from src.models.payment import Payment

__all__ = [
    "CheckStatus",
    "Customer",
    "CustomerCheck",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentType",
    "StatementEntryType",
]
