import enum

from sqlalchemy import Enum as SQLAlchemyEnum


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentType(str, enum.Enum):
    CASH = "cash"
    CHECK = "check"


class CheckStatus(str, enum.Enum):
    PENDING = "pending"
    COLLECTED = "collected"
    RETURNED = "returned"


class StatementEntryType(str, enum.Enum):
    ORDER = "order"
    PAYMENT = "payment"
    CHECK = "check"


def db_enum(enum_cls: type[enum.Enum], name: str) -> SQLAlchemyEnum:
    """Column type storing the enum's string values rather than member names."""
    return SQLAlchemyEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )
