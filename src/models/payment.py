"""Payment model — cash or check payment received from a customer."""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from src.models.enums import PaymentType, db_enum


class Payment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payments"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    type: Mapped[PaymentType] = mapped_column(
        db_enum(PaymentType, "payment_type"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    # Check payments only
    check_number: Mapped[str | None] = mapped_column(String(100))
    check_bank: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (
        Index("ix_payments_customer_id", "customer_id"),
        Index("ix_payments_customer_check_number", "customer_id", "check_number"),
    )
