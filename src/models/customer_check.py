"""CustomerCheck model — a check received from a customer and its collection state."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from src.models.enums import CheckStatus, db_enum


class CustomerCheck(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "customer_checks"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Set when the check was materialized from a check payment
    payment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="SET NULL"),
    )
    check_number: Mapped[str] = mapped_column(String(100), nullable=False)
    bank: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[CheckStatus] = mapped_column(
        db_enum(CheckStatus, "check_status"),
        nullable=False,
        default=CheckStatus.PENDING,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    auto_collected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_collected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_customer_checks_customer_id", "customer_id"),
        Index("ix_customer_checks_payment_id", "payment_id"),
        Index("ix_customer_checks_status_due_date", "status", "due_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<CustomerCheck id={self.id} number={self.check_number} "
            f"status={self.status}>"
        )
