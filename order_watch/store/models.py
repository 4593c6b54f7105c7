from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class OrderRecord(Base):
    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_time: Mapped[str] = mapped_column(String, nullable=False, default="")
    status: Mapped[str] = mapped_column(String, nullable=False, default="")
    delivery_time: Mapped[str] = mapped_column(String, nullable=False, default="")
    payment_method: Mapped[str] = mapped_column(String, nullable=False, default="")
    visit_count: Mapped[str] = mapped_column(String, nullable=False, default="")
    customer_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    customer_phone: Mapped[str] = mapped_column(String, nullable=False, default="")
    receipt_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    waiting_time: Mapped[str] = mapped_column(String, nullable=False, default="")
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    items: Mapped[str] = mapped_column(Text, nullable=False, default="")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Operator flags; scraping never writes these.
    is_delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
