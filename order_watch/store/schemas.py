from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, field_validator

from order_watch.models import TEXT_FIELDS, Order


class OrderRow(BaseModel):
    """Column values for one ``orders`` row."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    order_id: str
    order_time: str = ""
    status: str = ""
    delivery_time: str = ""
    payment_method: str = ""
    visit_count: str = ""
    customer_name: str = ""
    customer_phone: str = ""
    receipt_name: str = ""
    waiting_time: str = ""
    address: str = ""
    items: str = ""
    notes: str = ""
    total_amount: int = 0

    @field_validator("order_id")
    @classmethod
    def _require_order_id(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned or cleaned == "-":
            raise ValueError("order_id is required")
        return cleaned

    @field_validator(*TEXT_FIELDS, mode="before")
    @classmethod
    def _clean_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("total_amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> int:
        if value is None or value == "":
            return 0
        if isinstance(value, str):
            value = value.replace(",", "").strip()
        amount = int(float(value))
        return max(amount, 0)

    @classmethod
    def from_order(cls, order: Order) -> "OrderRow":
        return cls(**order.to_record())

    def values(self) -> Dict[str, Any]:
        return self.model_dump()
