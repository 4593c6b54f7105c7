from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

ABSENT_ORDER_ID = "-"

# Free-text order fields; None means "not found on the page".
TEXT_FIELDS = (
    "order_time",
    "status",
    "delivery_time",
    "payment_method",
    "visit_count",
    "customer_name",
    "customer_phone",
    "receipt_name",
    "waiting_time",
    "address",
    "items",
    "notes",
)

_CAMEL_KEYS = {
    "order_id": "orderId",
    "order_time": "orderTime",
    "status": "status",
    "delivery_time": "deliveryTime",
    "payment_method": "paymentMethod",
    "visit_count": "visitCount",
    "customer_name": "customerName",
    "customer_phone": "customerPhone",
    "receipt_name": "receiptName",
    "waiting_time": "waitingTime",
    "address": "address",
    "items": "items",
    "notes": "notes",
    "total_amount": "totalAmount",
}


def is_valid_order_id(order_id: str | None) -> bool:
    if order_id is None:
        return False
    cleaned = order_id.strip()
    return bool(cleaned) and cleaned != ABSENT_ORDER_ID


@dataclass(frozen=True)
class Order:
    """One order as read from the portal's detail view."""

    order_id: str
    order_time: Optional[str] = None
    status: Optional[str] = None
    delivery_time: Optional[str] = None
    payment_method: Optional[str] = None
    visit_count: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    receipt_name: Optional[str] = None
    waiting_time: Optional[str] = None
    address: Optional[str] = None
    items: Optional[str] = None
    notes: Optional[str] = None
    total_amount: int = 0

    def to_record(self) -> Dict[str, Any]:
        """Column values for the store; missing text becomes ``""``."""

        record: Dict[str, Any] = {"order_id": self.order_id, "total_amount": self.total_amount}
        for name in TEXT_FIELDS:
            record[name] = getattr(self, name) or ""
        return record

    def as_dict(self) -> Dict[str, Any]:
        """JSON payload using the portal's camelCase field names."""

        return {_CAMEL_KEYS[key]: value for key, value in self.to_record().items()}


@dataclass(frozen=True)
class ListRow:
    """A row of the order list together with the coordinates to click it.

    ``container_selector``/``container_index`` pick the table (or grid) and
    ``row_selector``/``row_index`` pick the row inside it, so the live page
    can be addressed with
    ``page.locator(container_selector).nth(container_index).locator(row_selector).nth(row_index)``.
    """

    order_id: str
    status: Optional[str]
    order_time: Optional[str]
    row_index: int
    container_selector: str = "table"
    container_index: int = 0
    row_selector: str = "tr"
    strategy: str = field(default="", compare=False)


OrderBatch = List[Order]
OrderCallback = Callable[[OrderBatch], Union[Awaitable[None], None]]
