from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from order_watch.json_logger import JsonLogger, log_event, timed_event
from order_watch.models import Order

from .db import get_engine, session_scope
from .models import OrderRecord
from .schemas import OrderRow

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}
_SCRAPED_COLUMNS = tuple(name for name in OrderRow.model_fields if name != "order_id")


def _dedupe_rows(rows: Iterable[OrderRow]) -> List[Dict[str, Any]]:
    by_id: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        by_id[row.order_id] = row.values()
    return list(by_id.values())


class OrderSink:
    """Upserting order consumer backed by the ``orders`` table.

    Instances are callables suitable as ``on_new_orders``. Re-delivered orders
    (after a browser relaunch) update the scraped columns in place and leave
    ``is_delivered``/``is_active`` alone.
    """

    def __init__(self, database_url: str, *, logger: JsonLogger) -> None:
        self.database_url = database_url
        self.logger = logger

    def _insert(self):
        dialect = get_engine(self.database_url).dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}") from None

    def _coerce(self, orders: Iterable[Order]) -> List[OrderRow]:
        rows: List[OrderRow] = []
        for order in orders:
            try:
                rows.append(OrderRow.from_order(order))
            except ValidationError as exc:
                log_event(
                    logger=self.logger,
                    phase="sink",
                    status="warn",
                    message="Dropping order that failed validation",
                    order_id=order.order_id,
                    error=str(exc),
                )
        return rows

    async def __call__(self, orders: List[Order]) -> int:
        return await self.upsert(orders)

    async def upsert(self, orders: Iterable[Order]) -> int:
        rows = _dedupe_rows(self._coerce(orders))
        if not rows:
            return 0

        insert = self._insert()
        stmt = insert(OrderRecord).values(rows)
        update_cols = {name: stmt.excluded[name] for name in _SCRAPED_COLUMNS}
        update_cols["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=["order_id"], set_=update_cols)

        with timed_event(
            logger=self.logger,
            phase="sink",
            message="Upserted orders",
            order_ids=[row["order_id"] for row in rows],
        ):
            async with session_scope(self.database_url) as session:
                await session.execute(stmt)
                await session.commit()
        return len(rows)

    async def list_orders(self, *, include_inactive: bool = False) -> List[OrderRecord]:
        stmt = select(OrderRecord).order_by(
            OrderRecord.created_at.desc(), OrderRecord.order_id.desc()
        )
        if not include_inactive:
            stmt = stmt.where(OrderRecord.is_active.is_(True))
        async with session_scope(self.database_url) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def set_flags(
        self,
        order_id: str,
        *,
        is_delivered: Optional[bool] = None,
        is_active: Optional[bool] = None,
    ) -> bool:
        values: Dict[str, Any] = {}
        if is_delivered is not None:
            values["is_delivered"] = is_delivered
        if is_active is not None:
            values["is_active"] = is_active
        if not values:
            return False
        values["updated_at"] = func.now()

        async with session_scope(self.database_url) as session:
            result = await session.execute(
                update(OrderRecord).where(OrderRecord.order_id == order_id).values(**values)
            )
            await session.commit()
        updated = bool(result.rowcount)
        log_event(
            logger=self.logger,
            phase="sink",
            status="ok" if updated else "warn",
            message="Updated order flags" if updated else "Order not found for flag update",
            order_id=order_id,
            **{key: value for key, value in values.items() if key != "updated_at"},
        )
        return updated
