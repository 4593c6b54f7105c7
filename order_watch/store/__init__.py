from .db import run_alembic_upgrade, session_scope
from .models import Base, OrderRecord
from .sink import OrderSink

__all__ = ["Base", "OrderRecord", "OrderSink", "run_alembic_upgrade", "session_scope"]
