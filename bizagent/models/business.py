"""Tables owned by the order/inventory/invoice collaborator."""
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, JSON, String

from bizagent.database import Base
from bizagent.models.domain import new_id


class BusinessRecord(Base):
    """
    One order, invoice, reminder, refund, export job or follow-up.

    Records are keyed by an opaque record_id and typed by entity_type; the
    shape of `data` depends on the type.
    """
    __tablename__ = "business_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    record_id = Column(String, unique=True, nullable=False, index=True, default=new_id)
    entity_type = Column(String, nullable=False, index=True)
    customer_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    request_id = Column(String, nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    unit = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
