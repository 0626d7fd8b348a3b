"""
Order/inventory/invoice store.

The pipeline treats this as an external collaborator with a narrow interface:
create, update_status and get_by_id per entity type, plus the two lookups the
rules and the executor need. Any call may fail independently.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from bizagent.models.business import BusinessRecord, InventoryItem

logger = logging.getLogger(__name__)

ENTITY_TYPES = {"order", "invoice", "reminder", "refund", "export", "follow_up"}

GST_RATE = 0.18


class RecordNotFound(LookupError):
    pass


def _as_dict(record: BusinessRecord) -> Dict[str, Any]:
    return {
        "record_id": record.record_id,
        "entity_type": record.entity_type,
        "customer_id": record.customer_id,
        "status": record.status,
        "data": dict(record.data or {}),
        "request_id": record.request_id,
    }


class BusinessStore:

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        entity_type: str,
        data: Dict[str, Any],
        customer_id: Optional[str] = None,
        status: str = "created",
        request_id: Optional[str] = None
    ) -> Dict[str, Any]:
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {entity_type}")

        record = BusinessRecord(
            entity_type=entity_type,
            customer_id=customer_id,
            status=status,
            data=data,
            request_id=request_id
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info("Created %s %s", entity_type, record.record_id)
        return _as_dict(record)

    def get_by_id(self, entity_type: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._get(entity_type, record_id)
        return _as_dict(record) if record else None

    def update_status(self, entity_type: str, record_id: str, status: str) -> Dict[str, Any]:
        record = self._get(entity_type, record_id)
        if record is None:
            raise RecordNotFound(f"{entity_type} {record_id} not found")
        record.status = status
        self.db.commit()
        self.db.refresh(record)
        return _as_dict(record)

    def customer_order_count(self, customer_id: str) -> int:
        return self.db.query(func.count(BusinessRecord.id)).filter(
            BusinessRecord.entity_type == "order",
            BusinessRecord.customer_id == customer_id
        ).scalar() or 0

    def count(self, entity_type: str, customer_id: Optional[str] = None) -> int:
        query = self.db.query(func.count(BusinessRecord.id)).filter(
            BusinessRecord.entity_type == entity_type
        )
        if customer_id is not None:
            query = query.filter(BusinessRecord.customer_id == customer_id)
        return query.scalar() or 0

    def set_inventory(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Set the absolute on-hand quantity for each named item."""
        updated = []
        for item in items:
            name = str(item.get("name") or "").strip().lower()
            if not name:
                raise ValueError("Inventory item without a name")

            row = self.db.query(InventoryItem).filter(InventoryItem.name == name).first()
            if row is None:
                row = InventoryItem(name=name)
                self.db.add(row)
            row.quantity = int(float(item.get("quantity") or 0))
            row.unit = item.get("unit") or row.unit
            updated.append({"name": name, "quantity": row.quantity, "unit": row.unit})

        self.db.commit()
        return updated

    def _get(self, entity_type: str, record_id: str) -> Optional[BusinessRecord]:
        return self.db.query(BusinessRecord).filter(
            BusinessRecord.entity_type == entity_type,
            BusinessRecord.record_id == record_id
        ).first()
