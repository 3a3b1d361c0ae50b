from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness or reference constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class MissingRecord(ConstraintViolation):
    """A write targeted a row that does not exist."""

    def __init__(self, entity: str, record_id: str):
        super().__init__(f"{entity} not found", {"entity": entity, "id": record_id})
        self.entity = entity
        self.record_id = record_id


__all__ = ["ConstraintViolation", "MissingRecord"]
