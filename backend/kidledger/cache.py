"""Degraded local cache used when the primary record store is unreachable.

The cache is a replica, never the source of truth: it is written after the
primary store commits and read only when a primary read fails.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class LocalCache:
    """In-memory snapshots of children and their most recent ledger rows."""

    def __init__(self, max_transactions: int = 50):
        self.max_transactions = max_transactions
        self._children: Dict[int, Dict[str, Any]] = {}
        self._transactions: Dict[int, Deque[Dict[str, Any]]] = {}
        self.last_mirrored_at: Optional[datetime] = None

    def mirror_child(self, snapshot: Dict[str, Any]) -> None:
        self._children[snapshot["id"]] = dict(snapshot)
        self.last_mirrored_at = datetime.now(timezone.utc)

    def mirror_transaction(self, snapshot: Dict[str, Any]) -> None:
        rows = self._transactions.setdefault(
            snapshot["child_id"], deque(maxlen=self.max_transactions)
        )
        # Status changes (approval, cancellation) replace the earlier copy.
        for index, row in enumerate(rows):
            if row["id"] == snapshot["id"]:
                rows[index] = dict(snapshot)
                break
        else:
            rows.append(dict(snapshot))
        self.last_mirrored_at = datetime.now(timezone.utc)

    def get_child(self, child_id: int) -> Optional[Dict[str, Any]]:
        snapshot = self._children.get(child_id)
        return dict(snapshot) if snapshot else None

    def get_transactions(self, child_id: int) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._transactions.get(child_id, ())]

    def clear(self) -> None:
        self._children.clear()
        self._transactions.clear()
        self.last_mirrored_at = None


def mirror_objects(cache: Optional[LocalCache], objects: List[Any]) -> None:
    """Best-effort copy of committed children and transactions into ``cache``."""

    if cache is None:
        return
    # Imported here to keep the cache free of model imports at module load.
    from kidledger.models import Child, Transaction

    for obj in objects:
        try:
            if isinstance(obj, Child):
                cache.mirror_child(obj.model_dump())
            elif isinstance(obj, Transaction):
                cache.mirror_transaction(obj.model_dump())
        except Exception:
            logger.warning("Could not mirror %r to the local cache", obj, exc_info=True)
