from sqlalchemy import inspect
from sqlalchemy.orm import Session
from typing import Optional
import logging
import threading

logger = logging.getLogger(__name__)


class TableCapability:
    """
    Whether an optional portal table (additional photos, delivery note documents)
    exists in the connected schema.

    Probed once per process; call invalidate() after a schema migration or when a
    write fails on a missing table so the next request probes again.
    """

    def __init__(self, table_name: str):
        self.table_name = table_name
        self._available: Optional[bool] = None
        self._lock = threading.Lock()

    def is_available(self, db: Session) -> bool:
        if self._available is None:
            with self._lock:
                if self._available is None:
                    self._available = inspect(db.connection()).has_table(self.table_name)
                    if not self._available:
                        logger.warning(f"Table {self.table_name} not found - features using it are disabled")
        return self._available

    def invalidate(self):
        with self._lock:
            self._available = None
