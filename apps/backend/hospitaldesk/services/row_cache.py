from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from hospitaldesk.services.notifier import Notifier
from hospitaldesk.services.store_client import RemoteStore, StoreError

COLD_EMAILED = "cold_emailed"


@dataclass(frozen=True)
class SchemaFeatures:
    """Optional columns found on the last successful load."""
    cold_emailed: bool = False

    @classmethod
    def detect(cls, rows: List[Dict[str, Any]]) -> "SchemaFeatures":
        return cls(cold_emailed=any(COLD_EMAILED in row for row in rows))


def _dedupe(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    unique = []
    for row in rows:
        key = row.get("id")
        if key in seen:
            continue
        seen.add(key)
        unique.append(dict(row))
    return unique


class RowCache:
    """
    In-memory mirror of one remote table for a single view session.

    load() is all-or-nothing: a failed fetch leaves rows and features exactly
    as they were.
    """

    def __init__(self, store: RemoteStore, table: str, notifier: Notifier, order_by: Optional[str] = "name"):
        self.store = store
        self.table = table
        self.notifier = notifier
        self.order_by = order_by
        self.rows: List[Dict[str, Any]] = []
        self.features = SchemaFeatures()
        self.loading = False
        self.loads = 0
        self._observers: List[Callable[[], None]] = []

    async def load(self) -> Optional[StoreError]:
        """
        Replace the cache with a fresh full fetch.

        Returns:
            None on success, the StoreError otherwise (also pushed as a toast)
        """
        self.loading = True
        try:
            result = await self.store.select(self.table, order_by=self.order_by)
            if result.error is not None:
                print(f"❌ Fetch error on {self.table}: {result.error}")
                self.notifier.error(f"Failed to fetch rows: {result.error.message or 'unknown'}")
                return result.error

            rows = _dedupe(result.data or [])
            self.rows = rows
            self.features = SchemaFeatures.detect(rows)
            self.loads += 1
            return None
        except Exception as e:
            print(f"❌ Fetch failed on {self.table}: {e}")
            self.notifier.error("Failed to fetch rows. See server log.")
            return StoreError(str(e), type(e).__name__)
        finally:
            self.loading = False
            self._changed()

    def get(self, row_id: Any) -> Optional[Dict[str, Any]]:
        for row in self.rows:
            if row.get("id") == row_id:
                return row
        return None

    def ids(self) -> List[Any]:
        return [row.get("id") for row in self.rows]

    def patch(self, ids: Iterable[Any], values: Dict[str, Any]) -> int:
        """Merge ``values`` into every cached row whose id is in ``ids``."""
        targets = set(ids)
        touched = 0
        for index, row in enumerate(self.rows):
            if row.get("id") in targets:
                self.rows[index] = {**row, **values}
                touched += 1
        if touched:
            self._changed()
        return touched

    def replace(self, row: Dict[str, Any]) -> bool:
        """Swap in an authoritative row for an existing id. Unknown ids are ignored."""
        for index, current in enumerate(self.rows):
            if current.get("id") == row.get("id"):
                self.rows[index] = dict(row)
                self._changed()
                return True
        return False

    def subscribe(self, observer: Callable[[], None]) -> Callable[[], None]:
        self._observers.append(observer)

        def remove():
            if observer in self._observers:
                self._observers.remove(observer)
        return remove

    def _changed(self) -> None:
        for observer in list(self._observers):
            observer()
