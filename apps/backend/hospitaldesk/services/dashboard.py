"""
Dashboard view session.

One session is one open dashboard: it owns the row cache, the live change
listener, the mutation coordinator, the filter/sort criteria, the row
selection and the toast queue. Sessions are never shared.
"""

import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from hospitaldesk.config import settings
from hospitaldesk.services import projection
from hospitaldesk.services.csv_service import (
    ImportReport,
    export_csv,
    export_filename,
    import_records,
    map_import_record,
    parse_csv,
)
from hospitaldesk.services.mutations import Mutation, MutationCoordinator
from hospitaldesk.services.notifier import Notifier
from hospitaldesk.services.realtime import ChangeListener
from hospitaldesk.services.row_cache import RowCache
from hospitaldesk.services.scoring_service import STATUS_CLOSED
from hospitaldesk.services.store_client import RemoteStore

CONTROL_ACTIONS = (
    "Mark selected closed",
    "Mark selected cold-emailed",
    "Unmark selected cold-emailed",
    "Export CSV",
    "Refresh",
)


class DashboardSession:
    def __init__(self, store: RemoteStore, table: Optional[str] = None, audit_table: Optional[str] = None,
                 actor: Optional[str] = None, toast_ttl: Optional[float] = None):
        self.id = uuid.uuid4().hex
        self.store = store
        self.notifier = Notifier(settings.TOAST_TTL_SECONDS if toast_ttl is None else toast_ttl)
        self.cache = RowCache(store, table or settings.HOSPITALS_TABLE, self.notifier)
        self.coordinator = MutationCoordinator(
            store, self.cache, self.notifier,
            audit_table=settings.COLD_EMAILS_TABLE if audit_table is None else audit_table,
            actor=actor,
        )
        self.listener = ChangeListener(store, self.cache.table, self.cache.load)
        self.criteria = projection.ViewCriteria()
        self.selected: Set[Any] = set()

    # --- lifecycle ---

    async def open(self) -> "DashboardSession":
        await self.cache.load()
        await self.listener.start()
        return self

    async def close(self) -> None:
        await self.listener.stop()

    async def refresh(self):
        return await self.cache.load()

    # --- view ---

    def rows(self) -> List[Dict[str, Any]]:
        return projection.project(self.cache.rows, self.criteria)

    def view(self) -> Dict[str, Any]:
        rows = self.cache.rows
        return {
            "session_id": self.id,
            "rows": self.rows(),
            "totals": projection.totals(rows, self.cache.features).to_dict(),
            "cities": projection.city_options(rows),
            "statuses": projection.status_options(rows),
            "criteria": self.criteria.to_dict(),
            "has_cold_emailed_column": self.cache.features.cold_emailed,
            "loading": self.cache.loading,
            "live_updates": self.listener.mode,
            "selected": sorted(str(i) for i in self.selected),
            "toasts": [t.to_dict() for t in self.notifier.active()],
        }

    def set_criteria(self, **changes) -> projection.ViewCriteria:
        changes = {k: v for k, v in changes.items() if v is not None}
        self.criteria = replace(self.criteria, **changes)
        return self.criteria

    def sort_by(self, key: str) -> projection.ViewCriteria:
        self.criteria = projection.toggle_sort(self.criteria, key)
        return self.criteria

    def toggle_closed_filter(self) -> projection.ViewCriteria:
        self.criteria = projection.toggle_closed_filter(self.criteria)
        return self.criteria

    # --- selection ---

    def toggle_selection(self, row_id: Any) -> bool:
        if row_id in self.selected:
            self.selected.discard(row_id)
            return False
        self.selected.add(row_id)
        return True

    def select_all(self, checked: bool) -> None:
        self.selected = set(self.cache.ids()) if checked else set()

    # --- edits ---

    async def toggle_status(self, row_id: Any) -> Mutation:
        return await self.coordinator.toggle_status(row_id)

    async def set_rating(self, row_id: Any, rating: Any) -> Mutation:
        return await self.coordinator.set_rating(row_id, rating)

    async def toggle_cold_email(self, row_id: Any) -> Optional[Mutation]:
        return await self.coordinator.toggle_cold_email(row_id)

    async def bulk_set_status(self, status: str, ids: Optional[Iterable[Any]] = None) -> Optional[Mutation]:
        mutation = await self.coordinator.bulk_set_status(self._targets(ids), status)
        self._after_bulk(mutation)
        return mutation

    async def bulk_set_cold_emailed(self, mark: bool, ids: Optional[Iterable[Any]] = None) -> Optional[Mutation]:
        mutation = await self.coordinator.bulk_set_cold_emailed(self._targets(ids), mark)
        self._after_bulk(mutation)
        return mutation

    def _targets(self, ids: Optional[Iterable[Any]]) -> List[Any]:
        return list(ids) if ids is not None else sorted(self.selected, key=str)

    def _after_bulk(self, mutation: Optional[Mutation]) -> None:
        if mutation is not None and mutation.committed:
            self.selected = set()

    async def run_control(self, action: str) -> Any:
        if action == "Mark selected closed":
            return await self.bulk_set_status(STATUS_CLOSED)
        if action == "Mark selected cold-emailed":
            return await self.bulk_set_cold_emailed(True)
        if action == "Unmark selected cold-emailed":
            return await self.bulk_set_cold_emailed(False)
        if action == "Export CSV":
            return self.export_csv()
        if action == "Refresh":
            return await self.refresh()
        self.notifier.info(f"Action: {action}")
        return None

    # --- inserts ---

    async def quick_add(self, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = map_import_record(fields, self.cache.features)
        if payload is None:
            self.notifier.error("Name is required")
            return None
        try:
            result = await self.store.insert(self.cache.table, [payload])
        except Exception as e:
            print(f"❌ Quick add failed: {e}")
            self.notifier.error(f"Failed to add hospital: {e}")
            return None
        if result.error is not None:
            self.notifier.error(f"Failed to add hospital: {result.error.message}")
            return None
        self.notifier.success(f"Added {payload['name']}")
        await self.cache.load()
        return result.data[0] if result.data else payload

    async def import_csv(self, text: str) -> ImportReport:
        report = await import_records(self.store, self.cache.table, parse_csv(text), self.cache.features)
        if report.failed:
            self.notifier.error(f"Imported {report.inserted} rows, {report.failed} failed")
        else:
            self.notifier.success(f"Imported {report.inserted} rows")
        await self.cache.load()
        return report

    def export_csv(self, now: Optional[datetime] = None) -> Dict[str, str]:
        content = export_csv(self.rows(), self.cache.features)
        self.notifier.success("Export started")
        return {"filename": export_filename(now, settings.EXPORT_TIMEZONE), "content": content}


class SessionRegistry:
    """
    Live dashboard sessions keyed by id.

    A session is released when its last websocket detaches, on DELETE, or
    when it has not been looked up for ``idle_timeout`` seconds while no
    socket is attached. The idle sweep runs whenever a session is opened.
    """

    def __init__(self, idle_timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: Dict[str, DashboardSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._sockets: Dict[str, int] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[DashboardSession]:
        session = self._sessions.get(session_id)
        if session is not None:
            self.touch(session_id)
        return session

    def touch(self, session_id: str) -> None:
        if session_id in self._sessions:
            self._last_seen[session_id] = self._clock()

    async def open(self, store: RemoteStore, actor: Optional[str] = None) -> DashboardSession:
        await self.close_idle()
        session = DashboardSession(store, actor=actor)
        self._sessions[session.id] = session
        self._last_seen[session.id] = self._clock()
        await session.open()
        return session

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        self._sockets.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)

    async def close_idle(self) -> int:
        if not self.idle_timeout:
            return 0
        now = self._clock()
        stale = [
            session_id for session_id, seen in self._last_seen.items()
            if now - seen >= self.idle_timeout and not self._sockets.get(session_id)
        ]
        for session_id in stale:
            print(f"⚠️  Closing idle dashboard session {session_id}")
            await self.close(session_id)
        return len(stale)

    # --- websocket attachment ---

    def attach(self, session_id: str) -> Optional[DashboardSession]:
        session = self.get(session_id)
        if session is not None:
            self._sockets[session_id] = self._sockets.get(session_id, 0) + 1
        return session

    async def detach(self, session_id: str) -> None:
        """Drop one socket; the session closes with its last socket."""
        remaining = self._sockets.get(session_id, 0) - 1
        if remaining > 0:
            self._sockets[session_id] = remaining
            return
        await self.close(session_id)


sessions = SessionRegistry(idle_timeout=settings.SESSION_IDLE_SECONDS)
