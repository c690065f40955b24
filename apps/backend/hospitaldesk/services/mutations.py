"""
Mutation coordinator: optimistic edits against the row cache.

Every edit runs three phases:
1. stage     - snapshot the fields being changed and write the patch into the
               cache synchronously, before any network call
2. commit    - issue the remote update scoped to exactly the staged ids
3. reconcile - on success accept the server rows; on failure roll back
               (single row) and reload the whole table

Bulk edits never roll back row by row. A failed bulk update may have landed
on any subset of rows server-side, so the only recovery is a full reload.

Remote calls are not serialized per record. Two quick edits to the same row
apply their optimistic writes in call order, but a slow first update can
still land after a fast second one; the failure-path reload is the backstop.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Tuple

from hospitaldesk.services.notifier import Notifier
from hospitaldesk.services.row_cache import RowCache
from hospitaldesk.services.scoring_service import next_status, validate_rating, with_derived_score
from hospitaldesk.services.store_client import RemoteStore

MISSING_COLD_EMAILED = "cold_emailed column missing. Please add it to the database."
MISSING_COLD_EMAILED_BULK = "cold_emailed column missing. Cannot bulk update."
SELECT_ROWS_FIRST = "Select rows first"


class MutationState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class Mutation:
    ids: Tuple[Any, ...]
    patch: Dict[str, Any]
    bulk: bool = False
    previous: Dict[Any, Dict[str, Any]] = field(default_factory=dict)
    state: MutationState = MutationState.PENDING
    error: Optional[str] = None
    server_rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.state == MutationState.COMMITTED


async def best_effort(operation: Awaitable[Any], label: str) -> None:
    """
    Run a side effect whose outcome is never reported.

    There is no error channel on purpose: neither a returned store error nor
    a raised exception reaches the caller, and nothing is retried.
    """
    try:
        result = await operation
    except Exception as e:
        print(f"⚠️  {label} skipped: {e}")
        return
    error = getattr(result, "error", None)
    if error is not None:
        print(f"⚠️  {label} skipped: {error}")


class MutationCoordinator:
    def __init__(self, store: RemoteStore, cache: RowCache, notifier: Notifier,
                 audit_table: Optional[str] = "cold_emails", actor: Optional[str] = None):
        self.store = store
        self.cache = cache
        self.notifier = notifier
        self.audit_table = audit_table
        self.actor = actor

    # --- phases ---

    def stage(self, ids: Iterable[Any], patch: Dict[str, Any], bulk: bool = False) -> Mutation:
        """Capture rollback values and apply ``patch`` to the cache. Never suspends."""
        ids = tuple(dict.fromkeys(ids))
        mutation = Mutation(ids=ids, patch=dict(patch), bulk=bulk)
        for row_id in ids:
            row = self.cache.get(row_id)
            if row is not None:
                mutation.previous[row_id] = {key: row.get(key) for key in patch}
        self.cache.patch(ids, patch)
        return mutation

    async def commit(self, mutation: Mutation) -> Mutation:
        match = {"id": list(mutation.ids)} if mutation.bulk else {"id": mutation.ids[0]}
        try:
            result = await self.store.update(self.cache.table, mutation.patch, match)
        except Exception as e:
            mutation.error = str(e) or type(e).__name__
            return mutation

        if result.error is not None:
            mutation.error = result.error.message or "unknown"
        else:
            mutation.server_rows = list(result.data or [])
            mutation.state = MutationState.COMMITTED
        return mutation

    async def reconcile(self, mutation: Mutation, success_text: str, failure_text: str) -> Mutation:
        if mutation.committed:
            if not mutation.bulk:
                for row in mutation.server_rows:
                    if row.get("id") == mutation.ids[0]:
                        self.cache.replace(row)
            self.notifier.success(success_text)
            return mutation

        print(f"❌ {failure_text}: {mutation.error}")
        self.notifier.error(f"{failure_text}: {mutation.error}")
        if not mutation.bulk:
            for row_id, values in mutation.previous.items():
                self.cache.patch([row_id], values)
        mutation.state = MutationState.ROLLED_BACK
        await self.cache.load()
        return mutation

    # --- generic entry points ---

    async def apply_patch(self, row_id: Any, patch: Dict[str, Any],
                          success_text: str = "Row updated",
                          failure_text: str = "Failed to update row") -> Mutation:
        mutation = self.stage([row_id], with_derived_score(patch))
        await self.commit(mutation)
        return await self.reconcile(mutation, success_text, failure_text)

    async def apply_bulk_patch(self, ids: Iterable[Any], patch: Dict[str, Any],
                               success_text: Optional[str] = None,
                               failure_text: str = "Failed to update selected rows") -> Optional[Mutation]:
        ids = list(dict.fromkeys(ids))
        if not ids:
            self.notifier.info(SELECT_ROWS_FIRST)
            return None
        mutation = self.stage(ids, with_derived_score(patch), bulk=True)
        await self.commit(mutation)
        return await self.reconcile(mutation, success_text or f"Updated {len(ids)} rows", failure_text)

    # --- dashboard actions ---

    async def toggle_status(self, row_id: Any) -> Mutation:
        row = self.cache.get(row_id) or {}
        target = next_status(row.get("status"))
        return await self.apply_patch(row_id, {"status": target},
                                      "Status updated", "Failed to update status")

    async def set_rating(self, row_id: Any, rating: Any) -> Mutation:
        rating = validate_rating(rating)
        return await self.apply_patch(row_id, {"manual_rating": rating},
                                      "Rating updated", "Failed to update rating")

    async def toggle_cold_email(self, row_id: Any) -> Optional[Mutation]:
        if not self.cache.features.cold_emailed:
            self.notifier.error(MISSING_COLD_EMAILED)
            return None

        row = self.cache.get(row_id) or {}
        target = not row.get("cold_emailed")
        mutation = await self.apply_patch(
            row_id, {"cold_emailed": target},
            "Marked cold-emailed" if target else "Unmarked cold-emailed",
            "Failed to update cold-emailed",
        )
        if mutation.committed:
            note = "marked cold-emailed" if target else "unmarked cold-emailed"
            await self._audit([row_id], note)
        return mutation

    async def bulk_set_status(self, ids: Iterable[Any], status: str) -> Optional[Mutation]:
        return await self.apply_bulk_patch(ids, {"status": status})

    async def bulk_set_cold_emailed(self, ids: Iterable[Any], mark: bool) -> Optional[Mutation]:
        if not self.cache.features.cold_emailed:
            self.notifier.error(MISSING_COLD_EMAILED_BULK)
            return None

        ids = list(dict.fromkeys(ids))
        mutation = await self.apply_bulk_patch(
            ids, {"cold_emailed": mark},
            success_text=f"{len(ids)} rows updated",
            failure_text="Failed to update cold-emailed",
        )
        if mutation is not None and mutation.committed:
            note = "bulk marked cold-emailed" if mark else "bulk unmarked cold-emailed"
            await self._audit(ids, note)
        return mutation

    async def _audit(self, ids: List[Any], note: str) -> None:
        if not self.audit_table:
            return
        records = [{"hospital_id": row_id, "acted_by": self.actor, "note": note} for row_id in ids]
        await best_effort(self.store.insert(self.audit_table, records), f"Audit insert into {self.audit_table}")
