from typing import Any, Awaitable, Callable, Optional

from hospitaldesk.services.store_client import ChangeEvent, RemoteStore, Subscription


class ChangeListener:
    """
    Reloads the cache on every change to one table.

    There is no differential merge: any insert, update or delete triggers the
    same full load used for the initial population. Subscribing is
    best-effort. Redis is tried first, then the store's in-process hooks, and
    if both fail the session runs without live updates (manual refresh only).
    """

    def __init__(self, store: RemoteStore, table: str, on_change: Callable[[], Awaitable[Any]]):
        self.store = store
        self.table = table
        self.on_change = on_change
        self._mode = "none"
        self.events = 0
        self._handle: Optional[Subscription] = None

    @property
    def active(self) -> bool:
        return self._handle is not None and self._handle.active

    @property
    def mode(self) -> str:
        """realtime, fallback or none; a handle whose channel dropped reports none."""
        return self._mode if self.active else "none"

    async def start(self) -> str:
        if self.active:
            return self._mode
        if self._handle is not None:
            await self.stop()

        try:
            self._handle = await self.store.subscribe(self.table, "*", self._handle_event)
            self._mode = "realtime"
        except Exception as e:
            print(f"⚠️  Realtime subscribe failed for {self.table}, trying in-process hooks: {e}")
            try:
                self._handle = await self.store.listen(self.table, "*", self._handle_event)
                self._mode = "fallback"
            except Exception as fallback_error:
                print(f"⚠️  No live updates for {self.table}: {fallback_error}")
                self._handle = None
                self._mode = "none"

        if self._handle is not None:
            print(f"✅ Listening for {self.table} changes ({self._mode})")
        return self._mode

    async def _handle_event(self, event: ChangeEvent) -> None:
        self.events += 1
        await self.on_change()

    async def stop(self) -> None:
        """Release the subscription. Safe to call more than once."""
        handle, self._handle = self._handle, None
        self._mode = "none"
        if handle is None:
            return
        try:
            await self.store.unsubscribe(handle)
        except Exception as e:
            print(f"⚠️  Error releasing {self.table} subscription: {e}")
