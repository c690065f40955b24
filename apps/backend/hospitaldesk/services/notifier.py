import itertools
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Literal

ToastKind = Literal["success", "error", "info"]


@dataclass(frozen=True)
class Toast:
    id: str
    type: ToastKind
    text: str
    created_at: float

    def to_dict(self) -> Dict:
        return asdict(self)


class Notifier:
    """Short-lived user notifications for one dashboard session."""

    def __init__(self, ttl: float = 3.4, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._counter = itertools.count(1)
        self._toasts: List[Toast] = []
        self.history: deque = deque(maxlen=200)

    def push(self, kind: ToastKind, text: str) -> Toast:
        toast = Toast(id=f"t{next(self._counter)}", type=kind, text=text, created_at=self._clock())
        self._toasts.append(toast)
        self.history.append(toast)
        return toast

    def success(self, text: str) -> Toast:
        return self.push("success", text)

    def error(self, text: str) -> Toast:
        return self.push("error", text)

    def info(self, text: str) -> Toast:
        return self.push("info", text)

    def active(self) -> List[Toast]:
        now = self._clock()
        self._toasts = [t for t in self._toasts if now - t.created_at < self.ttl]
        return list(self._toasts)

    def clear(self) -> None:
        self._toasts = []
