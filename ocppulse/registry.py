import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .codec import Call, CallError, CallResult, encode


@dataclass
class PendingCall:
    unique_id: str
    action: str
    sent_at: float
    payload: Any = field(default=None, repr=False)


@dataclass
class UnmatchedResponse:
    unique_id: str


class CallRegistry:
    """Outstanding CALLs keyed by uniqueId.

    A response is matched at most once: ``resolve`` removes the entry, so a
    duplicate or late response (after ``expire`` or ``clear``) is reported as
    :class:`UnmatchedResponse`.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._pending: Dict[str, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, unique_id: str) -> bool:
        return unique_id in self._pending

    def _new_id(self) -> str:
        unique_id = str(uuid.uuid4())
        while unique_id in self._pending:
            unique_id = str(uuid.uuid4())
        return unique_id

    def submit(self, action: str, payload: Any) -> Tuple[str, str]:
        unique_id = self._new_id()
        self._pending[unique_id] = PendingCall(unique_id, action, self._clock(), payload)
        return unique_id, encode(Call(unique_id, action, payload))

    def resolve(
        self, unique_id: str, response: Union[CallResult, CallError]
    ) -> Union[Tuple[str, Union[CallResult, CallError]], UnmatchedResponse]:
        pending = self._pending.pop(unique_id, None)
        if pending is None:
            return UnmatchedResponse(unique_id)
        return pending.action, response

    def expire(self, now: float, timeout: float) -> List[PendingCall]:
        expired = [p for p in self._pending.values() if now - p.sent_at > timeout]
        for p in expired:
            del self._pending[p.unique_id]
        return expired

    def pending(self, action: Optional[str] = None) -> List[PendingCall]:
        return [p for p in self._pending.values() if action is None or p.action == action]

    def clear(self) -> None:
        self._pending.clear()
