"""Local, non-authoritative copy of the server's lock state for one device."""

import logging
from dataclasses import asdict, dataclass

from parishgate.client.storage import KeyValueStorage

logger = logging.getLogger(__name__)

MIRROR_KEY = "loginLockout"


@dataclass
class ClientLockoutMirror:
    """Rebuilt from every server rate-limit response; only drives the first paint."""

    email: str = ""
    failed_attempts: int = 0
    lock_until: float | None = None  # epoch seconds on the local clock
    last_attempt_time: float | None = None
    is_permanent: bool = False

    def is_locked(self, now: float) -> bool:
        if self.is_permanent:
            return True
        return self.lock_until is not None and now < self.lock_until


class MirrorStore:
    def __init__(self, storage: KeyValueStorage, key: str = MIRROR_KEY) -> None:
        self._storage = storage
        self._key = key

    def load(self) -> ClientLockoutMirror | None:
        data = self._storage.get_item(self._key)
        if not isinstance(data, dict):
            return None
        try:
            return ClientLockoutMirror(
                email=str(data.get("email") or ""),
                failed_attempts=int(data.get("failed_attempts") or 0),
                lock_until=_optional_float(data.get("lock_until")),
                last_attempt_time=_optional_float(data.get("last_attempt_time")),
                is_permanent=bool(data.get("is_permanent", False)),
            )
        except (TypeError, ValueError):
            logger.warning("Discarding malformed lockout mirror")
            self.clear()
            return None

    def save(self, mirror: ClientLockoutMirror) -> None:
        self._storage.set_item(self._key, asdict(mirror))

    def clear(self) -> None:
        self._storage.remove_item(self._key)


def _optional_float(value) -> float | None:
    if value is None:
        return None
    return float(value)
