"""Device-local login heuristics layered in front of the server check.

None of this is security: a script can skip it entirely. It only spares the
server from the most obvious hammering and gives the form a failure count
to show. Allow/deny is always the server's call.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

from parishgate.client.storage import KeyValueStorage
from parishgate.core.lockout import normalize_email

logger = logging.getLogger(__name__)

ATTEMPT_LOG_KEY = "loginAttempts"
LOG_RETENTION_SECONDS = 24 * 60 * 60
MIN_SUBMIT_INTERVAL_SECONDS = 1.0
INTERACTION_EVENTS = frozenset({"pointer", "key", "scroll", "click", "touch"})


@dataclass(frozen=True)
class AttemptEntry:
    email: str
    timestamp: float
    success: bool


class LocalAttemptLog:
    """Append-only attempt history, pruned to the last 24 hours on every write."""

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = ATTEMPT_LOG_KEY,
        retention_seconds: float = LOG_RETENTION_SECONDS,
    ) -> None:
        self._storage = storage
        self._key = key
        self._retention_seconds = retention_seconds

    def entries(self) -> list[AttemptEntry]:
        raw = self._storage.get_item(self._key)
        if not isinstance(raw, list):
            return []
        entries = []
        for item in raw:
            try:
                entries.append(
                    AttemptEntry(
                        email=str(item["email"]),
                        timestamp=float(item["timestamp"]),
                        success=bool(item["success"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        return entries

    def _save(self, entries: list[AttemptEntry]) -> None:
        self._storage.set_item(self._key, [asdict(entry) for entry in entries])

    def append(self, email: str, success: bool, now: float) -> None:
        cutoff = now - self._retention_seconds
        entries = [entry for entry in self.entries() if entry.timestamp >= cutoff]
        entries.append(AttemptEntry(email=normalize_email(email), timestamp=now, success=success))
        self._save(entries)

    def recent_failures(self, email: str, now: float) -> int:
        key = normalize_email(email)
        cutoff = now - self._retention_seconds
        return sum(
            1
            for entry in self.entries()
            if entry.email == key and not entry.success and entry.timestamp >= cutoff
        )

    def clear(self, email: str) -> None:
        key = normalize_email(email)
        self._save([entry for entry in self.entries() if entry.email != key])


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    reason: str | None = None
    retry_after: float = 0.0


class SecondaryThrottle:
    def __init__(
        self,
        log: LocalAttemptLog,
        min_interval: float = MIN_SUBMIT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._log = log
        self._min_interval = min_interval
        self._clock = clock
        self._last_submit: float | None = None
        self._interacted = False

    @property
    def log(self) -> LocalAttemptLog:
        return self._log

    @property
    def has_interaction(self) -> bool:
        return self._interacted

    def record_interaction(self, kind: str) -> None:
        """Note a human input event (pointer, key, scroll, click, touch)."""
        if kind not in INTERACTION_EVENTS:
            logger.debug("Ignoring unknown interaction event %r", kind)
            return
        self._interacted = True

    def check(self, email: str) -> ThrottleDecision:
        """Decide whether a submit may go to the server; an allowed submit is remembered."""
        if not self._interacted:
            return ThrottleDecision(allowed=False, reason="no_interaction")

        now = self._clock()
        if self._last_submit is not None:
            elapsed = now - self._last_submit
            if elapsed < self._min_interval:
                return ThrottleDecision(
                    allowed=False,
                    reason="too_fast",
                    retry_after=self._min_interval - elapsed,
                )

        self._last_submit = now
        return ThrottleDecision(allowed=True)

    def record_attempt(self, email: str, success: bool) -> None:
        self._log.append(email, success, self._clock())

    def recent_failures(self, email: str) -> int:
        """Failures for ``email`` in the last 24 hours, for display only."""
        return self._log.recent_failures(email, self._clock())

    def forget(self, email: str) -> None:
        self._log.clear(email)
