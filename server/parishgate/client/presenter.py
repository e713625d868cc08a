"""Login form state: instant lock feedback plus a live countdown.

The presenter paints from the local mirror on mount so a locked user sees
the countdown before any network round trip. It never lets the mirror decide
anything: every submit asks the server first, and every server answer
overwrites the mirror.

Use it as an async context manager so the countdown task is always
cancelled on teardown::

    async with LockoutPresenter(gateway, storage) as presenter:
        presenter.record_interaction("key")
        result = await presenter.submit(email, password)
"""

import asyncio
import contextlib
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from parishgate.client.gateway import GatewayError, LoginGateway
from parishgate.client.mirror import ClientLockoutMirror, MirrorStore
from parishgate.client.models import LoginResponse, ResponseKind, ServerStatus
from parishgate.client.storage import KeyValueStorage
from parishgate.client.throttle import LocalAttemptLog, SecondaryThrottle
from parishgate.core.lockout import MAX_ATTEMPTS, normalize_email

logger = logging.getLogger(__name__)

PERMANENT_MESSAGE = (
    "This account has been locked after repeated failed sign-in attempts. "
    "Please contact parish support."
)
RETRY_MESSAGE = "Unable to process login attempt. Please try again."
UPSTREAM_THROTTLE_MESSAGE = "Too many attempts. Try again later."
TOO_FAST_MESSAGE = "Please wait a moment before trying again."
NO_INTERACTION_MESSAGE = "Please fill in the form before signing in."
MFA_MESSAGE = "Enter the 6-digit code from your authenticator app."


def format_countdown(seconds: float) -> str:
    """Render remaining seconds as ``MM:SS`` (rounded up)."""
    total = max(0, math.ceil(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class PresenterView:
    email: str = ""
    attempts_remaining: int = MAX_ATTEMPTS
    is_locked: bool = False
    is_permanent: bool = False
    countdown: str | None = None
    message: str | None = None
    submitting: bool = False
    mfa_pending: bool = False


@dataclass(frozen=True)
class SubmitResult:
    kind: ResponseKind | None
    accepted: bool
    message: str | None = None
    access_token: str | None = None


class LockoutPresenter:
    def __init__(
        self,
        gateway: LoginGateway,
        storage: KeyValueStorage,
        throttle: SecondaryThrottle | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
        on_change: Callable[[PresenterView], None] | None = None,
        tick_interval: float = 1.0,
    ) -> None:
        self._gateway = gateway
        self._mirror = MirrorStore(storage)
        self._throttle = throttle or SecondaryThrottle(LocalAttemptLog(storage), clock=clock)
        self._max_attempts = max_attempts
        self._clock = clock
        self._on_change = on_change
        self._tick_interval = tick_interval
        self._view = PresenterView(attempts_remaining=max_attempts)
        self._lock_until: float | None = None
        self._countdown_task: asyncio.Task | None = None
        self._resolver_handle: str | None = None
        self._submitting = False

    async def __aenter__(self) -> "LockoutPresenter":
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def view(self) -> PresenterView:
        return self._view

    @property
    def throttle(self) -> SecondaryThrottle:
        return self._throttle

    @property
    def countdown_running(self) -> bool:
        return self._countdown_task is not None and not self._countdown_task.done()

    def _update(self, **changes) -> None:
        self._view = replace(self._view, **changes)
        if self._on_change is not None:
            self._on_change(self._view)

    async def mount(self) -> None:
        """Paint the last known lock state before talking to the server."""
        mirror = self._mirror.load()
        if mirror is None:
            return

        now = self._clock()
        if mirror.is_permanent:
            self._update(
                email=mirror.email,
                attempts_remaining=0,
                is_locked=True,
                is_permanent=True,
                message=PERMANENT_MESSAGE,
            )
            return

        if mirror.lock_until is not None and now >= mirror.lock_until:
            self._mirror.clear()
            self._update(email=mirror.email, attempts_remaining=self._max_attempts)
            return

        if mirror.lock_until is not None:
            self._lock_until = mirror.lock_until
            self._update(
                email=mirror.email,
                attempts_remaining=0,
                is_locked=True,
                countdown=format_countdown(mirror.lock_until - now),
            )
            self._start_countdown()
            return

        self._update(
            email=mirror.email,
            attempts_remaining=max(0, self._max_attempts - mirror.failed_attempts),
        )

    async def aclose(self) -> None:
        task, self._countdown_task = self._countdown_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def record_interaction(self, kind: str) -> None:
        self._throttle.record_interaction(kind)

    def _start_countdown(self) -> None:
        if self.countdown_running:
            return
        self._countdown_task = asyncio.get_running_loop().create_task(self._run_countdown())

    async def _run_countdown(self) -> None:
        while self.tick():
            await asyncio.sleep(self._tick_interval)

    def tick(self) -> bool:
        """Refresh the countdown; returns ``False`` once there is nothing left to count."""
        if self._lock_until is None:
            return False
        remaining = self._lock_until - self._clock()
        if remaining <= 0:
            # Optimistic unlock; the next submit re-checks with the server.
            self._lock_until = None
            self._mirror.clear()
            self._update(
                is_locked=False,
                countdown=None,
                message=None,
                attempts_remaining=self._max_attempts,
            )
            return False
        self._update(countdown=format_countdown(remaining))
        return True

    def _apply_status(self, email: str, status: ServerStatus) -> None:
        now = self._clock()
        if status.is_permanent:
            self._lock_until = None
            self._mirror.save(
                ClientLockoutMirror(
                    email=email,
                    failed_attempts=status.attempts,
                    last_attempt_time=now,
                    is_permanent=True,
                )
            )
            self._update(
                email=email,
                attempts_remaining=0,
                is_locked=True,
                is_permanent=True,
                countdown=None,
                message=PERMANENT_MESSAGE,
            )
            return

        if status.is_blocked:
            self._lock_until = now + status.seconds_remaining
            self._mirror.save(
                ClientLockoutMirror(
                    email=email,
                    failed_attempts=status.attempts,
                    lock_until=self._lock_until,
                    last_attempt_time=now,
                )
            )
            self._update(
                email=email,
                attempts_remaining=0,
                is_locked=True,
                is_permanent=False,
                countdown=format_countdown(status.seconds_remaining),
                message="Too many failed attempts. Please wait before trying again.",
            )
            self._start_countdown()
            return

        self._lock_until = None
        self._mirror.save(
            ClientLockoutMirror(
                email=email,
                failed_attempts=status.attempts,
                last_attempt_time=now,
            )
        )
        self._update(
            email=email,
            attempts_remaining=status.attempts_remaining,
            is_locked=False,
            is_permanent=False,
            countdown=None,
        )

    async def submit(self, email: str, password: str) -> SubmitResult:
        """Handle one press of the sign-in button."""
        if self._submitting:
            return SubmitResult(kind=None, accepted=False, message="Sign-in already in progress.")

        email = normalize_email(email)
        decision = self._throttle.check(email)
        if not decision.allowed:
            message = NO_INTERACTION_MESSAGE if decision.reason == "no_interaction" else TOO_FAST_MESSAGE
            self._update(message=message)
            return SubmitResult(kind=None, accepted=False, message=message)

        self._submitting = True
        self._update(submitting=True, message=None)
        try:
            return await self._submit(email, password)
        finally:
            self._submitting = False
            self._update(submitting=False)

    async def _submit(self, email: str, password: str) -> SubmitResult:
        try:
            status = await self._gateway.check_status(email)
        except GatewayError:
            logger.warning("Lockout status check failed for %s", email, exc_info=True)
            self._update(message=RETRY_MESSAGE)
            return SubmitResult(kind=ResponseKind.ERROR, accepted=False, message=RETRY_MESSAGE)

        if status.is_blocked:
            self._apply_status(email, status)
            return SubmitResult(kind=ResponseKind.BLOCKED, accepted=False, message=self._view.message)

        response = await self._gateway.login(email, password)
        return self._handle_response(email, response)

    async def submit_mfa(self, code: str) -> SubmitResult:
        """Send the authenticator code for a pending MFA challenge."""
        if self._resolver_handle is None:
            return SubmitResult(kind=None, accepted=False, message="No verification in progress.")
        if self._submitting:
            return SubmitResult(kind=None, accepted=False, message="Sign-in already in progress.")

        self._submitting = True
        self._update(submitting=True, message=None)
        try:
            response = await self._gateway.verify_mfa(self._resolver_handle, code)
            return self._handle_response(self._view.email, response)
        finally:
            self._submitting = False
            self._update(submitting=False)

    def cancel_mfa(self) -> None:
        self._resolver_handle = None
        self._update(mfa_pending=False, message=None)

    def _handle_response(self, email: str, response: LoginResponse) -> SubmitResult:
        kind = response.kind

        if kind == ResponseKind.AUTHENTICATED:
            self._lock_until = None
            self._resolver_handle = None
            self._mirror.clear()
            self._throttle.record_attempt(email, success=True)
            self._throttle.forget(email)
            self._update(
                email=email,
                attempts_remaining=self._max_attempts,
                is_locked=False,
                is_permanent=False,
                countdown=None,
                mfa_pending=False,
                message=None,
            )
            return SubmitResult(kind=kind, accepted=True, access_token=response.access_token)

        if kind == ResponseKind.MFA_REQUIRED:
            self._resolver_handle = response.resolver_handle
            self._update(email=email, mfa_pending=True, message=MFA_MESSAGE)
            return SubmitResult(kind=kind, accepted=True, message=MFA_MESSAGE)

        if kind in (ResponseKind.INVALID_CREDENTIALS, ResponseKind.BLOCKED):
            self._throttle.record_attempt(email, success=False)
            if response.status is not None:
                self._apply_status(email, response.status)
            if kind == ResponseKind.INVALID_CREDENTIALS:
                remaining = self._view.attempts_remaining
                self._update(
                    message=f"Invalid email or password. {remaining} attempt(s) remaining."
                )
            return SubmitResult(kind=kind, accepted=False, message=self._view.message)

        if kind == ResponseKind.UPSTREAM_THROTTLED:
            self._update(message=UPSTREAM_THROTTLE_MESSAGE)
            return SubmitResult(kind=kind, accepted=False, message=UPSTREAM_THROTTLE_MESSAGE)

        if kind in (ResponseKind.INVALID_VERIFICATION_CODE, ResponseKind.VERIFICATION_EXPIRED):
            message = (
                "Invalid verification code."
                if kind == ResponseKind.INVALID_VERIFICATION_CODE
                else "Verification code has expired. Please sign in again."
            )
            if kind == ResponseKind.VERIFICATION_EXPIRED:
                self._resolver_handle = None
                self._update(mfa_pending=False)
            self._update(message=message)
            return SubmitResult(kind=kind, accepted=False, message=message)

        # RATE_LIMIT_ERROR or a transport problem: show a generic retry.
        if kind == ResponseKind.RATE_LIMIT_ERROR:
            self._throttle.record_attempt(email, success=False)
        self._update(message=RETRY_MESSAGE)
        return SubmitResult(kind=kind, accepted=False, message=RETRY_MESSAGE)
