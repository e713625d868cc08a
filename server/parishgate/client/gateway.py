"""How the login client reaches the server.

``ApiLoginGateway`` talks to the HTTP API with httpx. ``InProcessLoginGateway``
calls a ``LoginService`` directly, for a form hosted in the same process.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from parishgate.client.models import LoginResponse, ResponseKind, ServerStatus
from parishgate.core.lockout import normalize_email
from parishgate.core.time import utcnow

if TYPE_CHECKING:
    from parishgate.services.login import LoginOutcome, LoginService

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

_ERROR_CODES = {
    "invalid_credentials": ResponseKind.INVALID_CREDENTIALS,
    "temporarily_blocked": ResponseKind.BLOCKED,
    "permanently_blocked": ResponseKind.BLOCKED,
    "upstream_throttled": ResponseKind.UPSTREAM_THROTTLED,
    "too_many_requests": ResponseKind.UPSTREAM_THROTTLED,
    "rate_limit_error": ResponseKind.RATE_LIMIT_ERROR,
    "invalid_verification_code": ResponseKind.INVALID_VERIFICATION_CODE,
    "verification_expired": ResponseKind.VERIFICATION_EXPIRED,
}


class GatewayError(Exception):
    """The server could not be asked (network fault or unexpected reply)."""


class LoginGateway:
    async def check_status(self, email: str) -> ServerStatus:
        raise NotImplementedError

    async def login(self, email: str, password: str) -> LoginResponse:
        raise NotImplementedError

    async def verify_mfa(self, resolver_handle: str, code: str) -> LoginResponse:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class ApiLoginGateway(LoginGateway):
    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if client is None and base_url is None:
            raise ValueError("ApiLoginGateway needs a base_url or an httpx client")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def check_status(self, email: str) -> ServerStatus:
        try:
            resp = await self._client.get("/api/auth/status", params={"email": email})
            resp.raise_for_status()
            return ServerStatus.from_json(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayError("Rate limit status check failed") from exc

    async def login(self, email: str, password: str) -> LoginResponse:
        return await self._post(
            "/api/auth/login", {"email": normalize_email(email), "password": password}
        )

    async def verify_mfa(self, resolver_handle: str, code: str) -> LoginResponse:
        return await self._post(
            "/api/auth/mfa/verify", {"resolver_handle": resolver_handle, "code": code}
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> LoginResponse:
        try:
            resp = await self._client.post(path, json=payload)
        except httpx.HTTPError:
            logger.warning("Login request to %s failed", path, exc_info=True)
            return LoginResponse(kind=ResponseKind.ERROR)

        try:
            body = resp.json()
        except ValueError:
            logger.warning("Non-JSON login response (HTTP %d)", resp.status_code)
            return LoginResponse(kind=ResponseKind.ERROR)

        if resp.status_code == 200:
            return _parse_success(body)
        return _parse_error(body)


def _parse_success(body: dict[str, Any]) -> LoginResponse:
    if body.get("kind") == "mfa_required":
        return LoginResponse(
            kind=ResponseKind.MFA_REQUIRED, resolver_handle=body.get("resolver_handle")
        )
    return LoginResponse(kind=ResponseKind.AUTHENTICATED, access_token=body.get("access_token"))


def _parse_error(body: dict[str, Any]) -> LoginResponse:
    detail = body.get("detail")
    if not isinstance(detail, dict):
        return LoginResponse(kind=ResponseKind.ERROR)
    rate_limit = detail.get("rate_limit")
    return LoginResponse(
        kind=_ERROR_CODES.get(detail.get("code"), ResponseKind.ERROR),
        status=ServerStatus.from_json(rate_limit) if isinstance(rate_limit, dict) else None,
        message=detail.get("message"),
    )


class InProcessLoginGateway(LoginGateway):
    """Runs the blocking ``LoginService`` calls in a worker thread."""

    def __init__(self, service: "LoginService") -> None:
        self._service = service

    async def check_status(self, email: str) -> ServerStatus:
        status = await asyncio.to_thread(self._service.check, email)
        return ServerStatus.from_status(status, utcnow())

    async def login(self, email: str, password: str) -> LoginResponse:
        outcome = await asyncio.to_thread(self._service.attempt, email, password)
        return _from_outcome(outcome)

    async def verify_mfa(self, resolver_handle: str, code: str) -> LoginResponse:
        from parishgate.services.identity import (
            InvalidVerificationCodeError,
            MfaSessionExpiredError,
        )

        try:
            outcome = await asyncio.to_thread(self._service.complete_mfa, resolver_handle, code)
        except MfaSessionExpiredError:
            return LoginResponse(kind=ResponseKind.VERIFICATION_EXPIRED)
        except InvalidVerificationCodeError:
            return LoginResponse(kind=ResponseKind.INVALID_VERIFICATION_CODE)
        return _from_outcome(outcome)


def _from_outcome(outcome: "LoginOutcome") -> LoginResponse:
    return LoginResponse(
        kind=ResponseKind(outcome.kind.value),
        status=ServerStatus.from_status(outcome.status, utcnow()),
        resolver_handle=outcome.resolver_handle,
        email=outcome.identity.email if outcome.identity else None,
    )
