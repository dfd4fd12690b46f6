# Overview: Bank gateway client; OAuth client-credentials token and (partial) capture of payment holds.

"""
Bank Gateway Client

Wire format (must stay bit-compatible with the provider):

    POST {oauth_url}/oauth2/token
        Authorization: Basic base64(client_id:client_secret)
        AUTH: <terminal auth id>
        Content-Type: application/x-www-form-urlencoded
        body: grant_type=client_credentials&scope=payment
        -> {access_token, expires_in, scope, token_type}

    POST {api_url}/operation/{operation_id}/charge[?amount=N]
        Authorization: Bearer <access_token>
        body (only when N > 0): {"amount": N}
        -> {code, message?, reference?, approvalCode?, responseCode?}

Settlement code depends on the BankGateway protocol, not on EpayGateway, so
tests (and other providers) can pass any object with the same two methods.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


TOKEN_REQUEST_BODY = "grant_type=client_credentials&scope=payment"

# Refresh cached tokens this many seconds before the provider says they expire
TOKEN_EXPIRY_MARGIN_SECONDS = 30


class GatewayError(Exception):
    """Raised for any downstream failure talking to the bank gateway."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class Deadline:
    """Absolute time budget shared by every call of one settlement chain."""

    def __init__(self, seconds: float, *, clock=time.monotonic):
        self._clock = clock
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return self.expires_at - self._clock()

    def timeout(self, cap: float) -> float:
        """Timeout for the next call; raises GatewayError once the budget is spent."""
        remaining = self.remaining()
        if remaining <= 0:
            raise GatewayError("Settlement deadline exceeded")
        return min(cap, remaining)


@dataclass
class GatewayToken:
    access_token: str
    expires_in: int = 0
    scope: str | None = None
    token_type: str | None = None
    obtained_at: float = field(default_factory=time.monotonic)

    def is_fresh(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now < self.obtained_at + self.expires_in - TOKEN_EXPIRY_MARGIN_SECONDS


@dataclass
class CaptureResult:
    operation_id: str
    amount: int | None
    code: Any = None
    message: str | None = None
    reference: str | None = None
    approval_code: str | None = None
    response_code: str | None = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, operation_id: str, amount: int | None, data: dict) -> "CaptureResult":
        return cls(
            operation_id=operation_id,
            amount=amount,
            code=data.get("code"),
            message=data.get("message"),
            reference=data.get("reference"),
            approval_code=data.get("approvalCode"),
            response_code=data.get("responseCode"),
            raw=data,
        )


class BankGateway(Protocol):
    def authenticate(self, deadline: Deadline | None = None) -> GatewayToken:
        ...

    def capture(self, operation_id: str, amount: int | None, deadline: Deadline | None = None) -> CaptureResult:
        ...


class EpayGateway:
    """
    httpx implementation of BankGateway.

    Tokens are fetched per capture unless cache_tokens is enabled, in which
    case one token is reused until shortly before expires_in runs out.
    """

    def __init__(
        self,
        *,
        oauth_url: str,
        api_url: str,
        client_id: str,
        client_secret: str,
        terminal_auth: str,
        timeout: float = 10.0,
        cache_tokens: bool = False,
        client: httpx.Client | None = None,
    ):
        self.oauth_url = oauth_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.terminal_auth = terminal_auth
        self.timeout = timeout
        self.cache_tokens = cache_tokens
        self._client = client or httpx.Client()
        self._token: GatewayToken | None = None

    @classmethod
    def from_config(cls, config: dict, client: httpx.Client | None = None) -> "EpayGateway":
        return cls(
            oauth_url=config["BANK_OAUTH_URL"],
            api_url=config["BANK_API_URL"],
            client_id=config["BANK_CLIENT_ID"],
            client_secret=config["BANK_CLIENT_SECRET"],
            terminal_auth=config["BANK_TERMINAL_AUTH"],
            timeout=float(config.get("BANK_TIMEOUT_SECONDS", 10.0)),
            cache_tokens=bool(config.get("BANK_TOKEN_CACHE", False)),
            client=client,
        )

    def close(self) -> None:
        self._client.close()

    def _timeout(self, deadline: Deadline | None) -> float:
        return deadline.timeout(self.timeout) if deadline is not None else self.timeout

    def _post(self, url: str, *, deadline: Deadline | None, **kwargs) -> dict:
        try:
            response = self._client.post(url, timeout=self._timeout(deadline), **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayError(f"Timeout calling {url}") from exc
        except httpx.RequestError as exc:
            raise GatewayError(f"Connection error calling {url}: {exc}") from exc

        if not response.is_success:
            body = response.text[:1000]
            logger.error("Gateway %s returned %s: %s", url, response.status_code, body)
            raise GatewayError(
                f"Gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayError(
                f"Gateway returned non-JSON body (HTTP {response.status_code})",
                status_code=response.status_code,
                body=response.text[:1000],
            ) from exc
        if not isinstance(data, dict):
            raise GatewayError("Gateway returned malformed JSON response", status_code=response.status_code)
        return data

    def authenticate(self, deadline: Deadline | None = None) -> GatewayToken:
        if self.cache_tokens and self._token is not None and self._token.is_fresh():
            return self._token

        credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode("utf-8")).decode("ascii")
        data = self._post(
            f"{self.oauth_url}/oauth2/token",
            deadline=deadline,
            headers={
                "Authorization": f"Basic {credentials}",
                "AUTH": self.terminal_auth,
                "Content-Type": "application/x-www-form-urlencoded",
            },
            content=TOKEN_REQUEST_BODY,
        )

        access_token = data.get("access_token")
        if not access_token:
            raise GatewayError("Token response missing access_token")

        token = GatewayToken(
            access_token=access_token,
            expires_in=int(data.get("expires_in") or 0),
            scope=data.get("scope"),
            token_type=data.get("token_type"),
        )
        logger.info("Gateway token obtained (expires_in=%s)", token.expires_in)
        if self.cache_tokens:
            self._token = token
        return token

    def capture(self, operation_id: str, amount: int | None, deadline: Deadline | None = None) -> CaptureResult:
        """
        Charge a previously authorized hold, fully (amount None) or partially.

        Raises:
            GatewayError: Transport failure, timeout, non-2xx or malformed body,
                or a non-positive amount (the bank would treat it as a full capture)
        """
        if not operation_id:
            raise GatewayError("Missing payment operation id")
        if amount is not None and amount <= 0:
            raise GatewayError(f"Refusing to capture non-positive amount {amount}")

        token = self.authenticate(deadline)

        url = f"{self.api_url}/operation/{operation_id}/charge"
        kwargs: dict[str, Any] = {
            "headers": {
                "Authorization": f"Bearer {token.access_token}",
                "Content-Type": "application/json",
            },
        }
        if amount is not None:
            kwargs["params"] = {"amount": amount}
            kwargs["json"] = {"amount": amount}

        logger.info("Capturing operation %s (amount=%s)", operation_id, amount)
        data = self._post(url, deadline=deadline, **kwargs)
        result = CaptureResult.from_response(operation_id, amount, data)
        logger.info(
            "Operation %s captured: code=%s reference=%s approval=%s",
            operation_id, result.code, result.reference, result.approval_code,
        )
        return result
