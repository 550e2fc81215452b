"""Shared plumbing for signing-provider clients.

Outbound calls use httpx with a bounded timeout. Timeouts, transport
failures and 5xx responses are retried with exponential backoff; any 4xx is
permanent and raised on the first attempt.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from contractor_platform.app.config import Settings, get_settings
from contractor_platform.domain.enums import DocumentStatus, ESignProvider, SignerTopology
from contractor_platform.services.signature_workflow import Signer

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base class for signing-provider failures."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider}: {message}" + (f" (HTTP {status_code})" if status_code else ""))


class TransientProviderError(ProviderError):
    """Timeout, transport failure or 5xx that persisted through all retries."""


class PermanentProviderError(ProviderError):
    """4xx or missing configuration. Never retried."""


class TokenCache:
    """Access token with an expiry, owned by one provider client.

    The token is treated as expired ``leeway_seconds`` before the provider's
    stated expiry.
    """

    def __init__(self, leeway_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.leeway_seconds = leeway_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None

    @property
    def expires_at(self) -> Optional[float]:
        return self._expires_at

    def get(self) -> Optional[str]:
        if self._token is None or self._expires_at is None:
            return None
        if self._clock() >= self._expires_at:
            self.invalidate()
            return None
        return self._token

    def set(self, token: str, expires_in: float) -> None:
        self._token = token
        self._expires_at = self._clock() + float(expires_in) - self.leeway_seconds

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = None


@dataclass
class SigningRequest:
    """Everything a provider needs to start a signing flow."""

    document_id: str
    title: str
    document_url: str
    signers: list[Signer]
    message: str = "Please review and sign this document."
    page_number: int = 1


@dataclass
class ProviderStatus:
    """Result of polling a provider for a document's state."""

    provider_status: Optional[str]
    status: Optional[DocumentStatus]
    signers: list = field(default_factory=list)


class SigningProviderClient(ABC):
    """Base class. Subclasses set ``provider`` and ``topology``."""

    provider: ESignProvider
    topology: SignerTopology

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.timeout = self.settings.esign_timeout_seconds
        self.max_retries = max(1, self.settings.esign_max_retries)
        self.backoff_seconds = self.settings.esign_backoff_seconds
        self._transport = transport
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return False

    def _require_configured(self) -> None:
        if not self.configured:
            raise PermanentProviderError(self.provider.value, "provider credentials are not configured")

    @abstractmethod
    async def create_signing_request(self, request: SigningRequest) -> str:
        """Send ``request`` to the provider and return its document id."""

    @abstractmethod
    async def get_status(self, provider_document_id: str) -> ProviderStatus:
        """Current provider status of a sent document."""

    async def add_signer(self, provider_document_id: str, signer: Signer) -> None:
        """Add a signer to an in-flight document (added-on-first-signature only)."""
        raise PermanentProviderError(self.provider.value, "adding signers is not supported")

    def _on_unauthorized(self) -> None:
        """Hook for clients holding cached credentials."""

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Issue an HTTP request with the retry policy.

        Raises:
            PermanentProviderError: any 4xx response.
            TransientProviderError: 5xx / timeout / transport error on every attempt.
        """
        last_error: Optional[ProviderError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = TransientProviderError(self.provider.value, f"{type(e).__name__}: {e}")
            else:
                if 200 <= resp.status_code < 300:
                    return resp
                if resp.status_code < 500:
                    if resp.status_code == 401:
                        self._on_unauthorized()
                    logger.error(
                        "%s %s %s failed (%d): %s",
                        self.provider.value, method, url, resp.status_code, resp.text[:300],
                    )
                    raise PermanentProviderError(self.provider.value, resp.text[:300], resp.status_code)
                last_error = TransientProviderError(self.provider.value, resp.text[:300], resp.status_code)

            if attempt < self.max_retries:
                wait = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s %s %s transient failure, retrying in %.1fs (attempt %d/%d): %s",
                    self.provider.value, method, url, wait, attempt, self.max_retries, last_error,
                )
                await self._sleep(wait)

        logger.error("%s %s %s gave up after %d attempts", self.provider.value, method, url, self.max_retries)
        raise last_error
