"""Signing-provider webhook: applies status callbacks to documents.

Always answers ``{"ok": true}`` once the delivery is authenticated, even
when the event is unknown, duplicated, out of order or fails to persist.
A non-2xx answer would only make the provider retry the same delivery.
"""

import base64
import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from contractor_platform.app.config import get_settings
from contractor_platform.app.routes.documents import get_signing_client_dep
from contractor_platform.domain.enums import ESignProvider
from contractor_platform.infra.database import get_db
from contractor_platform.services.esign import SigningProviderClient
from contractor_platform.services.signature_service import SignatureService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/esign", tags=["esign"])


def verify_boldsign_signature(secret: str, body: bytes, header: str) -> bool:
    """Check ``X-BoldSign-Signature: t=<unix>, s0=<hex hmac>``.

    The signed string is ``"<t>.<raw body>"`` keyed with the webhook secret.
    """
    parts = {}
    for piece in header.split(","):
        key, _, value = piece.strip().partition("=")
        if key:
            parts[key] = value
    timestamp = parts.get("t")
    signatures = [v for k, v in parts.items() if k.startswith("s")]
    if not timestamp or not signatures:
        return False

    expected = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, sig) for sig in signatures)


def verify_docusign_signature(secret: str, body: bytes, header: str) -> bool:
    """Check ``X-DocuSign-Signature-1``: base64 HMAC-SHA256 of the raw body."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode()
    return hmac.compare_digest(expected, header.strip())


def _check_signature(provider: ESignProvider, request: Request, body: bytes) -> None:
    settings = get_settings()
    if provider == ESignProvider.BOLDSIGN:
        secret = settings.boldsign_webhook_secret
        header = request.headers.get("x-boldsign-signature", "")
        verify = verify_boldsign_signature
    else:
        secret = settings.docusign_connect_hmac_key
        header = request.headers.get("x-docusign-signature-1", "")
        verify = verify_docusign_signature

    if not secret:
        return
    if not header or not verify(secret, body, header):
        logger.warning("Invalid %s webhook signature", provider.value)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )


@router.post("/webhook/{provider}")
async def esign_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: SigningProviderClient = Depends(get_signing_client_dep),
):
    """Receive a signature status callback from BoldSign or DocuSign."""
    try:
        provider_key = ESignProvider(provider.lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown provider: {provider}")

    body = await request.body()
    _check_signature(provider_key, request, body)

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        logger.info("Ignoring %s webhook with a non-JSON body", provider_key.value)
        return {"ok": True}

    try:
        result = await SignatureService(db, client=client).handle_webhook(provider_key.value, payload)
    except Exception:
        # Alerting hook: the delivery is still acknowledged
        logger.exception("Failed to apply %s webhook", provider_key.value)
        await db.rollback()
        return {"ok": True}

    logger.info(
        "%s webhook %r -> %s",
        provider_key.value,
        result.event.event_name if result.event else None,
        result.outcome.value if result.outcome else "ignored",
    )
    return {"ok": True}
