"""Webhook status mapper: provider payloads -> internal document status.

Each provider gets its own parser that turns its payload into a common
``WebhookEvent``. The event -> status table below is provider-agnostic.
Unknown and verification-only events map to ``None`` and are ignored.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from contractor_platform.domain.enums import DocumentStatus, ESignProvider, SignatureEvent

logger = logging.getLogger(__name__)

E = SignatureEvent

EVENT_STATUS_MAP: dict[SignatureEvent, Optional[DocumentStatus]] = {
    E.SENT: DocumentStatus.SENT,
    E.VIEWED: DocumentStatus.DELIVERED,
    E.SIGNER_COMPLETED: DocumentStatus.SIGNED,
    E.COMPLETED: DocumentStatus.COMPLETED,
    E.DECLINED: DocumentStatus.DECLINED,
    E.EXPIRED: DocumentStatus.VOIDED,
    E.REVOKED: DocumentStatus.VOIDED,
    E.VOIDED: DocumentStatus.VOIDED,
    E.REASSIGNED: DocumentStatus.SENT,
    E.VERIFICATION: None,
}

# Raw provider event names, normalized with ``_normalize_name``
EVENT_NAMES: dict[str, SignatureEvent] = {
    # BoldSign, plain and Document-prefixed
    "sent": E.SENT,
    "viewed": E.VIEWED,
    "signed": E.SIGNER_COMPLETED,
    "completed": E.COMPLETED,
    "declined": E.DECLINED,
    "expired": E.EXPIRED,
    "revoked": E.REVOKED,
    "reassigned": E.REASSIGNED,
    "verification": E.VERIFICATION,
    "documentsent": E.SENT,
    "documentviewed": E.VIEWED,
    "documentsigned": E.SIGNER_COMPLETED,
    "documentcompleted": E.COMPLETED,
    "documentdeclined": E.DECLINED,
    "documentexpired": E.EXPIRED,
    "documentrevoked": E.REVOKED,
    "documentreassigned": E.REASSIGNED,
    "signercompleted": E.SIGNER_COMPLETED,
    # DocuSign Connect (JSON, event-based)
    "envelope-sent": E.SENT,
    "envelope-delivered": E.VIEWED,
    "envelope-completed": E.COMPLETED,
    "envelope-declined": E.DECLINED,
    "envelope-voided": E.VOIDED,
    "recipient-sent": E.SENT,
    "recipient-delivered": E.VIEWED,
    "recipient-completed": E.SIGNER_COMPLETED,
    "recipient-declined": E.DECLINED,
    "recipient-reassign": E.REASSIGNED,
    # DocuSign envelope statuses (legacy Connect / status polling)
    "delivered": E.VIEWED,
    "voided": E.VOIDED,
}

# BoldSign document statuses returned by GET /document/properties
BOLDSIGN_DOCUMENT_STATUSES: dict[str, Optional[DocumentStatus]] = {
    "draft": DocumentStatus.DRAFT,
    "sent": DocumentStatus.SENT,
    "inprogress": DocumentStatus.SENT,
    "completed": DocumentStatus.COMPLETED,
    "declined": DocumentStatus.DECLINED,
    "expired": DocumentStatus.VOIDED,
    "revoked": DocumentStatus.VOIDED,
}


class WebhookPayloadError(ValueError):
    """Raised when a payload is not a JSON object a parser can read."""


@dataclass
class WebhookEvent:
    """Provider-agnostic view of one webhook delivery."""

    provider: ESignProvider
    event_name: Optional[str]
    event: Optional[SignatureEvent]
    provider_document_id: Optional[str]
    signer_email: Optional[str] = None
    completed_signers: list = field(default_factory=list)
    occurred_at: Optional[datetime] = None
    raw: dict = field(default_factory=dict)

    @property
    def status(self) -> Optional[DocumentStatus]:
        if self.event is None:
            return None
        return EVENT_STATUS_MAP.get(self.event)

    @property
    def signed_by(self) -> list[str]:
        """Emails of every signer this delivery reports as having signed."""
        emails = list(self.completed_signers)
        if self.signer_email and self.status in (DocumentStatus.SIGNED, DocumentStatus.COMPLETED):
            emails.append(self.signer_email)
        return emails


_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


def _normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().lower().replace("_", "").replace(" ", "")


def lookup_event(name: Optional[str]) -> Optional[SignatureEvent]:
    return EVENT_NAMES.get(_normalize_name(name))


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        text = str(value).replace("Z", "+00:00")
        # DocuSign sends 7 fractional digits
        text = _EXTRA_FRACTION.sub(r"\1", text)
        return datetime.fromisoformat(text)
    except (ValueError, OverflowError, OSError):
        logger.debug("Unparseable webhook timestamp: %r", value)
        return None


def _dig(payload: dict, *path: str) -> Any:
    current: Any = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def parse_boldsign(payload: dict, event_name: Optional[str] = None) -> WebhookEvent:
    """Parse a BoldSign webhook.

    BoldSign sends ``{"event": {"eventType", "created"}, "data": {...}}``;
    older payloads put ``eventType`` / ``Event`` at the top level.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("BoldSign payload must be a JSON object")

    name = (
        event_name
        or _dig(payload, "event", "eventType")
        or payload.get("eventType")
        or payload.get("Event")
    )
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    document_id = data.get("documentId") or payload.get("documentId")

    completed = []
    signer_details = data.get("signerDetails")
    if isinstance(signer_details, list):
        for signer in signer_details:
            if isinstance(signer, dict) and signer.get("status") in ("Completed", "Signed") and signer.get("signerEmail"):
                completed.append(signer["signerEmail"])

    return WebhookEvent(
        provider=ESignProvider.BOLDSIGN,
        event_name=name,
        event=lookup_event(name),
        provider_document_id=document_id,
        signer_email=completed[-1] if completed else None,
        completed_signers=completed,
        occurred_at=_parse_timestamp(_dig(payload, "event", "created")),
        raw=payload,
    )


def parse_docusign(payload: dict, event_name: Optional[str] = None) -> WebhookEvent:
    """Parse a DocuSign Connect JSON (SIM) notification.

    Shape: ``{"event": "envelope-completed", "generatedDateTime": ...,
    "data": {"envelopeId": ..., "recipientId": ...}}``. Legacy aggregate
    messages carry ``status`` and ``envelopeId`` at the top level.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("DocuSign payload must be a JSON object")

    name = event_name or payload.get("event") or payload.get("status")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    envelope_id = (
        data.get("envelopeId")
        or _dig(data, "envelopeSummary", "envelopeId")
        or payload.get("envelopeId")
    )

    signers = _dig(data, "envelopeSummary", "recipients", "signers")
    signers = [s for s in signers if isinstance(s, dict)] if isinstance(signers, list) else []
    signer_email = _dig(data, "recipientEmail") or data.get("email")
    recipient_id = data.get("recipientId")
    if not signer_email and recipient_id is not None:
        signer_email = next(
            (s.get("email") for s in signers if str(s.get("recipientId")) == str(recipient_id)),
            None,
        )

    return WebhookEvent(
        provider=ESignProvider.DOCUSIGN,
        event_name=name,
        event=lookup_event(name),
        provider_document_id=envelope_id,
        signer_email=signer_email,
        completed_signers=[s["email"] for s in signers if s.get("status") == "completed" and s.get("email")],
        occurred_at=_parse_timestamp(payload.get("generatedDateTime")),
        raw=payload,
    )


PARSERS = {
    ESignProvider.BOLDSIGN: parse_boldsign,
    ESignProvider.DOCUSIGN: parse_docusign,
}


class WebhookStatusMapper:
    """Maps provider events to internal statuses."""

    def parse(self, provider, payload: dict) -> WebhookEvent:
        """Dispatch ``payload`` to the parser for ``provider``.

        Raises:
            ValueError: unknown provider (``ESignProvider`` lookup).
            WebhookPayloadError: payload is not a JSON object.
        """
        return PARSERS[ESignProvider(provider)](payload)

    def map(self, event_name: Optional[str], payload: Optional[dict] = None) -> Optional[DocumentStatus]:
        """Return the internal status for a raw event name, or ``None``.

        When ``event_name`` is empty the name is read from the payload
        (``event.eventType``, ``eventType``, ``Event`` or ``event``).
        """
        name = event_name
        if not name and isinstance(payload, dict):
            nested = payload.get("event")
            name = (
                (nested.get("eventType") if isinstance(nested, dict) else nested)
                or payload.get("eventType")
                or payload.get("Event")
            )

        event = lookup_event(name)
        if event is None:
            logger.info("Unmapped signature event %r ignored", name)
            return None

        status = EVENT_STATUS_MAP[event]
        if status is None:
            logger.info("Signature event %r carries no status change", name)
        return status

    def map_provider_status(self, provider, provider_status: Optional[str]) -> Optional[DocumentStatus]:
        """Map a polled provider status (not a webhook event name)."""
        if ESignProvider(provider) == ESignProvider.BOLDSIGN:
            return BOLDSIGN_DOCUMENT_STATUSES.get(_normalize_name(provider_status))
        return self.map(provider_status)
