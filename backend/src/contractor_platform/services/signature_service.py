"""Signature lifecycle service: send, poll and webhook application.

Status writes are conditional on the status the decision was made from
(``UPDATE ... WHERE status = :from_status``). A concurrent writer makes the
update match no rows; the document is reloaded and the decision re-made, so
out-of-order deliveries never overwrite a later state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from contractor_platform.domain.enums import (
    DocumentEventOutcome,
    DocumentStatus,
    SignatureEvent,
    SignerRole,
    SignerTopology,
)
from contractor_platform.domain.models import DocumentEvent, ProjectDocument
from contractor_platform.services.errors import DocumentStateError, FieldValidationError, NotFoundError
from contractor_platform.services.esign import SigningProviderClient, SigningRequest, get_signing_client
from contractor_platform.services.signature_workflow import (
    Signer,
    SignatureWorkflow,
    TransitionResult,
    plan_signers,
)
from contractor_platform.services.webhook_mapper import WebhookEvent, WebhookPayloadError, WebhookStatusMapper

logger = logging.getLogger(__name__)

STATUS_UPDATE_ATTEMPTS = 3


def completed_signer_emails(signers: list) -> list[str]:
    """Emails of the signers a status poll reports as finished.

    Reads DocuSign recipients (``email``) and BoldSign signer details
    (``signerEmail``).
    """
    emails = []
    for signer in signers:
        if not isinstance(signer, dict):
            continue
        email = signer.get("email") or signer.get("signerEmail")
        if email and str(signer.get("status") or "").lower() in ("completed", "signed"):
            emails.append(email)
    return emails


@dataclass
class WebhookResult:
    """What ``handle_webhook`` did with a delivery (for logging and tests)."""

    event: Optional[WebhookEvent]
    outcome: Optional[DocumentEventOutcome]
    document_id: Optional[str] = None


class SignatureService:
    """Drives documents through the signing provider."""

    def __init__(
        self,
        db: AsyncSession,
        client: Optional[SigningProviderClient] = None,
        workflow: Optional[SignatureWorkflow] = None,
        mapper: Optional[WebhookStatusMapper] = None,
    ):
        self.db = db
        self.client = client
        self.workflow = workflow or SignatureWorkflow()
        self.mapper = mapper or WebhookStatusMapper()

    def _client_for(self, provider: Optional[str] = None) -> SigningProviderClient:
        if self.client is not None and (provider is None or self.client.provider.value == provider):
            return self.client
        return get_signing_client(provider)

    async def _get_document(self, company_id: str, document_id: str) -> ProjectDocument:
        result = await self.db.execute(
            select(ProjectDocument).where(
                ProjectDocument.id == document_id,
                ProjectDocument.company_id == company_id,
            )
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    async def _reload(self, document_id: str) -> ProjectDocument:
        document = await self.db.get(ProjectDocument, document_id, populate_existing=True)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_for_signature(
        self,
        company_id: str,
        document_id: str,
        document_url: Optional[str] = None,
        message: Optional[str] = None,
    ) -> ProjectDocument:
        """Send a draft document to the signing provider (draft -> sent).

        Signer validation runs before any outbound call. Provider errors
        propagate and leave the document in draft.

        Raises:
            DocumentStateError: document is not a draft, or was sent concurrently.
            SignatureValidationError: missing / invalid customer email.
            FieldValidationError: no document URL to send.
            ProviderError: signing provider rejected or could not be reached.
        """
        document = await self._get_document(company_id, document_id)
        if document.status != DocumentStatus.DRAFT.value:
            raise DocumentStateError(document.id, document.status, "only draft documents can be sent")

        signers = plan_signers(
            document.customer_name,
            document.customer_email,
            document.company_signer_name,
            document.company_signer_email,
        )
        url = document_url or document.document_url
        if not url:
            raise FieldValidationError("document_url", "A rendered document URL is required to send for signature")

        client = self._client_for()
        title = f"{document.document_type.replace('_', ' ').title()} #{document.document_number}"
        # Only the customer is invited up front when the provider adds the company signer later
        initial_signers = signers
        if client.topology == SignerTopology.ADDED_ON_FIRST_SIGNATURE:
            initial_signers = [s for s in signers if s.role == SignerRole.CUSTOMER]

        request = SigningRequest(document_id=document.id, title=title, document_url=url, signers=initial_signers)
        if message:
            request.message = message
        provider_document_id = await client.create_signing_request(request)

        values = self.workflow.send_changes(
            document, client.provider.value, provider_document_id, client.topology, signers
        )
        values["document_url"] = url
        values["sender_email"] = document.company_signer_email
        result = await self.db.execute(
            update(ProjectDocument)
            .where(ProjectDocument.id == document.id, ProjectDocument.status == DocumentStatus.DRAFT.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            logger.warning(
                "Document %s was sent concurrently; provider document %s is orphaned",
                document_id, provider_document_id,
            )
            raise DocumentStateError(document_id, "sent", "document was already sent")

        self.db.add(
            DocumentEvent(
                document_id=document_id,
                source="user",
                provider=client.provider.value,
                provider_event="send",
                from_status=DocumentStatus.DRAFT.value,
                to_status=DocumentStatus.SENT.value,
                outcome=DocumentEventOutcome.APPLIED.value,
                data={"provider_document_id": provider_document_id, "signers": len(signers)},
            )
        )
        await self.db.commit()
        document = await self._reload(document_id)
        logger.info(
            "Document %s sent via %s as %s (%d signer(s))",
            document_id, client.provider.value, provider_document_id, len(signers),
        )
        return document

    # ------------------------------------------------------------------
    # Status application (shared by webhooks and polling)
    # ------------------------------------------------------------------

    async def apply_status(
        self,
        document: ProjectDocument,
        target: DocumentStatus,
        source: str,
        provider_event: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        provider_status: Optional[str] = None,
        data: Optional[dict] = None,
        signed_by: Iterable[str] = (),
    ) -> tuple[ProjectDocument, TransitionResult]:
        """Apply ``target`` if it moves the document forward; record the outcome."""
        document_id = document.id
        signed_by = list(signed_by)
        for _ in range(STATUS_UPDATE_ATTEMPTS):
            result = self.workflow.transition(document, target, occurred_at, provider_status, signed_by)
            if result.applied:
                update_result = await self.db.execute(
                    update(ProjectDocument)
                    .where(
                        ProjectDocument.id == document_id,
                        ProjectDocument.status == result.from_status.value,
                    )
                    .values(**result.changes)
                    .execution_options(synchronize_session=False)
                )
                if update_result.rowcount == 0:
                    await self.db.rollback()
                    logger.info("Document %s changed concurrently, re-evaluating %s", document_id, target.value)
                    document = await self._reload(document_id)
                    continue
            elif provider_status is not None:
                await self.db.execute(
                    update(ProjectDocument)
                    .where(ProjectDocument.id == document_id)
                    .values(last_provider_status=provider_status)
                    .execution_options(synchronize_session=False)
                )

            self.db.add(
                DocumentEvent(
                    document_id=document_id,
                    source=source,
                    provider=document.provider,
                    provider_event=provider_event,
                    from_status=result.from_status.value,
                    to_status=result.to_status.value if result.to_status else None,
                    outcome=result.outcome.value,
                    data=data,
                )
            )
            await self.db.commit()
            if result.applied:
                logger.info(
                    "Document %s: %s -> %s (%s)",
                    document_id, result.from_status.value, result.to_status.value, source,
                )
            return await self._reload(document_id), result

        raise DocumentStateError(document_id, target.value, "status kept changing concurrently")

    async def add_company_signer(self, document: ProjectDocument) -> ProjectDocument:
        """Invite the company signer once the customer has signed."""
        document_id = document.id
        signer = Signer(
            role=SignerRole.COMPANY,
            name=document.company_signer_name or document.company_signer_email,
            email=document.company_signer_email,
            order=2,
        )
        await self._client_for(document.provider).add_signer(document.provider_document_id, signer)

        await self.db.execute(
            update(ProjectDocument)
            .where(ProjectDocument.id == document_id, ProjectDocument.company_signer_added_at.is_(None))
            .values(company_signer_added_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        self.db.add(
            DocumentEvent(
                document_id=document_id,
                source="system",
                provider=document.provider,
                provider_event="company_signer_added",
                from_status=document.status,
                to_status=document.status,
                outcome=DocumentEventOutcome.APPLIED.value,
            )
        )
        await self.db.commit()
        return await self._reload(document_id)

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    async def refresh_status(self, company_id: str, document_id: str) -> ProjectDocument:
        """Poll the provider and apply its status through the idempotent path.

        Raises:
            DocumentStateError: document was never sent.
            ProviderError: provider call failed.
        """
        document = await self._get_document(company_id, document_id)
        if not document.provider_document_id:
            raise DocumentStateError(document.id, document.status, "document has not been sent for signature")

        provider_status = await self._client_for(document.provider).get_status(document.provider_document_id)
        if provider_status.status is None:
            logger.info(
                "Provider status %r for document %s has no mapping",
                provider_status.provider_status, document_id,
            )
            return document

        document, result = await self.apply_status(
            document,
            provider_status.status,
            source="poll",
            provider_event=provider_status.provider_status,
            provider_status=provider_status.provider_status,
            signed_by=completed_signer_emails(provider_status.signers),
        )
        if result.add_company_signer:
            document = await self.add_company_signer(document)
        return document

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    async def handle_webhook(self, provider: str, payload: dict) -> WebhookResult:
        """Apply one provider webhook delivery.

        Unknown events, unknown documents, duplicates and regressions are
        logged and absorbed. Persistence errors propagate to the caller,
        which acknowledges the delivery regardless.
        """
        try:
            event = self.mapper.parse(provider, payload)
        except (ValueError, WebhookPayloadError) as e:
            logger.info("Ignoring %s webhook: %s", provider, e)
            return WebhookResult(event=None, outcome=None)

        if event.event == SignatureEvent.VERIFICATION:
            logger.info("%s verification webhook acknowledged", event.provider.value)
            return WebhookResult(event=event, outcome=None)

        if not event.provider_document_id:
            logger.info("Ignoring %s webhook %r without a document id", event.provider.value, event.event_name)
            return WebhookResult(event=event, outcome=None)

        result = await self.db.execute(
            select(ProjectDocument).where(
                ProjectDocument.provider_document_id == event.provider_document_id,
                ProjectDocument.provider == event.provider.value,
            )
        )
        document = result.scalars().first()
        if document is None:
            logger.info(
                "Ignoring %s webhook %r for unknown document %s",
                event.provider.value, event.event_name, event.provider_document_id,
            )
            return WebhookResult(event=event, outcome=None)

        data = {"event": event.event_name, "signer_email": event.signer_email}
        status = event.status
        if status is None:
            logger.info(
                "Ignoring unmapped %s event %r for document %s",
                event.provider.value, event.event_name, document.id,
            )
            self.db.add(
                DocumentEvent(
                    document_id=document.id,
                    source="webhook",
                    provider=event.provider.value,
                    provider_event=event.event_name,
                    from_status=document.status,
                    to_status=None,
                    outcome=DocumentEventOutcome.UNMAPPED.value,
                    data=data,
                )
            )
            await self.db.commit()
            return WebhookResult(event=event, outcome=DocumentEventOutcome.UNMAPPED, document_id=document.id)

        document, transition = await self.apply_status(
            document,
            status,
            source="webhook",
            provider_event=event.event_name,
            occurred_at=event.occurred_at,
            provider_status=event.event_name,
            data=data,
            signed_by=event.signed_by,
        )
        if transition.add_company_signer:
            await self.add_company_signer(document)

        return WebhookResult(event=event, outcome=transition.outcome, document_id=document.id)
