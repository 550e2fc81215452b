"""Integration tests for SignatureService: send, webhook application, polling."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select, update

from contractor_platform.domain.enums import (
    DocumentEventOutcome,
    DocumentStatus,
    ESignProvider,
    SignerRole,
    SignerTopology,
)
from contractor_platform.domain.models import DocumentEvent, ProjectDocument
from contractor_platform.services.errors import DocumentStateError, FieldValidationError, NotFoundError
from contractor_platform.services.esign import PermanentProviderError, ProviderStatus
from contractor_platform.services.signature_service import SignatureService
from contractor_platform.services.signature_workflow import SignatureValidationError

O = DocumentEventOutcome
S = DocumentStatus

PDF_URL = "https://files.summitroofing.test/contract-12.pdf"


@pytest.fixture
async def company_project(db_session, make_company, make_project):
    company = await make_company(db_session)
    project = await make_project(db_session, company)
    return company, project


@pytest.fixture
def draft_document(db_session, company_project, make_document):
    """Factory: a numbered draft with both signers on file."""

    async def _make(**overrides):
        _, project = company_project
        fields = dict(
            document_number=12,
            document_url=PDF_URL,
            company_signer_name="Dana Foreman",
            company_signer_email="dana@summitroofing.test",
        )
        fields.update(overrides)
        return await make_document(db_session, project, **fields)

    return _make


@pytest.fixture
def sent_document(draft_document):
    """Factory: a document already sent through BoldSign as ``bs-123``."""

    async def _make(**overrides):
        fields = dict(
            status="sent",
            provider="boldsign",
            provider_document_id="bs-123",
            signer_topology=SignerTopology.DECLARED_GATED.value,
            sent_at=datetime(2026, 4, 1, 9, 0),
        )
        fields.update(overrides)
        return await draft_document(**fields)

    return _make


def _boldsign_event(event_type, document_id="bs-123"):
    return {
        "event": {"id": "evt-1", "eventType": event_type, "created": 1775050200},
        "data": {"object": "document", "documentId": document_id},
    }


async def _events(db, document_id):
    result = await db.execute(
        select(DocumentEvent).where(DocumentEvent.document_id == document_id)
    )
    return list(result.scalars().all())


async def _status(db, document_id):
    return await db.scalar(select(ProjectDocument.status).where(ProjectDocument.id == document_id))


# ---------------------------------------------------------------------------
# Send for signature
# ---------------------------------------------------------------------------


class TestSendForSignature:

    async def test_declared_gated_sends_both_signers(self, db_session, company_project, draft_document, signing_client_mock):
        company, _ = company_project
        document = await draft_document()

        sent = await SignatureService(db_session, client=signing_client_mock).send_for_signature(
            company.id, document.id, message="Thanks for choosing Summit",
        )

        assert sent.status == "sent"
        assert sent.provider == "boldsign"
        assert sent.provider_document_id == "prov-doc-1"
        assert sent.signer_topology == "declared_gated"
        assert sent.sent_at is not None
        assert sent.sender_email == "dana@summitroofing.test"

        request = signing_client_mock.requests[0]
        assert [(s.role, s.order) for s in request.signers] == [(SignerRole.CUSTOMER, 1), (SignerRole.COMPANY, 2)]
        assert request.title == "Contract #12"
        assert request.document_url == PDF_URL
        assert request.message == "Thanks for choosing Summit"

        events = await _events(db_session, document.id)
        assert [(e.source, e.outcome, e.to_status) for e in events] == [("user", "applied", "sent")]

    async def test_same_email_sends_single_signer(self, db_session, company_project, draft_document, signing_client_mock):
        company, _ = company_project
        document = await draft_document(company_signer_email="PAT@henderson.test")

        sent = await SignatureService(db_session, client=signing_client_mock).send_for_signature(company.id, document.id)

        assert len(signing_client_mock.requests[0].signers) == 1
        assert sent.company_signer_email is None

    async def test_added_on_first_signature_invites_customer_only(
        self, db_session, company_project, draft_document, signing_client_mock,
    ):
        signing_client_mock.provider = ESignProvider.DOCUSIGN
        signing_client_mock.topology = SignerTopology.ADDED_ON_FIRST_SIGNATURE
        company, _ = company_project
        document = await draft_document()

        sent = await SignatureService(db_session, client=signing_client_mock).send_for_signature(company.id, document.id)

        assert [s.role for s in signing_client_mock.requests[0].signers] == [SignerRole.CUSTOMER]
        # The company signer stays on the document for the follow-up
        assert sent.company_signer_email == "dana@summitroofing.test"
        assert sent.signer_topology == "added_on_first_signature"

    async def test_missing_customer_email(self, db_session, company_project, draft_document, signing_client_mock):
        company, _ = company_project
        document = await draft_document(customer_email=None)

        with pytest.raises(SignatureValidationError):
            await SignatureService(db_session, client=signing_client_mock).send_for_signature(company.id, document.id)
        signing_client_mock.create_signing_request.assert_not_awaited()

    async def test_missing_document_url(self, db_session, company_project, draft_document, signing_client_mock):
        company, _ = company_project
        document = await draft_document(document_url=None)

        with pytest.raises(FieldValidationError) as exc_info:
            await SignatureService(db_session, client=signing_client_mock).send_for_signature(company.id, document.id)
        assert exc_info.value.field == "document_url"

    async def test_url_from_request(self, db_session, company_project, draft_document, signing_client_mock):
        company, _ = company_project
        document = await draft_document(document_url=None)

        sent = await SignatureService(db_session, client=signing_client_mock).send_for_signature(
            company.id, document.id, document_url="https://files.test/other.pdf",
        )
        assert sent.document_url == "https://files.test/other.pdf"

    async def test_only_drafts(self, db_session, company_project, sent_document, signing_client_mock):
        company, _ = company_project
        document = await sent_document()

        with pytest.raises(DocumentStateError):
            await SignatureService(db_session, client=signing_client_mock).send_for_signature(company.id, document.id)
        signing_client_mock.create_signing_request.assert_not_awaited()

    async def test_provider_failure_leaves_draft(self, db_session, company_project, draft_document, signing_client_mock):
        company, _ = company_project
        document = await draft_document()
        document_id = document.id
        signing_client_mock.create_signing_request.side_effect = PermanentProviderError("boldsign", "bad file", 400)

        with pytest.raises(PermanentProviderError):
            await SignatureService(db_session, client=signing_client_mock).send_for_signature(company.id, document_id)

        assert await _status(db_session, document_id) == "draft"

    async def test_other_company(self, db_session, draft_document, make_company, signing_client_mock):
        document = await draft_document()
        other = await make_company(db_session, name="Other Co")

        with pytest.raises(NotFoundError):
            await SignatureService(db_session, client=signing_client_mock).send_for_signature(other.id, document.id)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class TestHandleWebhook:

    async def test_forward_event_applies(self, db_session, sent_document, signing_client_mock):
        document = await sent_document()

        result = await SignatureService(db_session, client=signing_client_mock).handle_webhook(
            "boldsign", _boldsign_event("Viewed"),
        )

        assert result.outcome == O.APPLIED
        assert result.document_id == document.id
        assert await _status(db_session, document.id) == "delivered"
        events = await _events(db_session, document.id)
        assert [(e.source, e.from_status, e.to_status, e.outcome) for e in events] == [
            ("webhook", "sent", "delivered", "applied"),
        ]

    async def test_unknown_event_leaves_status(self, db_session, sent_document, signing_client_mock):
        document = await sent_document()

        result = await SignatureService(db_session, client=signing_client_mock).handle_webhook(
            "boldsign", _boldsign_event("SenderIdentityVerified"),
        )

        assert result.outcome == O.UNMAPPED
        assert await _status(db_session, document.id) == "sent"
        events = await _events(db_session, document.id)
        assert events[0].outcome == "unmapped"
        assert events[0].provider_event == "SenderIdentityVerified"

    async def test_duplicate_delivery(self, db_session, sent_document, signing_client_mock):
        document = await sent_document()
        service = SignatureService(db_session, client=signing_client_mock)

        await service.handle_webhook("boldsign", _boldsign_event("Signed"))
        second = await service.handle_webhook("boldsign", _boldsign_event("Signed"))

        assert second.outcome == O.DUPLICATE
        assert await _status(db_session, document.id) == "signed"
        assert sorted(e.outcome for e in await _events(db_session, document.id)) == ["applied", "duplicate"]

    async def test_out_of_order_delivery_is_regression(self, db_session, sent_document, signing_client_mock):
        document = await sent_document()
        service = SignatureService(db_session, client=signing_client_mock)

        await service.handle_webhook("boldsign", _boldsign_event("Signed"))
        late = await service.handle_webhook("boldsign", _boldsign_event("Viewed"))

        assert late.outcome == O.REGRESSION
        assert await _status(db_session, document.id) == "signed"

    async def test_terminal_state_is_final(self, db_session, sent_document, signing_client_mock):
        document = await sent_document(status="declined")

        result = await SignatureService(db_session, client=signing_client_mock).handle_webhook(
            "boldsign", _boldsign_event("Completed"),
        )

        assert result.outcome == O.TERMINAL
        assert await _status(db_session, document.id) == "declined"

    async def test_skipped_states_backfilled(self, db_session, sent_document, signing_client_mock):
        document = await sent_document()

        await SignatureService(db_session, client=signing_client_mock).handle_webhook(
            "boldsign", _boldsign_event("Completed"),
        )

        refreshed = await db_session.get(ProjectDocument, document.id, populate_existing=True)
        assert refreshed.status == "completed"
        assert refreshed.delivered_at is not None
        assert refreshed.customer_signed_at is not None
        assert refreshed.completed_at is not None
        assert refreshed.last_provider_status == "Completed"

    async def test_unknown_document_ignored(self, db_session, sent_document, signing_client_mock):
        await sent_document()

        result = await SignatureService(db_session, client=signing_client_mock).handle_webhook(
            "boldsign", _boldsign_event("Completed", document_id="someone-elses"),
        )

        assert result.outcome is None
        assert result.document_id is None

    async def test_verification_event_ignored(self, db_session, sent_document, signing_client_mock):
        document = await sent_document()

        result = await SignatureService(db_session, client=signing_client_mock).handle_webhook(
            "boldsign", {"event": {"eventType": "Verification"}},
        )

        assert result.outcome is None
        assert await _events(db_session, document.id) == []

    async def test_unparseable_payload_ignored(self, db_session, signing_client_mock):
        result = await SignatureService(db_session, client=signing_client_mock).handle_webhook("docusign", ["nope"])
        assert result.event is None
        assert result.outcome is None

    async def test_concurrent_writer_wins(self, db_session, sent_document, signing_client_mock):
        document = await sent_document()
        # Another worker moves the row to signed behind this session's back
        await db_session.execute(
            update(ProjectDocument)
            .where(ProjectDocument.id == document.id)
            .values(status="signed")
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
        assert document.status == "sent"

        service = SignatureService(db_session, client=signing_client_mock)
        refreshed, result = await service.apply_status(document, S.DELIVERED, source="webhook")

        assert result.outcome == O.REGRESSION
        assert refreshed.status == "signed"


class TestCompanySignerFollowUp:
    """DocuSign adds the company signer after the customer signs."""

    @pytest.fixture
    def docusign_mock(self, signing_client_mock):
        signing_client_mock.provider = ESignProvider.DOCUSIGN
        signing_client_mock.topology = SignerTopology.ADDED_ON_FIRST_SIGNATURE
        return signing_client_mock

    @pytest.fixture
    def envelope(self, sent_document):
        async def _make(**overrides):
            fields = dict(
                provider="docusign",
                provider_document_id="env-1",
                signer_topology=SignerTopology.ADDED_ON_FIRST_SIGNATURE.value,
            )
            fields.update(overrides)
            return await sent_document(**fields)

        return _make

    @staticmethod
    def _completed():
        return {"event": "envelope-completed", "data": {"envelopeId": "env-1"}}

    async def test_customer_completion_adds_company_signer(self, db_session, envelope, docusign_mock):
        document = await envelope()

        result = await SignatureService(db_session, client=docusign_mock).handle_webhook("docusign", self._completed())

        assert result.outcome == O.APPLIED
        refreshed = await db_session.get(ProjectDocument, document.id, populate_existing=True)
        assert refreshed.status == "signed"
        assert refreshed.company_signer_added_at is not None
        assert refreshed.completed_at is None

        envelope_id, signer = docusign_mock.add_signer.await_args.args
        assert envelope_id == "env-1"
        assert signer.role == SignerRole.COMPANY
        assert signer.email == "dana@summitroofing.test"

    @staticmethod
    def _company_signed():
        return {
            "event": "recipient-completed",
            "generatedDateTime": "2026-04-03T10:15:00.0000000Z",
            "data": {
                "envelopeId": "env-1",
                "recipientId": "2",
                "envelopeSummary": {
                    "recipients": {
                        "signers": [
                            {"recipientId": "1", "email": "pat@henderson.test", "status": "completed"},
                            {"recipientId": "2", "email": "dana@summitroofing.test", "status": "completed"},
                        ]
                    }
                },
            },
        }

    async def test_redelivered_completion_does_not_complete(self, db_session, envelope, docusign_mock):
        document = await envelope()
        service = SignatureService(db_session, client=docusign_mock)

        await service.handle_webhook("docusign", self._completed())
        result = await service.handle_webhook("docusign", self._completed())

        assert result.outcome == O.DUPLICATE
        assert await _status(db_session, document.id) == "signed"
        assert docusign_mock.add_signer.await_count == 1
        refreshed = await db_session.get(ProjectDocument, document.id, populate_existing=True)
        assert refreshed.completed_at is None
        assert refreshed.company_signed_at is None

    async def test_company_signature_completes(self, db_session, envelope, docusign_mock):
        document = await envelope()
        service = SignatureService(db_session, client=docusign_mock)

        await service.handle_webhook("docusign", self._completed())
        result = await service.handle_webhook("docusign", self._company_signed())

        assert result.outcome == O.APPLIED
        refreshed = await db_session.get(ProjectDocument, document.id, populate_existing=True)
        assert refreshed.status == "completed"
        assert refreshed.company_signed_at is not None

        # The envelope-completed that follows is a duplicate
        late = await service.handle_webhook("docusign", self._completed())
        assert late.outcome == O.DUPLICATE

    async def test_failed_add_is_retried_on_redelivery(self, db_session, envelope, docusign_mock):
        document = await envelope()
        service = SignatureService(db_session, client=docusign_mock)
        docusign_mock.add_signer = AsyncMock(side_effect=[PermanentProviderError("docusign", "locked", 400), None])

        with pytest.raises(PermanentProviderError):
            await service.handle_webhook("docusign", self._completed())
        document_id = document.id
        await db_session.rollback()
        assert await _status(db_session, document_id) == "signed"

        result = await service.handle_webhook("docusign", self._completed())

        assert result.outcome == O.DUPLICATE
        assert docusign_mock.add_signer.await_count == 2
        refreshed = await db_session.get(ProjectDocument, document_id, populate_existing=True)
        assert refreshed.company_signer_added_at is not None


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


class TestRefreshStatus:

    async def test_applies_polled_status(self, db_session, company_project, sent_document, signing_client_mock):
        company, _ = company_project
        document = await sent_document()
        signing_client_mock.get_status.return_value = ProviderStatus("Completed", S.COMPLETED)

        refreshed = await SignatureService(db_session, client=signing_client_mock).refresh_status(company.id, document.id)

        assert refreshed.status == "completed"
        assert refreshed.last_provider_status == "Completed"
        signing_client_mock.get_status.assert_awaited_once_with("bs-123")
        events = await _events(db_session, document.id)
        assert [e.source for e in events] == ["poll"]

    async def test_unmapped_polled_status(self, db_session, company_project, sent_document, signing_client_mock):
        company, _ = company_project
        document = await sent_document()
        signing_client_mock.get_status.return_value = ProviderStatus("Scheduled", None)

        refreshed = await SignatureService(db_session, client=signing_client_mock).refresh_status(company.id, document.id)

        assert refreshed.status == "sent"

    async def test_stale_poll_does_not_regress(self, db_session, company_project, sent_document, signing_client_mock):
        company, _ = company_project
        document = await sent_document(status="signed")
        signing_client_mock.get_status.return_value = ProviderStatus("InProgress", S.SENT)

        refreshed = await SignatureService(db_session, client=signing_client_mock).refresh_status(company.id, document.id)

        assert refreshed.status == "signed"
        assert refreshed.last_provider_status == "InProgress"

    @pytest.mark.parametrize(
        "company_status,expected",
        [("sent", "signed"), ("completed", "completed")],
    )
    async def test_docusign_poll_needs_company_signature(
        self, db_session, company_project, sent_document, signing_client_mock, company_status, expected,
    ):
        company, _ = company_project
        signing_client_mock.provider = ESignProvider.DOCUSIGN
        signing_client_mock.topology = SignerTopology.ADDED_ON_FIRST_SIGNATURE
        document = await sent_document(
            status="signed",
            provider="docusign",
            provider_document_id="env-1",
            signer_topology=SignerTopology.ADDED_ON_FIRST_SIGNATURE.value,
            customer_signed_at=datetime(2026, 4, 2, 9, 0),
            company_signer_added_at=datetime(2026, 4, 2, 9, 1),
        )
        signing_client_mock.get_status.return_value = ProviderStatus(
            "completed",
            S.COMPLETED,
            signers=[
                {"email": "pat@henderson.test", "status": "completed"},
                {"email": "dana@summitroofing.test", "status": company_status},
            ],
        )

        refreshed = await SignatureService(db_session, client=signing_client_mock).refresh_status(company.id, document.id)

        assert refreshed.status == expected
        signing_client_mock.add_signer.assert_not_awaited()

    async def test_never_sent(self, db_session, company_project, draft_document, signing_client_mock):
        company, _ = company_project
        document = await draft_document()

        with pytest.raises(DocumentStateError):
            await SignatureService(db_session, client=signing_client_mock).refresh_status(company.id, document.id)
        signing_client_mock.get_status.assert_not_awaited()
