"""Signature workflow: validates document status transitions.

Lifecycle::

    draft -> sent -> delivered -> signed -> completed
              \\________\\___________\\______-> declined | voided

Sending is the only user-triggered transition (draft -> sent). Everything
after that arrives from the signing provider, at least once and in any
order, so updates are ranked rather than validated against a strict map:
forward moves apply, equal moves are duplicates, backward moves are
regressions, and nothing leaves a terminal state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from contractor_platform.domain.enums import (
    DocumentEventOutcome,
    DocumentStatus,
    SignerRole,
    SignerTopology,
)
from contractor_platform.services.errors import DocumentStateError, FieldValidationError

logger = logging.getLogger(__name__)

S = DocumentStatus
O = DocumentEventOutcome

# Monotonic order of the happy path
STATUS_RANK: dict[DocumentStatus, int] = {
    S.DRAFT: 0,
    S.SENT: 1,
    S.DELIVERED: 2,
    S.SIGNED: 3,
    S.COMPLETED: 4,
}

# Reachable from any non-terminal state
FAILURE_STATES: set[DocumentStatus] = {S.DECLINED, S.VOIDED}

TERMINAL_STATES: set[DocumentStatus] = {S.COMPLETED, S.DECLINED, S.VOIDED}

# Timestamp column stamped when a document first reaches a status
TIMESTAMP_FIELDS: dict[DocumentStatus, str] = {
    S.SENT: "sent_at",
    S.DELIVERED: "delivered_at",
    S.SIGNED: "customer_signed_at",
    S.COMPLETED: "completed_at",
    S.DECLINED: "declined_at",
    S.VOIDED: "voided_at",
}


class SignatureValidationError(FieldValidationError):
    """Raised when the signer set for a document is invalid."""


@dataclass(frozen=True)
class Signer:
    role: SignerRole
    name: str
    email: str
    order: int


@dataclass
class TransitionResult:
    """Outcome of offering a status to a document.

    ``add_company_signer`` is set when the provider reported completion for
    an envelope that so far only held the customer; the caller must add the
    company signer before the document can complete.
    """

    outcome: DocumentEventOutcome
    from_status: DocumentStatus
    to_status: Optional[DocumentStatus]
    add_company_signer: bool = False
    changes: dict = field(default_factory=dict)

    @property
    def applied(self) -> bool:
        return self.outcome == O.APPLIED


def _normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def plan_signers(
    customer_name: str | None,
    customer_email: str | None,
    company_signer_name: str | None = None,
    company_signer_email: str | None = None,
) -> list[Signer]:
    """Return the ordered signer list for a signing request.

    The customer always signs first. The company signer is omitted when no
    email is configured or when it matches the customer's email, which
    providers reject as a duplicate recipient.

    Raises:
        SignatureValidationError: the customer has no usable email.
    """
    customer = _normalize_email(customer_email)
    if not customer or "@" not in customer:
        raise SignatureValidationError("customer_email", "A valid customer email is required to send for signature")

    signers = [
        Signer(
            role=SignerRole.CUSTOMER,
            name=(customer_name or "").strip() or customer_email.strip(),
            email=customer_email.strip(),
            order=1,
        )
    ]

    company = _normalize_email(company_signer_email)
    if company and company != customer:
        if "@" not in company:
            raise SignatureValidationError("company_signer_email", "Company signer email is not valid")
        signers.append(
            Signer(
                role=SignerRole.COMPANY,
                name=(company_signer_name or "").strip() or company_signer_email.strip(),
                email=company_signer_email.strip(),
                order=2,
            )
        )
    elif company:
        logger.info("Company signer email matches customer email; sending single-signer request")

    return signers


def _as_status(value) -> DocumentStatus:
    return value if isinstance(value, DocumentStatus) else DocumentStatus(value)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _company_has_signed(document, target: DocumentStatus, occurred_at: Optional[datetime], signed_by: Iterable[str]) -> bool:
    """True when a report shows the added company signer has signed.

    Either the company signer's email is among the reported signers, or the
    report is an envelope completion generated after the signer was added.
    A redelivered customer-only completion satisfies neither.
    """
    company = _normalize_email(document.company_signer_email)
    if company in {_normalize_email(email) for email in signed_by}:
        return True
    return (
        target == S.COMPLETED
        and occurred_at is not None
        and _naive_utc(occurred_at) > _naive_utc(document.company_signer_added_at)
    )


class SignatureWorkflow:
    """Validates signature status updates for a ``ProjectDocument``.

    ``transition`` only computes; ``apply`` also writes the changes onto the
    object. Persistence layers use the computed ``changes`` to issue a
    conditional update guarded on ``from_status``.
    """

    def evaluate(self, current, target) -> DocumentEventOutcome:
        """Classify ``target`` against ``current`` without mutating anything."""
        current = _as_status(current)
        target = _as_status(target)

        if target == current:
            return O.DUPLICATE
        if current in TERMINAL_STATES:
            return O.TERMINAL
        if target in FAILURE_STATES:
            return O.APPLIED
        if STATUS_RANK[target] < STATUS_RANK[current]:
            return O.REGRESSION
        return O.APPLIED

    def send_changes(
        self,
        document,
        provider: str,
        provider_document_id: str,
        topology: SignerTopology,
        signers: list[Signer],
        sent_at: Optional[datetime] = None,
    ) -> dict:
        """Column values for draft -> sent, the only user-driven transition."""
        current = _as_status(document.status)
        if current != S.DRAFT:
            raise DocumentStateError(document.id, current.value, "only draft documents can be sent")

        company = next((s for s in signers if s.role == SignerRole.COMPANY), None)
        return {
            "status": S.SENT.value,
            "provider": provider,
            "provider_document_id": provider_document_id,
            "signer_topology": SignerTopology(topology).value,
            "company_signer_name": company.name if company else None,
            "company_signer_email": company.email if company else None,
            "sent_at": sent_at or datetime.now(timezone.utc),
        }

    def transition(
        self,
        document,
        target,
        occurred_at: Optional[datetime] = None,
        provider_status: Optional[str] = None,
        signed_by: Iterable[str] = (),
    ) -> TransitionResult:
        """Decide what offering ``target`` to ``document`` would change.

        ``signed_by`` lists the emails the provider reports as having signed.
        """
        current = _as_status(document.status)
        target = _as_status(target)
        awaiting_company_signer = False
        company_signed = False

        # Under added-on-first-signature the envelope holds only the customer
        # until the company signer is added, so its completion is the
        # customer's signature. After that, only the company signer's own
        # signature completes the document.
        if (
            target in (S.SIGNED, S.COMPLETED)
            and document.signer_topology == SignerTopology.ADDED_ON_FIRST_SIGNATURE.value
            and document.company_signer_email
            and document.company_signed_at is None
        ):
            if document.company_signer_added_at is None:
                target = S.SIGNED
                awaiting_company_signer = True
            elif _company_has_signed(document, target, occurred_at, signed_by):
                target = S.COMPLETED
                company_signed = True
            else:
                target = S.SIGNED

        outcome = self.evaluate(current, target)
        if outcome != O.APPLIED:
            logger.info(
                "Ignoring %s -> %s for document %s (%s)",
                current.value, target.value, document.id, outcome.value,
            )
            return TransitionResult(
                outcome,
                current,
                target,
                add_company_signer=awaiting_company_signer and outcome == O.DUPLICATE,
            )

        when = occurred_at or datetime.now(timezone.utc)
        changes: dict = {"status": target.value, TIMESTAMP_FIELDS[target]: when}
        if company_signed:
            changes["company_signed_at"] = when
        if provider_status is not None:
            changes["last_provider_status"] = provider_status
        # Skipped intermediate states still get their timestamps
        if target in STATUS_RANK:
            for status, rank in STATUS_RANK.items():
                field_name = TIMESTAMP_FIELDS.get(status)
                if field_name and 0 < rank < STATUS_RANK[target] and getattr(document, field_name) is None:
                    changes[field_name] = when

        return TransitionResult(
            outcome,
            current,
            target,
            add_company_signer=awaiting_company_signer,
            changes=changes,
        )

    def apply(
        self,
        document,
        target,
        occurred_at: Optional[datetime] = None,
        provider_status: Optional[str] = None,
        signed_by: Iterable[str] = (),
    ) -> TransitionResult:
        """``transition`` plus writing the changes onto ``document``, all at once."""
        result = self.transition(document, target, occurred_at, provider_status, signed_by)
        for name, value in result.changes.items():
            setattr(document, name, value)
        if result.applied:
            logger.info("Document %s: %s -> %s", document.id, result.from_status.value, result.to_status.value)
        return result
