"""Document routes: generate, view, customer schedule, send and refresh."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from contractor_platform.app.routes.auth import get_company_id_dep
from contractor_platform.app.routes.errors import SERVICE_ERRORS, to_http_exception
from contractor_platform.domain.models import ProjectDocument
from contractor_platform.domain.schemas import (
    CustomerScheduleResponse,
    DocumentResponse,
    DocumentStatusResponse,
    GenerateDocumentRequest,
    PaymentLineResponse,
    SendForSignatureRequest,
)
from contractor_platform.infra.database import get_db
from contractor_platform.services.document_service import DocumentService
from contractor_platform.services.esign import ProviderError, SigningProviderClient, get_signing_client
from contractor_platform.services.milestone_assembler import ChangeOrderItem, PriceOverride, override_key
from contractor_platform.services.signature_service import SignatureService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["documents"])


def get_signing_client_dep() -> SigningProviderClient:
    """Dependency: the configured signing-provider client."""
    return get_signing_client()


async def _current_status(db: AsyncSession, document_id: str) -> str | None:
    await db.rollback()
    return await db.scalar(select(ProjectDocument.status).where(ProjectDocument.id == document_id))


@router.post(
    "/projects/{project_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_document(
    project_id: str,
    data: GenerateDocumentRequest,
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
):
    """Generate a numbered contract, proposal or change order."""
    overrides = {
        override_key(o.milestone_type, o.source_id): PriceOverride(o.flat_price, o.markup_percent)
        for o in data.price_overrides
    }
    items = [ChangeOrderItem(**item.model_dump()) for item in data.change_order_items]

    try:
        document = await DocumentService(db).generate_document(
            company_id,
            project_id,
            data.document_type,
            change_order_items=items,
            price_overrides=overrides,
            document_date=data.document_date,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return DocumentResponse.model_validate(document)


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
):
    """Internal document view, milestone costs included."""
    try:
        document = await DocumentService(db).get_document(company_id, document_id)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return DocumentResponse.model_validate(document)


@router.get("/documents/{document_id}/schedule", response_model=CustomerScheduleResponse)
async def get_customer_schedule(
    document_id: str,
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
):
    """Customer-facing payment schedule."""
    try:
        document, schedule = await DocumentService(db).customer_schedule(company_id, document_id)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return CustomerScheduleResponse(
        document_id=document.id,
        document_number=document.document_number,
        document_type=document.document_type,
        lines=[PaymentLineResponse(description=line.description, amount=line.amount) for line in schedule.lines],
        total=schedule.total,
    )


@router.post("/documents/{document_id}/send", response_model=DocumentStatusResponse)
async def send_for_signature(
    document_id: str,
    data: SendForSignatureRequest | None = None,
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
    client: SigningProviderClient = Depends(get_signing_client_dep),
):
    """Send a draft document for signature (draft -> sent)."""
    data = data or SendForSignatureRequest()
    try:
        document = await SignatureService(db, client=client).send_for_signature(
            company_id, document_id, document_url=data.document_url, message=data.message
        )
    except ProviderError as e:
        raise to_http_exception(e, await _current_status(db, document_id)) from e
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return DocumentStatusResponse.model_validate(document)


@router.post("/documents/{document_id}/refresh-status", response_model=DocumentStatusResponse)
async def refresh_status(
    document_id: str,
    company_id: str = Depends(get_company_id_dep),
    db: AsyncSession = Depends(get_db),
    client: SigningProviderClient = Depends(get_signing_client_dep),
):
    """Poll the signing provider and apply its status."""
    try:
        document = await SignatureService(db, client=client).refresh_status(company_id, document_id)
    except ProviderError as e:
        raise to_http_exception(e, await _current_status(db, document_id)) from e
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return DocumentStatusResponse.model_validate(document)
