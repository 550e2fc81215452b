"""BoldSign client (REST API v1, API-key auth).

Endpoints used:
- POST /document/send              create and send a document from a file URL
- GET  /document/properties        current document status and signers

Both signers are declared up front with ``signerOrder`` 1 and 2 and
``enableSigningOrder``; BoldSign withholds the company signer's request
until the customer has signed.
"""

import logging

from contractor_platform.domain.enums import ESignProvider, SignerRole, SignerTopology
from contractor_platform.services.esign.base import (
    PermanentProviderError,
    ProviderStatus,
    SigningProviderClient,
    SigningRequest,
)
from contractor_platform.services.signature_workflow import Signer
from contractor_platform.services.webhook_mapper import WebhookStatusMapper

logger = logging.getLogger(__name__)

# Field placement on the signature page, in points
_SIGNATURE_ROWS = {
    SignerRole.CUSTOMER: 290,
    SignerRole.COMPANY: 534,
}


def _form_fields(signer: Signer, page_number: int) -> list[dict]:
    prefix = "owner" if signer.role == SignerRole.CUSTOMER else "contractor"
    y = _SIGNATURE_ROWS[signer.role]
    return [
        {
            "id": f"{prefix}_signature",
            "fieldType": "Signature",
            "pageNumber": page_number,
            "isRequired": True,
            "bounds": {"x": 50, "y": y, "width": 280, "height": 28},
        },
        {
            "id": f"{prefix}_name",
            "fieldType": "TextBox",
            "pageNumber": page_number,
            "isRequired": True,
            "placeHolder": "Printed Name",
            "bounds": {"x": 50, "y": y + 80, "width": 280, "height": 22},
        },
        {
            "id": f"{prefix}_date",
            "fieldType": "DateSigned",
            "pageNumber": page_number,
            "isRequired": False,
            "dateFormat": "MM/dd/yyyy",
            "bounds": {"x": 475, "y": y, "width": 140, "height": 22},
        },
    ]


class BoldSignClient(SigningProviderClient):
    provider = ESignProvider.BOLDSIGN
    topology = SignerTopology.DECLARED_GATED

    @property
    def configured(self) -> bool:
        return bool(self.settings.boldsign_api_key)

    @property
    def base_url(self) -> str:
        return self.settings.boldsign_api_base_url.rstrip("/")

    def _headers(self) -> dict:
        return {"X-API-KEY": self.settings.boldsign_api_key, "Accept": "application/json"}

    async def create_signing_request(self, request: SigningRequest) -> str:
        self._require_configured()
        payload = {
            "title": request.title,
            "message": request.message,
            "fileUrls": [request.document_url],
            "enableSigningOrder": True,
            "signers": [
                {
                    "name": signer.name,
                    "emailAddress": signer.email,
                    "signerOrder": signer.order,
                    "signerType": "Signer",
                    "formFields": _form_fields(signer, request.page_number),
                }
                for signer in request.signers
            ],
        }

        resp = await self._request("POST", f"{self.base_url}/document/send", json=payload, headers=self._headers())
        document_id = resp.json().get("documentId")
        if not document_id:
            raise PermanentProviderError(self.provider.value, "response did not include a documentId", resp.status_code)

        logger.info(
            "BoldSign document %s sent for %s (%d signer(s))",
            document_id, request.document_id, len(request.signers),
        )
        return document_id

    async def get_status(self, provider_document_id: str) -> ProviderStatus:
        self._require_configured()
        resp = await self._request(
            "GET",
            f"{self.base_url}/document/properties",
            params={"documentId": provider_document_id},
            headers=self._headers(),
        )
        data = resp.json()
        raw_status = data.get("status")
        return ProviderStatus(
            provider_status=raw_status,
            status=WebhookStatusMapper().map_provider_status(self.provider, raw_status),
            signers=data.get("signerDetails") or [],
        )
