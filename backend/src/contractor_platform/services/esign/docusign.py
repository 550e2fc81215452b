"""DocuSign client (eSignature REST v2.1, JWT grant).

Authentication uses the OAuth JWT bearer grant: an RS256 assertion signed
with the integration's private key is exchanged for an access token, which
is cached in a ``TokenCache`` until shortly before it expires.

The envelope is created with only the customer as recipient. Once the
customer has signed, the company signer is added as routing order 2.
"""

import base64
import logging
import time
from pathlib import Path
from typing import Optional

from jose import jwt

from contractor_platform.app.config import Settings
from contractor_platform.domain.enums import ESignProvider, SignerRole, SignerTopology
from contractor_platform.services.esign.base import (
    PermanentProviderError,
    ProviderStatus,
    SigningProviderClient,
    SigningRequest,
    TokenCache,
)
from contractor_platform.services.signature_workflow import Signer
from contractor_platform.services.webhook_mapper import WebhookStatusMapper

logger = logging.getLogger(__name__)

JWT_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600
SCOPES = "signature impersonation"

# Anchor text printed on the signature page for each signer
_ANCHORS = {
    SignerRole.CUSTOMER: ("Owner", "Signature", "Printed Name", "Date"),
    SignerRole.COMPANY: ("Contractor", "Contractor Signature", "Contractor Printed Name", "Contractor Date"),
}


def load_private_key(value: str) -> str:
    """Return PEM text from an inline key (``\\n`` escapes allowed) or a file path."""
    if not value:
        raise PermanentProviderError(ESignProvider.DOCUSIGN.value, "RSA private key not configured")

    text = value.strip()
    if not text.startswith("-----BEGIN"):
        path = Path(text)
        if not path.is_file():
            raise PermanentProviderError(ESignProvider.DOCUSIGN.value, f"RSA private key file not found: {path}")
        text = path.read_text(encoding="utf-8").strip()

    text = text.replace("\\n", "\n")
    if "-----BEGIN" not in text or "PRIVATE KEY" not in text:
        raise PermanentProviderError(ESignProvider.DOCUSIGN.value, "RSA private key must be PEM encoded")
    return text


def _recipient(signer: Signer, recipient_id: str) -> dict:
    label, sign_anchor, name_anchor, date_anchor = _ANCHORS[signer.role]
    anchor = {"anchorXOffset": "0", "anchorYOffset": "-25", "anchorUnits": "pixels"}
    return {
        "email": signer.email,
        "name": signer.name,
        "recipientId": recipient_id,
        "routingOrder": str(signer.order),
        "tabs": {
            "signHereTabs": [
                {"documentId": "1", "tabLabel": f"{label}Signature", "anchorString": sign_anchor, **anchor}
            ],
            "textTabs": [
                {
                    "documentId": "1",
                    "tabLabel": f"{label}PrintedName",
                    "anchorString": name_anchor,
                    "value": signer.name,
                    "required": "true",
                    "locked": "false",
                    **anchor,
                }
            ],
            "dateSignedTabs": [
                {"documentId": "1", "tabLabel": f"{label}Date", "anchorString": date_anchor, **anchor}
            ],
        },
    }


class DocuSignClient(SigningProviderClient):
    provider = ESignProvider.DOCUSIGN
    topology = SignerTopology.ADDED_ON_FIRST_SIGNATURE

    def __init__(self, settings: Optional[Settings] = None, token_cache: Optional[TokenCache] = None, **kwargs):
        super().__init__(settings, **kwargs)
        self.token_cache = token_cache or TokenCache()

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.docusign_integration_key and s.docusign_user_id and s.docusign_account_id)

    @property
    def account_url(self) -> str:
        base = self.settings.docusign_api_base_url.rstrip("/")
        return f"{base}/v2.1/accounts/{self.settings.docusign_account_id}"

    def _on_unauthorized(self) -> None:
        self.token_cache.invalidate()

    def _assertion(self) -> str:
        now = int(time.time())
        claims = {
            "iss": self.settings.docusign_integration_key,
            "sub": self.settings.docusign_user_id,
            "aud": self.settings.docusign_oauth_host,
            "iat": now,
            "exp": now + TOKEN_LIFETIME_SECONDS,
            "scope": SCOPES,
        }
        return jwt.encode(claims, load_private_key(self.settings.docusign_rsa_private_key), algorithm="RS256")

    async def access_token(self) -> str:
        """Return a cached token or run the JWT grant for a new one."""
        token = self.token_cache.get()
        if token:
            return token

        self._require_configured()
        resp = await self._request(
            "POST",
            f"https://{self.settings.docusign_oauth_host}/oauth/token",
            data={"grant_type": JWT_GRANT_TYPE, "assertion": self._assertion()},
        )
        body = resp.json()
        token = body.get("access_token")
        if not token:
            raise PermanentProviderError(self.provider.value, "token response did not include access_token")

        self.token_cache.set(token, body.get("expires_in", TOKEN_LIFETIME_SECONDS))
        logger.info("DocuSign access token refreshed")
        return token

    async def _headers(self) -> dict:
        return {"Authorization": f"Bearer {await self.access_token()}", "Accept": "application/json"}

    async def create_signing_request(self, request: SigningRequest) -> str:
        self._require_configured()
        customer = next(s for s in request.signers if s.role == SignerRole.CUSTOMER)

        pdf = await self._request("GET", request.document_url)
        envelope = {
            "emailSubject": request.title,
            "emailBlurb": request.message,
            "status": "sent",
            "documents": [
                {
                    "documentBase64": base64.b64encode(pdf.content).decode(),
                    "name": request.title,
                    "fileExtension": "pdf",
                    "documentId": "1",
                }
            ],
            "recipients": {"signers": [_recipient(customer, "1")]},
        }

        resp = await self._request(
            "POST",
            f"{self.account_url}/envelopes",
            json=envelope,
            headers=await self._headers(),
        )
        envelope_id = resp.json().get("envelopeId")
        if not envelope_id:
            raise PermanentProviderError(self.provider.value, "response did not include an envelopeId", resp.status_code)

        logger.info("DocuSign envelope %s sent for %s", envelope_id, request.document_id)
        return envelope_id

    async def add_signer(self, provider_document_id: str, signer: Signer) -> None:
        self._require_configured()
        await self._request(
            "POST",
            f"{self.account_url}/envelopes/{provider_document_id}/recipients",
            params={"resend_envelope": "true"},
            json={"signers": [_recipient(signer, str(signer.order))]},
            headers=await self._headers(),
        )
        logger.info("Added %s signer to DocuSign envelope %s", signer.role.value, provider_document_id)

    async def get_status(self, provider_document_id: str) -> ProviderStatus:
        self._require_configured()
        resp = await self._request(
            "GET",
            f"{self.account_url}/envelopes/{provider_document_id}",
            params={"include": "recipients"},
            headers=await self._headers(),
        )
        data = resp.json()
        raw_status = data.get("status")
        recipients = data.get("recipients") or {}
        return ProviderStatus(
            provider_status=raw_status,
            status=WebhookStatusMapper().map_provider_status(self.provider, raw_status),
            signers=recipients.get("signers") or [],
        )
