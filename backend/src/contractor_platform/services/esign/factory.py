"""Pick the signing-provider client for a provider name."""

from typing import Optional

from contractor_platform.app.config import Settings, get_settings
from contractor_platform.domain.enums import ESignProvider
from contractor_platform.services.esign.base import SigningProviderClient
from contractor_platform.services.esign.boldsign import BoldSignClient
from contractor_platform.services.esign.docusign import DocuSignClient

_CLIENTS: dict[ESignProvider, type[SigningProviderClient]] = {
    ESignProvider.BOLDSIGN: BoldSignClient,
    ESignProvider.DOCUSIGN: DocuSignClient,
}

# One instance per provider so DocuSign's token cache survives across requests
_instances: dict[ESignProvider, SigningProviderClient] = {}


def get_signing_client(provider: Optional[str] = None, settings: Optional[Settings] = None) -> SigningProviderClient:
    """Return the client for ``provider`` (default: ``settings.esign_provider``).

    Raises:
        ValueError: unknown provider name.
    """
    settings = settings or get_settings()
    key = ESignProvider((provider or settings.esign_provider).lower())
    client = _instances.get(key)
    if client is None:
        client = _CLIENTS[key](settings)
        _instances[key] = client
    return client
