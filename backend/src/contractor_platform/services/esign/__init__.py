"""Signing-provider clients.

Providers:
1. BoldSign (API key, both signers declared with a signing order)
2. DocuSign (JWT grant, company signer added after the customer signs)
"""

from .base import (
    PermanentProviderError,
    ProviderError,
    ProviderStatus,
    SigningProviderClient,
    SigningRequest,
    TokenCache,
    TransientProviderError,
)
from .boldsign import BoldSignClient
from .docusign import DocuSignClient
from .factory import get_signing_client

__all__ = [
    "PermanentProviderError",
    "ProviderError",
    "ProviderStatus",
    "SigningProviderClient",
    "SigningRequest",
    "TokenCache",
    "TransientProviderError",
    "BoldSignClient",
    "DocuSignClient",
    "get_signing_client",
]
