"""Domain enumerations for the contractor platform document engine.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class DocumentType(str, Enum):
    """Customer-facing document kinds produced by the generation engine."""

    CONTRACT = "contract"
    PROPOSAL = "proposal"
    CHANGE_ORDER = "change_order"


class DocumentStatus(str, Enum):
    """Signature lifecycle of a generated document."""

    DRAFT = "draft"
    SENT = "sent"
    DELIVERED = "delivered"
    SIGNED = "signed"
    COMPLETED = "completed"
    DECLINED = "declined"
    VOIDED = "voided"


class MilestoneType(str, Enum):
    """Kinds of payment-schedule rows."""

    INITIAL_FEE = "initial_fee"
    SUBCONTRACTOR = "subcontractor"
    EQUIPMENT = "equipment"
    MATERIALS = "materials"
    EQUIPMENT_MATERIALS = "equipment_materials"
    ADDITIONAL = "additional"
    FINAL_INSPECTION = "final_inspection"
    CHANGE_ORDER_ITEM = "change_order_item"
    CUSTOM = "custom"


class CostCategory(str, Enum):
    """Pricing categories that carry company-level markup defaults.

    Values match the column infix on Company, e.g.
    ``default_subcontractor_markup_percent``.
    """

    SUBCONTRACTOR = "subcontractor"
    EQUIPMENT_MATERIALS = "equipment_materials"
    ADDITIONAL_EXPENSES = "additional_expenses"


class LineItemCategory(str, Enum):
    """Cost line item tables a project aggregates."""

    SUBCONTRACTOR = "subcontractor"
    EQUIPMENT = "equipment"
    MATERIALS = "materials"
    ADDITIONAL = "additional"


class ProjectStatus(str, Enum):
    """Project lifecycle, independent of any document's signature status."""

    LEAD = "lead"
    CONTACTED = "contacted"
    PROPOSAL_SENT = "proposal_sent"
    PROPOSAL_SIGNED = "proposal_signed"
    CONTRACT_SENT = "contract_sent"
    SOLD = "sold"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class ESignProvider(str, Enum):
    """Supported external signing providers."""

    BOLDSIGN = "boldsign"
    DOCUSIGN = "docusign"


class SignerTopology(str, Enum):
    """How a provider handles the second (company) signer.

    DECLARED_GATED: both signers are declared up front with a signing order;
    the provider withholds the company signer's fields until the customer signs.

    ADDED_ON_FIRST_SIGNATURE: only the customer is invited; the company signer
    is added to the envelope once the customer has signed.
    """

    DECLARED_GATED = "declared_gated"
    ADDED_ON_FIRST_SIGNATURE = "added_on_first_signature"


class SignerRole(str, Enum):
    """Parties that sign a document, in signing order."""

    CUSTOMER = "customer"
    COMPANY = "company"


class SignatureEvent(str, Enum):
    """Provider-agnostic signature events produced by webhook parsers."""

    SENT = "sent"
    VIEWED = "viewed"
    SIGNER_COMPLETED = "signer_completed"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"
    REVOKED = "revoked"
    VOIDED = "voided"
    REASSIGNED = "reassigned"
    VERIFICATION = "verification"


class DocumentEventOutcome(str, Enum):
    """What happened when a status update was offered to a document."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REGRESSION = "regression"
    TERMINAL = "terminal"
    UNMAPPED = "unmapped"
