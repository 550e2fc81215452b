"""Exceptions shared across the document engine services."""


class FieldValidationError(Exception):
    """Raised when caller input or company configuration is invalid.

    ``field`` names the offending setting or request field so the caller
    can surface a field-level message.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class NotFoundError(Exception):
    """Raised when a record does not exist within the caller's company."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class DocumentStateError(Exception):
    """Raised when an action is not allowed in the document's current state."""

    def __init__(self, document_id: str, status: str, reason: str):
        self.document_id = document_id
        self.status = status
        self.reason = reason
        super().__init__(f"Document {document_id} ({status}): {reason}")
