"""
Shared error types for archive services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class UnknownEntityTypeError(ValidationIssue):
    """Raised when a type tag falls outside the closed entity enumeration."""

    def __init__(self, entity_type):
        super().__init__(
            f'Unknown entity type: "{entity_type}"',
            field="type",
            error_type="unknown_type",
            data={"type": entity_type},
        )
        self.entity_type = entity_type


class MalformedDocumentError(ValueError):
    """Raised when a source document cannot be read or parsed."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path
