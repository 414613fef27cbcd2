"""
Engine-wide exception hierarchy.

Every service raises one of these types; the app factory registers one
handler per type so each maps to a stable HTTP status and error code.

Usage:
    from benefit_engine.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="BenefitApplication", resource_id=42)
    raise ValidationError("program_year must be >= 2024", details={"program_year": 2019})
"""


class NotFoundError(Exception):
    """Raised when a referenced application or beneficiary does not exist.

    Args:
        resource: Human-readable entity name (e.g. "BenefitApplication", "Beneficiary").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or out of range.

    Always raised before any write. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None, message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = message or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class DuplicateBenefitError(ConflictError):
    """A beneficiary already holds an application for this milestone.

    Expected during re-runs of batch generation; never fatal.
    """

    def __init__(self, beneficiary_id: int, benefit_code: str) -> None:
        self.beneficiary_id = beneficiary_id
        self.benefit_code = benefit_code
        super().__init__(
            "BenefitApplication",
            "beneficiary_id,benefit_code",
            f"{beneficiary_id},{benefit_code}",
        )


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed by the workflow.

    Carries the attempted source and target so the UI can explain it.
    """

    def __init__(self, source: str, target: str, application_id: int | None = None) -> None:
        self.source = source
        self.target = target
        self.application_id = application_id
        msg = f"Invalid transition: {source} → {target}"
        if application_id is not None:
            msg += f" (application id={application_id})"
        super().__init__(msg)


class TransientStoreError(Exception):
    """Storage stayed unavailable after the bounded retry budget.

    Fatal for the single unit of work only.
    """

    def __init__(self, operation: str, attempts: int, cause: Exception | None = None) -> None:
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        msg = f"Store unavailable during {operation} after {attempts} attempt(s)"
        if cause is not None:
            msg += f": {cause.__class__.__name__}"
        super().__init__(msg)
