"""Selection engine error taxonomy.

Every error is raised synchronously by the operation that detected it and
carries a stable `code` for API clients. Only StaleStateError is safe to retry
automatically (once, after re-reading the turn state).
"""


class SelectionServiceError(Exception):
    """Base exception for selection engine errors."""

    code = "selection_error"
    status_code = 400
    retryable = False


class AlreadyStartedError(SelectionServiceError):
    """Rotation year selection has already been started."""

    code = "already_started"
    status_code = 409


class NotStartedError(SelectionServiceError):
    """Rotation year selection has not been started."""

    code = "not_started"
    status_code = 409


class SelectionCompletedError(SelectionServiceError):
    """Rotation year selection is completed; no further turns."""

    code = "selection_completed"
    status_code = 409


class NotYourTurnError(SelectionServiceError):
    """Claim submitted by a group that does not hold the turn."""

    code = "not_your_turn"
    status_code = 403


class QuotaExceededError(SelectionServiceError):
    """Claim would push a usage counter past its quota."""

    code = "quota_exceeded"
    status_code = 422


class ApprovalRequiredError(SelectionServiceError):
    """Manual allocation: claim lacks admin approval."""

    code = "approval_required"
    status_code = 403


class StaleStateError(SelectionServiceError):
    """Expected version does not match the stored turn state."""

    code = "stale_state"
    status_code = 409
    retryable = True

    def __init__(self, message: str, current_version: int | None = None):
        super().__init__(message)
        self.current_version = current_version


class InvalidRotationOrderError(SelectionServiceError):
    """Rotation order is not a permutation of the active family groups."""

    code = "invalid_rotation_order"
    status_code = 422


class IdempotencyConflictError(SelectionServiceError):
    """Idempotency token reused with a different claim payload."""

    code = "idempotency_conflict"
    status_code = 409


class RotationYearNotFoundError(SelectionServiceError):
    """No rotation year for the organization and year."""

    code = "rotation_year_not_found"
    status_code = 404


class UnknownAllocationModelError(SelectionServiceError):
    """Allocation model name is not one of the supported models."""

    code = "unknown_allocation_model"
    status_code = 422


class FamilyGroupNotFoundError(SelectionServiceError):
    """Family group not found in the organization."""

    code = "family_group_not_found"
    status_code = 404


class FamilyGroupInUseError(SelectionServiceError):
    """Family group is referenced by a rotation year that is still running."""

    code = "family_group_in_use"
    status_code = 409


class DuplicateFamilyGroupNameError(SelectionServiceError):
    """Family group name already exists in org."""

    code = "duplicate_family_group"
    status_code = 409


class OrganizationNotFoundError(SelectionServiceError):
    """Organization not found."""

    code = "organization_not_found"
    status_code = 404


class SelectionLockTimeoutError(SelectionServiceError):
    """Timed out waiting for the rotation year's selection lock."""

    code = "selection_busy"
    status_code = 503
    retryable = True
