"""Core exceptions for the erasure workflow and its persistence layer."""

from uuid import UUID

from letright.utils.exceptions import LetRightError


class ErasureError(LetRightError):
    """Base class for erasure workflow errors."""

    pass


class SubjectNotFoundError(ErasureError):
    """Raised when the subject has no profile for the given subject type.

    Attributes:
        subject_id: The subject that was looked up
        subject_type: The subject type whose profile store was checked
    """

    def __init__(self, subject_id: str, subject_type: str):
        super().__init__(f"Subject {subject_id} not found")
        self.subject_id = subject_id
        self.subject_type = subject_type

    def __str__(self) -> str:
        return f"SubjectNotFoundError: {self.args[0]} (type={self.subject_type})"


class DuplicateRequestError(ErasureError):
    """Raised when the subject already has a non-terminal deletion request.

    Attributes:
        subject_id: The subject with an active request
        existing_request_id: ID of the active request, when known
    """

    def __init__(self, subject_id: str, existing_request_id: UUID | None = None):
        super().__init__(f"Deletion request already exists for subject {subject_id}")
        self.subject_id = subject_id
        self.existing_request_id = existing_request_id


class InvalidTokenError(ErasureError):
    """Raised when a token matches no request in a state that accepts it.

    Covers unknown tokens, tokens whose request moved on, and tokens that
    were already consumed. The message never reveals which case applied.

    Attributes:
        purpose: "verification" or "cancellation"
    """

    def __init__(self, purpose: str):
        super().__init__(f"Invalid or expired {purpose} token")
        self.purpose = purpose


class RequestNotFoundError(ErasureError):
    """Raised when a deletion request ID does not exist."""

    def __init__(self, request_id: UUID):
        super().__init__(f"Deletion request not found: {request_id}")
        self.request_id = request_id


class InvalidTransitionError(ErasureError):
    """Raised when an operator transition does not apply to the current status.

    Attributes:
        request_id: The request that was targeted
        current_status: Status observed on the request
        target_status: Status the caller asked for
    """

    def __init__(self, request_id: UUID, current_status: str, target_status: str):
        super().__init__(
            f"Cannot move deletion request {request_id} from {current_status} to {target_status}"
        )
        self.request_id = request_id
        self.current_status = current_status
        self.target_status = target_status


class DeletionPlanError(ErasureError):
    """Raised when a deletion plan is missing or malformed."""

    pass


class StoreUnavailableError(ErasureError):
    """Raised when a persistence call fails or exceeds its time bound.

    Attributes:
        operation: Store operation that failed
    """

    def __init__(self, operation: str, reason: str):
        super().__init__(f"Store operation '{operation}' failed: {reason}")
        self.operation = operation
        self.reason = reason
