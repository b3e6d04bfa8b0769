class PledgeRankError(Exception):
    """Base exception for PledgeRank.

    Every subclass carries a stable machine-readable ``code`` and the HTTP
    status the API layer maps it to.
    """

    code = "internal_error"
    status_code = 500
    retryable = False

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.__class__.__doc__.strip().splitlines()[0]
        super().__init__(self.detail)


class ValidationError(PledgeRankError):
    """Request payload has an invalid shape or range."""

    code = "validation_error"
    status_code = 422


class NotFoundError(PledgeRankError):
    """Referenced resource does not exist."""

    code = "not_found"
    status_code = 404


class UnknownEventError(NotFoundError):
    """Event not found."""

    code = "unknown_event"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event '{event_id}' not found")


class ConflictError(PledgeRankError):
    """Resource already exists."""

    code = "conflict"
    status_code = 409


class DuplicateCommitmentError(ConflictError):
    """Commitment hash already recorded."""

    code = "duplicate_commitment"

    def __init__(self, commitment_hash: str):
        self.commitment_hash = commitment_hash
        super().__init__(f"Commitment '{commitment_hash}' already recorded")


class AuthorizationError(PledgeRankError):
    """Caller is not allowed to perform this action."""

    code = "forbidden"
    status_code = 403


class NotOwnerError(AuthorizationError):
    """Only the donor who made the commitment may reveal it."""

    code = "not_owner"


class DependencyError(PledgeRankError):
    """External dependency failed."""

    code = "dependency_error"
    status_code = 503


class InvalidProofError(DependencyError):
    """Proof verification rejected the commitment."""

    code = "invalid_proof"
    status_code = 422


class ConcurrencyError(PledgeRankError):
    """Aggregate update contention exhausted retries."""

    code = "concurrency_conflict"
    status_code = 503
    retryable = True

    def __init__(self, detail: str | None = None, retry_after: int = 1):
        self.retry_after = retry_after
        super().__init__(detail)
