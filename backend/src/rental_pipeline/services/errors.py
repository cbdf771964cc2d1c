"""Domain errors raised by the pipeline service.

Each error carries a stable ``code`` the frontend can localize and the HTTP
status the route layer should answer with.
"""


class PipelineError(Exception):
    """Base class for precondition failures in the rental pipeline."""

    code = "pipeline_error"
    status_code = 400

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class QuotaExceeded(PipelineError):
    """The user already holds the maximum number of active requests."""

    code = "quota_exceeded"
    status_code = 409

    def __init__(self, active_count: int, limit: int):
        self.active_count = active_count
        self.limit = limit
        super().__init__(
            f"You already have {active_count} active rental requests (limit {limit})"
        )


class InvalidTransition(PipelineError):
    """The request or offer is missing or not in the required source state."""

    code = "invalid_transition"
    status_code = 400

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message, code)
        if self.code == "not_found":
            self.status_code = 404

    @classmethod
    def not_found(cls, entity: str) -> "InvalidTransition":
        return cls(f"{entity} not found", code="not_found")


class InvalidAmount(InvalidTransition):
    """An offer or counter-offer amount was not strictly positive."""

    code = "invalid_amount"


class VisitNotCompleted(PipelineError):
    """An offer was submitted before the visit step was reached."""

    code = "visit_not_completed"

    def __init__(self, current_status: str):
        self.current_status = current_status
        super().__init__(
            f"An offer can only be submitted after a visit (request is {current_status})"
        )


class DuplicateOffer(PipelineError):
    """The request already has an offer."""

    code = "duplicate_offer"
    status_code = 409

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"An offer already exists for request {request_id}")


class AlreadyAccepted(PipelineError):
    """AcceptOffer was invoked on an offer that is already accepted."""

    code = "already_accepted"
    status_code = 409

    def __init__(self, offer_id: str):
        super().__init__(f"Offer {offer_id} has already been accepted")


class CannotRejectAccepted(PipelineError):
    """RejectOffer was invoked on an accepted offer."""

    code = "cannot_reject_accepted"
    status_code = 409

    def __init__(self, offer_id: str):
        super().__init__(f"Offer {offer_id} is accepted and can no longer be rejected")


class NotPermitted(PipelineError):
    """The caller's role does not allow this operation on this property."""

    code = "not_permitted"
    status_code = 403


class CollaboratorUnavailable(PipelineError):
    """The calendar provider could not be reached. Never surfaced to callers."""

    code = "collaborator_unavailable"
    status_code = 503
