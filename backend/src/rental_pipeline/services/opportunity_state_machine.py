"""Opportunity request and offer state machines.

Encodes the forward-only lifecycle of a rental opportunity request and the
status rules for offers negotiated against it.
"""

from rental_pipeline.domain.enums import OfferStatus, OpportunityRequestStatus
from rental_pipeline.services.errors import InvalidTransition

S = OpportunityRequestStatus
O = OfferStatus

# ---------------------------------------------------------------------------
# Request transition map: from_status -> allowed to_statuses
# ---------------------------------------------------------------------------

TRANSITION_MAP: dict[OpportunityRequestStatus, set[OpportunityRequestStatus]] = {
    S.PENDING: {S.SCHEDULED_VISIT, S.CANCELLED},
    S.SCHEDULED_VISIT: {
        S.VISIT_COMPLETED,
        S.OFFER_SUBMITTED,  # offers are accepted straight after scheduling
        S.CANCELLED,
    },
    S.VISIT_COMPLETED: {S.OFFER_SUBMITTED},
    S.OFFER_SUBMITTED: {S.OFFER_NEGOTIATION, S.OFFER_ACCEPTED, S.REJECTED},
    S.OFFER_NEGOTIATION: {S.OFFER_ACCEPTED, S.REJECTED},
    # A rejected offer may still be accepted by the property side.
    S.REJECTED: {S.OFFER_ACCEPTED},
}

# Requests that count toward the per-user quota
ACTIVE_STATES: set[OpportunityRequestStatus] = {S.PENDING, S.SCHEDULED_VISIT}

# Request states from which an offer may be submitted
OFFER_ELIGIBLE_STATES: set[OpportunityRequestStatus] = {
    S.VISIT_COMPLETED,
    S.SCHEDULED_VISIT,
}

# ---------------------------------------------------------------------------
# Offer transition map
# ---------------------------------------------------------------------------

OFFER_TRANSITION_MAP: dict[OfferStatus, set[OfferStatus]] = {
    O.PENDING: {O.COUNTERED, O.ACCEPTED, O.REJECTED},
    O.COUNTERED: {O.ACCEPTED, O.REJECTED},
    O.REJECTED: {O.ACCEPTED, O.REJECTED},
    O.ACCEPTED: set(),
}


def request_status(request) -> OpportunityRequestStatus:
    """Get OpportunityRequestStatus from a model (stored as string)."""
    s = request.status
    if isinstance(s, OpportunityRequestStatus):
        return s
    return OpportunityRequestStatus(s)


def offer_status(offer) -> OfferStatus:
    """Get OfferStatus from a model (stored as string)."""
    s = offer.status
    if isinstance(s, OfferStatus):
        return s
    return OfferStatus(s)


class OpportunityStateMachine:
    """Validates request and offer status transitions."""

    def validate_transition(
        self,
        current_status: OpportunityRequestStatus,
        target_status: OpportunityRequestStatus,
    ) -> bool:
        """Return True if the request transition is valid. Raise InvalidTransition if not."""
        allowed = TRANSITION_MAP.get(current_status)
        if not allowed:
            raise InvalidTransition(
                f"No transitions allowed from {current_status.value}"
            )
        if target_status not in allowed:
            raise InvalidTransition(
                f"Transition from {current_status.value} to {target_status.value} is not allowed"
            )
        return True

    def validate_offer_transition(
        self,
        current_status: OfferStatus,
        target_status: OfferStatus,
    ) -> bool:
        """Return True if the offer transition is valid. Raise InvalidTransition if not."""
        if target_status not in OFFER_TRANSITION_MAP.get(current_status, set()):
            raise InvalidTransition(
                f"Offer transition from {current_status.value} to {target_status.value} is not allowed"
            )
        return True

    def get_allowed_transitions(
        self, current_status: OpportunityRequestStatus
    ) -> list[OpportunityRequestStatus]:
        """Return the valid next states from the current status, in enum order."""
        allowed = TRANSITION_MAP.get(current_status, set())
        return [s for s in OpportunityRequestStatus if s in allowed]
