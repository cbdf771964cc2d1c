"""Pydantic v2 schemas for API request/response validation."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from rental_pipeline.domain.enums import AppointmentType, ContactMethod


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: str


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class OpportunityRequestCreate(BaseModel):
    """Body for POST /rental-opportunity-requests."""

    property_id: str
    desired_move_in_date: datetime | None = None
    preferred_contact_method: ContactMethod = ContactMethod.EMAIL
    notes: str | None = None


class ScheduleVisitBody(BaseModel):
    date: datetime
    type: AppointmentType
    notes: str | None = None


class SubmitOfferBody(BaseModel):
    # Positivity is checked by the service so the error code stays stable.
    offer_amount: Decimal
    notes: str | None = None


class CounterOfferBody(BaseModel):
    counter_amount: Decimal
    notes: str | None = None


class RejectOfferBody(BaseModel):
    notes: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class OpportunityRequestResponse(BaseModel):
    """A rental opportunity request as returned to its owner."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    property_id: str
    user_id: str
    status: str
    desired_move_in_date: datetime | None = None
    preferred_contact_method: str
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    property_id: str
    client_id: str
    opportunity_request_id: str | None = None
    date: datetime
    type: str
    status: str
    meet_link: str | None = None
    google_event_id: str | None = None
    notes: str | None = None


class OfferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    opportunity_request_id: str | None = None
    property_id: str
    client_id: str
    appointment_id: str | None = None
    offer_amount: Decimal
    counter_offer_amount: Decimal | None = None
    counter_offer_notes: str | None = None
    status: str
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ActiveCountResponse(BaseModel):
    count: int
    limit: int
    can_create: bool


class PropertySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    address: str | None = None


class MyOpportunityResponse(BaseModel):
    """A request enriched with its property, appointment and offer."""

    request: OpportunityRequestResponse
    property: PropertySummary | None = None
    appointment: AppointmentResponse | None = None
    offer: OfferResponse | None = None
    next_statuses: list[str] = []


class InterestedClientResponse(BaseModel):
    """Owner-facing view of an interested client.

    Contact fields (email, phone) are intentionally absent.
    """

    client_id: str
    client_name: str
    property_id: str
    property_title: str | None = None
    request_id: str
    request_status: str
    requested_at: datetime | None = None
    search_preferences: dict | None = None
    search_summary: str | None = None
