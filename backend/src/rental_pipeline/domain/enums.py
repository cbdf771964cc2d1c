"""Domain enumerations for the rental opportunity pipeline.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class OpportunityRequestStatus(str, Enum):
    """Status of a rental opportunity request through its lifecycle."""

    PENDING = "pending"
    SCHEDULED_VISIT = "scheduled_visit"
    VISIT_COMPLETED = "visit_completed"
    OFFER_SUBMITTED = "offer_submitted"
    OFFER_NEGOTIATION = "offer_negotiation"
    OFFER_ACCEPTED = "offer_accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ContactMethod(str, Enum):
    """How the requester prefers to be contacted."""

    EMAIL = "email"
    PHONE = "phone"
    WHATSAPP = "whatsapp"


class AppointmentType(str, Enum):
    """Whether a visit happens on site or over video."""

    IN_PERSON = "in_person"
    VIDEO = "video"


class AppointmentStatus(str, Enum):
    """Status of a property visit appointment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OfferStatus(str, Enum):
    """Status of a rental offer."""

    PENDING = "pending"
    COUNTERED = "countered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class JourneyAction(str, Enum):
    """Action tag written to the lead journey log."""

    REQUEST_OPPORTUNITY = "request_opportunity"
    VIEW_LAYER2 = "view_layer2"
    COMPLETE_VISIT = "complete_visit"
    SUBMIT_OFFER = "submit_offer"
    COUNTER_OFFER = "counter_offer"
    ACCEPT_OFFER = "accept_offer"
    REJECT_OFFER = "reject_offer"
    CANCEL_REQUEST = "cancel_request"


class UserRole(str, Enum):
    """Role of a platform user."""

    CLIENT = "client"
    OWNER = "owner"
    SELLER = "seller"
    ADMIN = "admin"
