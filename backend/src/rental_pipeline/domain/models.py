"""SQLAlchemy ORM models for the rental opportunity pipeline.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps (no TIMESTAMPTZ)
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rental_pipeline.infra.database import Base


# ---------------------------------------------------------------------------
# Directory (read-only from the pipeline's point of view)
# ---------------------------------------------------------------------------


class User(Base):
    """Platform user. Contact fields never leave the owner-facing views."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="client")  # client, owner, seller, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    saved_searches = relationship("SavedSearch", back_populates="user")


class Property(Base):
    """A rentable property as known to the listings directory."""

    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    owner = relationship("User")


class SavedSearch(Base):
    """A search a user saved while browsing listings."""

    __tablename__ = "saved_searches"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    filters = Column(JSON, default={})
    created_at = Column(DateTime, default=func.now())

    # Relationships
    user = relationship("User", back_populates="saved_searches")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class RentalOpportunityRequest(Base):
    """A user's recorded interest in renting a specific property."""

    __tablename__ = "rental_opportunity_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    status = Column(String(30), nullable=False, default="pending", index=True)  # OpportunityRequestStatus
    notes = Column(Text, nullable=True)
    desired_move_in_date = Column(DateTime, nullable=True)
    preferred_contact_method = Column(String(20), nullable=False, default="email")  # ContactMethod
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    property_ref = relationship("Property")
    user = relationship("User")
    appointment = relationship(
        "Appointment", back_populates="opportunity_request", uselist=False
    )
    offer = relationship("Offer", back_populates="opportunity_request", uselist=False)


class Appointment(Base):
    """A property visit. At most one appointment links to a given request."""

    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    # Nullable: appointments may be booked outside the pipeline.
    opportunity_request_id = Column(
        String(36),
        ForeignKey("rental_opportunity_requests.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    date = Column(DateTime, nullable=False, index=True)
    type = Column(String(20), nullable=False)  # AppointmentType
    status = Column(String(20), nullable=False, default="pending", index=True)  # AppointmentStatus
    meet_link = Column(Text, nullable=True)
    google_event_id = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    opportunity_request = relationship(
        "RentalOpportunityRequest", back_populates="appointment"
    )


class Offer(Base):
    """A rental offer. At most one offer links to a given request."""

    __tablename__ = "offers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    opportunity_request_id = Column(
        String(36),
        ForeignKey("rental_opportunity_requests.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True)
    offer_amount = Column(Numeric(12, 2), nullable=False)
    counter_offer_amount = Column(Numeric(12, 2), nullable=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # OfferStatus
    notes = Column(Text, nullable=True)
    counter_offer_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    opportunity_request = relationship("RentalOpportunityRequest", back_populates="offer")


class LeadJourney(Base):
    """Immutable journey entry for a pipeline action. Never read by the pipeline."""

    __tablename__ = "lead_journeys"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=True, index=True)
    action = Column(String(50), nullable=False)  # JourneyAction
    data = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=func.now())
