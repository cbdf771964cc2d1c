"""Rental pipeline service: opportunity request → visit → offer → outcome.

Every mutating operation validates all preconditions before writing, applies
its status flip together with the dependent Appointment/Offer write, and
commits once. Best-effort side effects (journey log, calendar cleanup) run
only after that commit and can never fail the operation.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import func, insert, literal, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rental_pipeline.app.config import Settings, get_settings
from rental_pipeline.domain.enums import (
    AppointmentStatus,
    AppointmentType,
    ContactMethod,
    JourneyAction,
    OfferStatus,
    OpportunityRequestStatus,
)
from rental_pipeline.domain.models import (
    Appointment,
    Offer,
    Property,
    RentalOpportunityRequest,
    SavedSearch,
    User,
)
from rental_pipeline.infra.calendar_client import MeetingInfo
from rental_pipeline.services.authorization import NegotiationAuthorizer
from rental_pipeline.services.errors import (
    AlreadyAccepted,
    CannotRejectAccepted,
    DuplicateOffer,
    InvalidAmount,
    InvalidTransition,
    NotPermitted,
    QuotaExceeded,
    VisitNotCompleted,
)
from rental_pipeline.services.journey_recorder import JourneyRecorder
from rental_pipeline.services.opportunity_state_machine import (
    ACTIVE_STATES,
    OFFER_ELIGIBLE_STATES,
    OpportunityStateMachine,
    offer_status,
    request_status,
)

logger = logging.getLogger(__name__)

S = OpportunityRequestStatus

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATES]

_CENTS = Decimal("0.01")
_MAX_AMOUNT = Decimal("9999999999.99")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _positive_amount(value, field: str) -> Decimal:
    """Parse an amount and round it to cents, as stored in Numeric(12, 2)."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"{field} must be a number")
    if not amount.is_finite():
        raise InvalidAmount(f"{field} must be a number")
    if amount > _MAX_AMOUNT:
        raise InvalidAmount(f"{field} must not exceed {_MAX_AMOUNT}")
    amount = amount.quantize(_CENTS, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise InvalidAmount(f"{field} must be greater than zero")
    return amount


def _insert_within_quota(values: dict, user_id: str, limit: int):
    """INSERT ... SELECT that only writes while the user is under ``limit``.

    Count and insert run as one statement, so SQLite's write lock (taken at
    statement start) covers both.
    """
    table = RentalOpportunityRequest.__table__
    active = (
        select(func.count())
        .select_from(table)
        .where(table.c.user_id == user_id, table.c.status.in_(_ACTIVE_VALUES))
        .correlate(None)
        .scalar_subquery()
    )
    row = select(
        *[literal(value, table.c[name].type).label(name) for name, value in values.items()]
    ).where(active < limit)
    return insert(table).from_select(list(values), row)


def summarize_search(filters: dict | None) -> str | None:
    """Render saved-search filters as a short human-readable summary."""
    if not filters:
        return None
    parts = []
    for key, value in filters.items():
        if value in (None, "", [], {}):
            continue
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        parts.append(f"{key.replace('_', ' ')}: {value}")
    return "; ".join(parts) or None


class PipelineService:
    """Orchestrates the opportunity, appointment and offer stores."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        calendar=None,
        recorder: JourneyRecorder | None = None,
        authorizer: NegotiationAuthorizer | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.calendar = calendar
        self.recorder = recorder
        self.settings = settings or get_settings()
        self.authorizer = authorizer or NegotiationAuthorizer(
            self.settings.privileged_roles_set, self.settings.global_roles_set
        )
        self.state_machine = OpportunityStateMachine()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def active_count(self, user_id: str) -> int:
        """Number of the user's requests that count toward the quota."""
        result = await self.db.execute(
            select(func.count())
            .select_from(RentalOpportunityRequest)
            .where(
                RentalOpportunityRequest.user_id == user_id,
                RentalOpportunityRequest.status.in_(_ACTIVE_VALUES),
            )
        )
        return result.scalar_one()

    async def active_request_for_property(
        self, user_id: str, property_id: str
    ) -> RentalOpportunityRequest | None:
        result = await self.db.execute(
            select(RentalOpportunityRequest)
            .where(
                RentalOpportunityRequest.user_id == user_id,
                RentalOpportunityRequest.property_id == property_id,
                RentalOpportunityRequest.status.in_(_ACTIVE_VALUES),
            )
            .order_by(RentalOpportunityRequest.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_my_opportunities(self, user_id: str) -> list[RentalOpportunityRequest]:
        """The user's requests, newest first, with property, appointment and offer loaded."""
        result = await self.db.execute(
            select(RentalOpportunityRequest)
            .where(RentalOpportunityRequest.user_id == user_id)
            .options(
                selectinload(RentalOpportunityRequest.property_ref),
                selectinload(RentalOpportunityRequest.appointment),
                selectinload(RentalOpportunityRequest.offer),
            )
            .order_by(RentalOpportunityRequest.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def interested_clients(self, owner: User) -> list[dict]:
        """Clients with requests on the owner's properties, without contact fields."""
        query = (
            select(RentalOpportunityRequest, User.id, User.name, Property.id, Property.title)
            .join(User, User.id == RentalOpportunityRequest.user_id)
            .join(Property, Property.id == RentalOpportunityRequest.property_id)
            .order_by(RentalOpportunityRequest.created_at.desc())
        )
        if not self.authorizer.sees_all_properties(owner):
            query = query.where(Property.owner_id == owner.id)

        rows = (await self.db.execute(query)).all()
        client_ids = {client_id for _, client_id, _, _, _ in rows}

        latest_search: dict[str, SavedSearch] = {}
        if client_ids:
            searches = await self.db.execute(
                select(SavedSearch)
                .where(SavedSearch.user_id.in_(client_ids))
                .order_by(SavedSearch.created_at.desc())
            )
            for search in searches.scalars().all():
                latest_search.setdefault(search.user_id, search)

        clients = []
        for request, client_id, client_name, property_id, property_title in rows:
            search = latest_search.get(client_id)
            filters = dict(search.filters or {}) if search else None
            clients.append({
                "client_id": client_id,
                "client_name": client_name,
                "property_id": property_id,
                "property_title": property_title,
                "request_id": request.id,
                "request_status": request.status,
                "requested_at": request.created_at,
                "search_preferences": filters,
                "search_summary": summarize_search(filters),
            })
        return clients

    async def list_offers(
        self,
        caller: User,
        status: OfferStatus | None = None,
        property_id: str | None = None,
        client_id: str | None = None,
    ) -> list[Offer]:
        """Offers visible to the caller, newest first.

        Global roles see every offer, other property-side roles the offers on
        properties they own, and everyone else only the offers they made.
        """
        query = select(Offer).order_by(Offer.created_at.desc())
        if not self.authorizer.sees_all_properties(caller):
            if self.authorizer.is_property_side(caller):
                query = query.join(Property, Property.id == Offer.property_id).where(
                    Property.owner_id == caller.id
                )
            else:
                query = query.where(Offer.client_id == caller.id)

        if status is not None:
            query = query.where(Offer.status == OfferStatus(status).value)
        if property_id:
            query = query.where(Offer.property_id == property_id)
        if client_id:
            query = query.where(Offer.client_id == client_id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Requester operations
    # ------------------------------------------------------------------

    async def create_request(
        self,
        property_id: str,
        user_id: str,
        desired_move_in_date: datetime | None = None,
        contact_method: ContactMethod = ContactMethod.EMAIL,
        notes: str | None = None,
    ) -> RentalOpportunityRequest:
        """Create a pending request, enforcing the per-user active quota."""
        # Serializes creators for the same user where row locks exist
        # (SQLite ignores FOR UPDATE).
        user = (
            await self.db.execute(
                select(User).where(User.id == user_id).with_for_update()
            )
        ).scalar_one_or_none()
        if user is None:
            raise InvalidTransition.not_found("User")

        prop = await self.db.get(Property, property_id)
        if prop is None:
            raise InvalidTransition.not_found("Property")

        limit = self.settings.max_active_requests
        active = await self.active_count(user_id)
        if active >= limit:
            raise QuotaExceeded(active, limit)

        now = _now()
        request_id = str(uuid.uuid4())
        values = {
            "id": request_id,
            "property_id": property_id,
            "user_id": user_id,
            "status": S.PENDING.value,
            "desired_move_in_date": desired_move_in_date,
            "preferred_contact_method": ContactMethod(contact_method).value,
            "notes": notes,
            "created_at": now,
            "updated_at": now,
        }
        # The count above only fast-paths the refusal; the limit itself is
        # enforced by the conditional insert.
        result = await self.db.execute(_insert_within_quota(values, user_id, limit))
        if result.rowcount != 1:
            await self.db.rollback()
            raise QuotaExceeded(await self.active_count(user_id), limit)
        await self.db.commit()

        request = await self.db.get(RentalOpportunityRequest, request_id)
        logger.info(
            "Opportunity request %s created (user=%s, property=%s, limit=%d)",
            request.id, user_id, property_id, limit,
        )
        await self._record(
            property_id, user_id, JourneyAction.REQUEST_OPPORTUNITY,
            {"request_id": request.id, "contact_method": request.preferred_contact_method},
        )
        return request

    async def schedule_visit(
        self,
        request_id: str,
        caller_id: str,
        date: datetime,
        type: AppointmentType,
        notes: str | None = None,
    ) -> Appointment:
        """Book the visit for a pending request and move it to scheduled_visit."""
        visit_type = AppointmentType(type)
        request = await self._get_owned_request(request_id, caller_id)
        self._require_pending(request)

        prop = await self.db.get(Property, request.property_id)

        meeting: MeetingInfo | None = None
        if visit_type == AppointmentType.VIDEO:
            meeting = await self._create_meeting(request, prop, date)

        # Re-read under lock: the request may have moved while the calendar call ran.
        await self.db.refresh(request, with_for_update=True)
        try:
            self._require_pending(request)
        except InvalidTransition:
            await self._discard_meeting(meeting)
            raise
        self.state_machine.validate_transition(request_status(request), S.SCHEDULED_VISIT)

        now = _now()
        appointment = Appointment(
            id=str(uuid.uuid4()),
            property_id=request.property_id,
            client_id=caller_id,
            opportunity_request_id=request.id,
            date=date,
            type=visit_type.value,
            status=AppointmentStatus.PENDING.value,
            meet_link=meeting.join_link if meeting else None,
            google_event_id=meeting.event_id if meeting else None,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.db.add(appointment)
        request.status = S.SCHEDULED_VISIT.value
        request.updated_at = now

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            await self._discard_meeting(meeting)
            raise InvalidTransition("A visit is already scheduled for this request")

        logger.info(
            "Opportunity request %s: pending → scheduled_visit (appointment=%s, type=%s, meet=%s)",
            request.id, appointment.id, visit_type.value, bool(appointment.meet_link),
        )
        await self._record(
            request.property_id, caller_id, JourneyAction.VIEW_LAYER2,
            {
                "request_id": request.id,
                "appointment_id": appointment.id,
                "type": visit_type.value,
                "date": date.isoformat(),
            },
        )
        return appointment

    async def cancel_request(self, request_id: str, caller_id: str) -> RentalOpportunityRequest:
        """Withdraw a pending or scheduled request, freeing a quota slot."""
        request = await self._get_owned_request(request_id, caller_id, for_update=True)
        self.state_machine.validate_transition(request_status(request), S.CANCELLED)

        appointment = await self._appointment_for(request.id)
        now = _now()
        from_status = request.status
        request.status = S.CANCELLED.value
        request.updated_at = now
        if appointment is not None:
            appointment.status = AppointmentStatus.CANCELLED.value
            appointment.updated_at = now
        await self.db.commit()

        logger.info("Opportunity request %s: %s → cancelled", request.id, from_status)

        if appointment is not None and appointment.google_event_id and self.calendar:
            await self._bounded(
                self.calendar.delete_meeting(appointment.google_event_id),
                "delete_meeting",
            )
        await self._record(
            request.property_id, caller_id, JourneyAction.CANCEL_REQUEST,
            {"request_id": request.id, "from_status": from_status},
        )
        return request

    async def submit_offer(
        self,
        request_id: str,
        caller_id: str,
        offer_amount,
        notes: str | None = None,
    ) -> Offer:
        """Submit the single offer for a request after its visit was scheduled."""
        request = await self._get_owned_request(request_id, caller_id, for_update=True)
        amount = _positive_amount(offer_amount, "offer_amount")

        existing = await self._offer_for(request.id)
        if existing is not None:
            raise DuplicateOffer(request.id)

        current = request_status(request)
        if current not in OFFER_ELIGIBLE_STATES:
            raise VisitNotCompleted(current.value)
        self.state_machine.validate_transition(current, S.OFFER_SUBMITTED)

        appointment = await self._appointment_for(request.id)

        now = _now()
        offer = Offer(
            id=str(uuid.uuid4()),
            opportunity_request_id=request.id,
            property_id=request.property_id,
            client_id=caller_id,
            appointment_id=appointment.id if appointment else None,
            offer_amount=amount,
            status=OfferStatus.PENDING.value,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.db.add(offer)
        request.status = S.OFFER_SUBMITTED.value
        request.updated_at = now

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateOffer(request_id)

        logger.info(
            "Opportunity request %s: %s → offer_submitted (offer=%s, amount=%s)",
            request.id, current.value, offer.id, amount,
        )
        await self._record(
            request.property_id, caller_id, JourneyAction.SUBMIT_OFFER,
            {"request_id": request.id, "offer_id": offer.id, "offer_amount": str(amount)},
        )
        return offer

    # ------------------------------------------------------------------
    # Property-side operations
    # ------------------------------------------------------------------

    async def complete_visit(self, request_id: str, caller: User) -> RentalOpportunityRequest:
        """Mark the visit for a scheduled request as done."""
        request = await self._get_request(request_id, for_update=True)
        await self._require_negotiator(caller, request.property_id)
        self.state_machine.validate_transition(request_status(request), S.VISIT_COMPLETED)

        appointment = await self._appointment_for(request.id)
        now = _now()
        request.status = S.VISIT_COMPLETED.value
        request.updated_at = now
        if appointment is not None:
            appointment.status = AppointmentStatus.COMPLETED.value
            appointment.updated_at = now
        await self.db.commit()

        logger.info("Opportunity request %s: scheduled_visit → visit_completed", request.id)
        await self._record(
            request.property_id, request.user_id, JourneyAction.COMPLETE_VISIT,
            {
                "request_id": request.id,
                "appointment_id": appointment.id if appointment else None,
                "completed_by": caller.id,
            },
        )
        return request

    async def counter_offer(
        self,
        offer_id: str,
        caller: User,
        counter_amount,
        notes: str | None = None,
    ) -> Offer:
        """Counter a pending offer; the linked request enters negotiation."""
        amount = _positive_amount(counter_amount, "counter_amount")
        offer = await self._get_offer(offer_id)
        await self._require_negotiator(caller, offer.property_id)

        current = offer_status(offer)
        if current != OfferStatus.PENDING:
            raise InvalidTransition(f"Only pending offers can be countered (offer is {current.value})")

        request = await self._linked_request(offer, S.OFFER_NEGOTIATION)

        now = _now()
        offer.counter_offer_amount = amount
        offer.counter_offer_notes = notes
        offer.status = OfferStatus.COUNTERED.value
        offer.updated_at = now
        if request is not None:
            request.status = S.OFFER_NEGOTIATION.value
            request.updated_at = now
        await self.db.commit()

        logger.info("Offer %s countered at %s by %s", offer.id, amount, caller.id)
        await self._record(
            offer.property_id, offer.client_id, JourneyAction.COUNTER_OFFER,
            {
                "offer_id": offer.id,
                "request_id": offer.opportunity_request_id,
                "offer_amount": str(offer.offer_amount),
                "counter_offer_amount": str(amount),
                "countered_by": caller.id,
            },
        )
        return offer

    async def accept_offer(self, offer_id: str, caller: User) -> Offer:
        """Accept an offer. Hands off to contract creation downstream."""
        offer = await self._get_offer(offer_id)
        await self._require_negotiator(caller, offer.property_id)

        current = offer_status(offer)
        if current == OfferStatus.ACCEPTED:
            raise AlreadyAccepted(offer.id)
        self.state_machine.validate_offer_transition(current, OfferStatus.ACCEPTED)

        request = await self._linked_request(offer, S.OFFER_ACCEPTED)

        now = _now()
        offer.status = OfferStatus.ACCEPTED.value
        offer.updated_at = now
        if request is not None:
            request.status = S.OFFER_ACCEPTED.value
            request.updated_at = now
        await self.db.commit()

        logger.info("Offer %s: %s → accepted by %s", offer.id, current.value, caller.id)
        await self._record(
            offer.property_id, offer.client_id, JourneyAction.ACCEPT_OFFER,
            {
                "offer_id": offer.id,
                "request_id": offer.opportunity_request_id,
                "offer_amount": str(offer.offer_amount),
                "counter_offer_amount": (
                    str(offer.counter_offer_amount)
                    if offer.counter_offer_amount is not None else None
                ),
                "accepted_by": caller.id,
            },
        )
        return offer

    async def reject_offer(self, offer_id: str, caller: User, notes: str | None = None) -> Offer:
        """Reject an offer; the rationale is kept in counter_offer_notes."""
        offer = await self._get_offer(offer_id)
        await self._require_negotiator(caller, offer.property_id)

        current = offer_status(offer)
        if current == OfferStatus.ACCEPTED:
            raise CannotRejectAccepted(offer.id)
        self.state_machine.validate_offer_transition(current, OfferStatus.REJECTED)

        request = await self._linked_request(offer, S.REJECTED)

        now = _now()
        offer.status = OfferStatus.REJECTED.value
        offer.counter_offer_notes = notes
        offer.updated_at = now
        if request is not None:
            request.status = S.REJECTED.value
            request.updated_at = now
        await self.db.commit()

        logger.info("Offer %s: %s → rejected by %s", offer.id, current.value, caller.id)
        await self._record(
            offer.property_id, offer.client_id, JourneyAction.REJECT_OFFER,
            {
                "offer_id": offer.id,
                "request_id": offer.opportunity_request_id,
                "reason": notes,
                "rejected_by": caller.id,
            },
        )
        return offer

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_request(
        self, request_id: str, for_update: bool = False
    ) -> RentalOpportunityRequest:
        query = select(RentalOpportunityRequest).where(RentalOpportunityRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        request = result.scalar_one_or_none()
        if request is None:
            raise InvalidTransition.not_found("Opportunity request")
        return request

    async def _get_owned_request(
        self, request_id: str, caller_id: str, for_update: bool = False
    ) -> RentalOpportunityRequest:
        request = await self._get_request(request_id, for_update=for_update)
        # Another user's request is reported exactly like a missing one.
        if request.user_id != caller_id:
            raise InvalidTransition.not_found("Opportunity request")
        return request

    async def _get_offer(self, offer_id: str) -> Offer:
        result = await self.db.execute(
            select(Offer)
            .where(Offer.id == offer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        offer = result.scalar_one_or_none()
        if offer is None:
            raise InvalidTransition.not_found("Offer")
        return offer

    async def _linked_request(
        self, offer: Offer, target: OpportunityRequestStatus
    ) -> RentalOpportunityRequest | None:
        """Load the offer's request and validate its move to ``target``.

        Returns None when there is no linked request or it is already there.
        """
        if not offer.opportunity_request_id:
            return None
        result = await self.db.execute(
            select(RentalOpportunityRequest)
            .where(RentalOpportunityRequest.id == offer.opportunity_request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            return None
        current = request_status(request)
        if current == target:
            return None
        self.state_machine.validate_transition(current, target)
        return request

    async def _appointment_for(self, request_id: str) -> Appointment | None:
        result = await self.db.execute(
            select(Appointment).where(Appointment.opportunity_request_id == request_id)
        )
        return result.scalar_one_or_none()

    async def _offer_for(self, request_id: str) -> Offer | None:
        result = await self.db.execute(
            select(Offer).where(Offer.opportunity_request_id == request_id)
        )
        return result.scalar_one_or_none()

    def _require_pending(self, request: RentalOpportunityRequest) -> None:
        current = request_status(request)
        if current != S.PENDING:
            if current == S.SCHEDULED_VISIT:
                raise InvalidTransition("A visit is already scheduled for this request")
            raise InvalidTransition(
                f"A visit can only be scheduled for a pending request (request is {current.value})"
            )

    async def _require_negotiator(self, caller: User, property_id: str) -> None:
        prop = await self.db.get(Property, property_id)
        if not self.authorizer.can_negotiate(caller, prop):
            raise NotPermitted("Only the property side can manage offers and visits for this property")

    async def _create_meeting(
        self,
        request: RentalOpportunityRequest,
        prop: Property | None,
        date: datetime,
    ) -> MeetingInfo | None:
        if self.calendar is None:
            return None
        title = prop.title if prop else "property"
        client = await self.db.get(User, request.user_id)
        owner = await self.db.get(User, prop.owner_id) if prop else None
        attendees = [u.email for u in (client, owner) if u is not None and u.email]
        end = date + timedelta(minutes=self.settings.visit_duration_minutes)
        return await self._bounded(
            self.calendar.create_meeting(
                f"Video visit: {title}",
                f"Virtual visit for rental request {request.id}",
                date,
                end,
                attendees,
            ),
            "create_meeting",
        )

    async def _discard_meeting(self, meeting: MeetingInfo | None) -> None:
        if meeting is not None and self.calendar is not None:
            await self._bounded(self.calendar.delete_meeting(meeting.event_id), "delete_meeting")

    async def _bounded(self, coro, label: str):
        """Await a calendar call with a timeout. Failures are logged and yield None."""
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.calendar_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Calendar %s timed out after %ss", label, self.settings.calendar_timeout_seconds)
        except Exception as e:
            logger.warning("Calendar %s failed: %s", label, e)
        return None

    async def _record(
        self,
        property_id: str | None,
        user_id: str | None,
        action: JourneyAction,
        metadata: dict,
    ) -> None:
        if self.recorder is None:
            return
        await self.recorder.record(property_id, user_id, action, metadata)
