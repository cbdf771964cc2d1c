"""Rental opportunity request endpoints.

Requester-facing lifecycle (create, schedule visit, submit offer, cancel) plus
the owner dashboard of interested clients. All state changes go through
PipelineService; domain errors are translated to HTTP here.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rental_pipeline.app.routes.auth import get_current_user_dep, require_role
from rental_pipeline.domain.enums import UserRole
from rental_pipeline.domain.models import RentalOpportunityRequest, User
from rental_pipeline.domain.schemas import (
    ActiveCountResponse,
    AppointmentResponse,
    InterestedClientResponse,
    MyOpportunityResponse,
    OfferResponse,
    OpportunityRequestCreate,
    OpportunityRequestResponse,
    PropertySummary,
    ScheduleVisitBody,
    SubmitOfferBody,
)
from rental_pipeline.infra.calendar_client import get_calendar_client
from rental_pipeline.infra.database import async_session, get_db
from rental_pipeline.services.authorization import get_default_authorizer
from rental_pipeline.services.errors import PipelineError
from rental_pipeline.services.journey_recorder import JourneyRecorder
from rental_pipeline.services.opportunity_state_machine import (
    OpportunityStateMachine,
    request_status,
)
from rental_pipeline.services.pipeline_service import PipelineService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["rental-opportunities"])
state_machine = OpportunityStateMachine()


def get_pipeline_service(db: AsyncSession = Depends(get_db)) -> PipelineService:
    """Dependency: pipeline service bound to the request's session."""
    return PipelineService(
        db,
        calendar=get_calendar_client(),
        recorder=JourneyRecorder(async_session),
        authorizer=get_default_authorizer(),
    )


def _http_error(e: PipelineError) -> HTTPException:
    logger.info("Pipeline request refused (%s): %s", e.code, e.message)
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


def _serialize_my_opportunity(request: RentalOpportunityRequest) -> MyOpportunityResponse:
    return MyOpportunityResponse(
        request=OpportunityRequestResponse.model_validate(request),
        property=(
            PropertySummary.model_validate(request.property_ref)
            if request.property_ref else None
        ),
        appointment=(
            AppointmentResponse.model_validate(request.appointment)
            if request.appointment else None
        ),
        offer=OfferResponse.model_validate(request.offer) if request.offer else None,
        next_statuses=[
            s.value for s in state_machine.get_allowed_transitions(request_status(request))
        ],
    )


# ---------------------------------------------------------------------------
# Requester endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/rental-opportunity-requests",
    response_model=OpportunityRequestResponse,
    status_code=201,
)
async def create_opportunity_request(
    body: OpportunityRequestCreate,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    """Record interest in a property. Limited to a few active requests per user."""
    try:
        request = await service.create_request(
            body.property_id,
            user.id,
            desired_move_in_date=body.desired_move_in_date,
            contact_method=body.preferred_contact_method,
            notes=body.notes,
        )
    except PipelineError as e:
        raise _http_error(e)
    return OpportunityRequestResponse.model_validate(request)


@router.get("/rental-opportunity-requests/active-count", response_model=ActiveCountResponse)
async def get_active_count(
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    count = await service.active_count(user.id)
    limit = service.settings.max_active_requests
    return ActiveCountResponse(count=count, limit=limit, can_create=count < limit)


@router.get(
    "/rental-opportunity-requests/by-property/{property_id}",
    response_model=OpportunityRequestResponse | None,
)
async def get_active_request_for_property(
    property_id: str,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    """The caller's active request for a property, or null."""
    request = await service.active_request_for_property(user.id, property_id)
    if request is None:
        return None
    return OpportunityRequestResponse.model_validate(request)


@router.get("/my-rental-opportunities", response_model=list[MyOpportunityResponse])
async def list_my_opportunities(
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    requests = await service.list_my_opportunities(user.id)
    return [_serialize_my_opportunity(r) for r in requests]


@router.post(
    "/rental-opportunity-requests/{request_id}/schedule-visit",
    response_model=AppointmentResponse,
    status_code=201,
)
async def schedule_visit(
    request_id: str,
    body: ScheduleVisitBody,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    """Book an in-person or video visit for a pending request."""
    try:
        appointment = await service.schedule_visit(
            request_id, user.id, body.date, body.type, notes=body.notes
        )
    except PipelineError as e:
        raise _http_error(e)
    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/rental-opportunity-requests/{request_id}/submit-offer",
    response_model=OfferResponse,
    status_code=201,
)
async def submit_offer(
    request_id: str,
    body: SubmitOfferBody,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    try:
        offer = await service.submit_offer(
            request_id, user.id, body.offer_amount, notes=body.notes
        )
    except PipelineError as e:
        raise _http_error(e)
    return OfferResponse.model_validate(offer)


@router.post(
    "/rental-opportunity-requests/{request_id}/cancel",
    response_model=OpportunityRequestResponse,
)
async def cancel_request(
    request_id: str,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    """Withdraw a request that has not reached the offer stage."""
    try:
        request = await service.cancel_request(request_id, user.id)
    except PipelineError as e:
        raise _http_error(e)
    return OpportunityRequestResponse.model_validate(request)


# ---------------------------------------------------------------------------
# Property-side endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/rental-opportunity-requests/{request_id}/complete-visit",
    response_model=OpportunityRequestResponse,
)
async def complete_visit(
    request_id: str,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    try:
        request = await service.complete_visit(request_id, user)
    except PipelineError as e:
        raise _http_error(e)
    return OpportunityRequestResponse.model_validate(request)


@router.get("/owner/interested-clients", response_model=list[InterestedClientResponse])
async def list_interested_clients(
    user: User = Depends(require_role(UserRole.OWNER.value, UserRole.ADMIN.value)),
    service: PipelineService = Depends(get_pipeline_service),
):
    """Clients interested in the caller's properties. Contact fields are never included."""
    clients = await service.interested_clients(user)
    return [InterestedClientResponse(**c) for c in clients]
