"""Offer endpoints: listing and property-side negotiation."""

from fastapi import APIRouter, Depends, HTTPException, Query

from rental_pipeline.app.routes.auth import get_current_user_dep
from rental_pipeline.app.routes.opportunities import get_pipeline_service
from rental_pipeline.domain.enums import OfferStatus
from rental_pipeline.domain.models import User
from rental_pipeline.domain.schemas import CounterOfferBody, OfferResponse, RejectOfferBody
from rental_pipeline.services.errors import PipelineError
from rental_pipeline.services.pipeline_service import PipelineService

router = APIRouter(prefix="/api/offers", tags=["offers"])


@router.get("", response_model=list[OfferResponse])
async def list_offers(
    status: OfferStatus | None = Query(None),
    property_id: str | None = Query(None),
    client_id: str | None = Query(None),
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    """Offers the caller may see, optionally filtered."""
    offers = await service.list_offers(
        user, status=status, property_id=property_id, client_id=client_id
    )
    return [OfferResponse.model_validate(o) for o in offers]


@router.post("/{offer_id}/counter", response_model=OfferResponse)
async def counter_offer(
    offer_id: str,
    body: CounterOfferBody,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    try:
        offer = await service.counter_offer(offer_id, user, body.counter_amount, notes=body.notes)
    except PipelineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    return OfferResponse.model_validate(offer)


@router.post("/{offer_id}/accept", response_model=OfferResponse)
async def accept_offer(
    offer_id: str,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    """Accept an offer. Contract creation picks it up from here."""
    try:
        offer = await service.accept_offer(offer_id, user)
    except PipelineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    return OfferResponse.model_validate(offer)


@router.post("/{offer_id}/reject", response_model=OfferResponse)
async def reject_offer(
    offer_id: str,
    body: RejectOfferBody | None = None,
    user: User = Depends(get_current_user_dep),
    service: PipelineService = Depends(get_pipeline_service),
):
    try:
        offer = await service.reject_offer(offer_id, user, notes=body.notes if body else None)
    except PipelineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    return OfferResponse.model_validate(offer)
