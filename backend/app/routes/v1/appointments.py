# backend/app/routes/v1/appointments.py
"""
Appointment routes - API v1

Versioned appointment endpoints under /api/v1/appointments.
All business logic delegated to AppointmentService.

Endpoints:
    GET /can-book - Would a new booking for this buyer/listing be allowed?
    POST / - Buyer books a viewing
    POST /admin - Administrator books on behalf of a buyer
    GET / - List appointments (buyer view, seller view, or all for admins)
    GET /{appointment_id} - Appointment details
    PATCH /{appointment_id}/status - Apply a status transition
    POST /{appointment_id}/reinitiate - Bring a buyer-cancelled appointment back
"""

import asyncio
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...api.dependencies import get_appointment_service, get_current_principal, require_admin
from ...core.exceptions import DomainException
from ...models.appointment import Appointment
from ...principal import Actor, ActorRole, UserPrincipal
from ...schemas.appointment import (
    AdminAppointmentCreate,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentReinitiate,
    AppointmentResponse,
    AppointmentStatusUpdate,
    CanBookResponse,
)
from ...services.appointment_service import AppointmentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["appointments-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _to_response(service: AppointmentService, appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse.from_appointment(appointment, service.is_outdated(appointment))


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.get("/can-book", response_model=CanBookResponse, response_model_by_alias=True)
async def can_book(
    listing_id: str = Query(..., alias="listingId", min_length=1),
    buyer_id: Optional[str] = Query(None, alias="buyerId"),
    principal: UserPrincipal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> CanBookResponse:
    """Admins may ask on behalf of any buyer; everyone else asks for themselves."""
    target_buyer = buyer_id if (buyer_id and principal.is_admin) else principal.id
    try:
        decision = await asyncio.to_thread(service.can_book, target_buyer, listing_id)
    except DomainException as e:
        handle_domain_exception(e)

    blocking = decision.blocking_appointment
    return CanBookResponse(
        allowed=decision.allowed,
        blocking_appointment=_to_response(service, blocking) if blocking is not None else None,
    )


@router.post(
    "",
    response_model=AppointmentResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment(
    payload: AppointmentCreate,
    principal: UserPrincipal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(
            service.create_appointment,
            principal.id,
            payload.listing_id,
            payload.date,
            payload.time,
            payload.purpose,
            payload.notes,
        )
        return _to_response(service, appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/admin",
    response_model=AppointmentResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment_for_buyer(
    payload: AdminAppointmentCreate,
    admin: UserPrincipal = Depends(require_admin),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(
            service.create_appointment_for_buyer,
            Actor(id=admin.id, role=ActorRole.ADMIN),
            payload.buyer_id,
            payload.listing_id,
            payload.date,
            payload.time,
            payload.purpose,
            payload.notes,
        )
        return _to_response(service, appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=AppointmentListResponse, response_model_by_alias=True)
async def list_appointments(
    role: Optional[str] = Query(None, pattern="^(buyer|seller)$"),
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    principal: UserPrincipal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentListResponse:
    try:
        appointments = await asyncio.to_thread(
            service.list_appointments,
            principal,
            role=ActorRole(role) if role else None,
            statuses=status_filter,
            skip=skip,
            limit=limit,
        )
    except DomainException as e:
        handle_domain_exception(e)

    return AppointmentListResponse(
        items=[_to_response(service, appointment) for appointment in appointments],
        skip=skip,
        limit=limit,
    )


# ============================================================================
# SECTION 2: Routes with an appointment id
# ============================================================================


@router.get("/{appointment_id}", response_model=AppointmentResponse, response_model_by_alias=True)
async def get_appointment(
    appointment_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(service.get_for_principal, appointment_id, principal)
        return _to_response(service, appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    response_model_by_alias=True,
)
async def update_appointment_status(
    appointment_id: str,
    payload: AppointmentStatusUpdate,
    principal: UserPrincipal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    """
    Apply a lifecycle transition.

    The caller acts as buyer or seller when they are a party to the
    appointment; ``asRole`` selects the role explicitly (e.g. an admin who is
    also the seller).
    """

    def _transition() -> Appointment:
        appointment = service.get_appointment(appointment_id)
        requested = ActorRole(payload.as_role) if payload.as_role else None
        actor = service.actor_for(appointment, principal, requested)
        return service.transition_appointment(appointment_id, actor, payload.status, payload.reason)

    try:
        appointment = await asyncio.to_thread(_transition)
        return _to_response(service, appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{appointment_id}/reinitiate",
    response_model=AppointmentResponse,
    response_model_by_alias=True,
)
async def reinitiate_appointment(
    appointment_id: str,
    payload: AppointmentReinitiate,
    principal: UserPrincipal = Depends(get_current_principal),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    def _reinitiate() -> Appointment:
        appointment = service.get_appointment(appointment_id)
        requested = ActorRole.BUYER if principal.id == appointment.buyer_id else None
        actor = service.actor_for(appointment, principal, requested)
        return service.reinitiate_appointment(appointment_id, actor, payload.date, payload.time)

    try:
        appointment = await asyncio.to_thread(_reinitiate)
        return _to_response(service, appointment)
    except DomainException as e:
        handle_domain_exception(e)
