# backend/app/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    POST / - Attach a pending payment to an appointment (buyer or admin)
    GET /{payment_id} - Payment details
    POST /{payment_id}/complete - Gateway verification succeeded (admin)
    POST /{payment_id}/fail - Gateway verification failed (admin)
    POST /{payment_id}/refund - Direct refund (admin)
    GET /{payment_id}/refund-request - Latest refund request on the payment
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status

from ...api.dependencies import (
    get_current_principal,
    get_payment_service,
    get_refund_request_service,
    require_admin,
)
from ...core.exceptions import DomainException
from ...models.payment import Payment
from ...principal import Actor, ActorRole, UserPrincipal
from ...schemas.payment import PaymentCreate, PaymentFail, PaymentRefund, PaymentResponse
from ...schemas.refund_request import RefundRequestResponse, RefundRequestStatusResponse
from ...services.payment_service import PaymentService
from ...services.refund_request_service import RefundRequestService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _admin_actor(principal: UserPrincipal) -> Actor:
    return Actor(id=principal.id, role=ActorRole.ADMIN)


@router.post(
    "",
    response_model=PaymentResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def attach_payment(
    payload: PaymentCreate,
    principal: UserPrincipal = Depends(get_current_principal),
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    actor = _admin_actor(principal) if principal.is_admin else Actor(id=principal.id, role=ActorRole.BUYER)
    try:
        return await asyncio.to_thread(
            service.attach_payment,
            payload.appointment_id,
            payload.amount,
            payload.currency,
            payload.gateway,
            actor,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{payment_id}", response_model=PaymentResponse, response_model_by_alias=True)
async def get_payment(
    payment_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    try:
        return await asyncio.to_thread(service.get_for_principal, payment_id, principal)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{payment_id}/complete", response_model=PaymentResponse, response_model_by_alias=True)
async def complete_payment(
    payment_id: str,
    admin: UserPrincipal = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    try:
        return await asyncio.to_thread(service.complete_payment, payment_id, _admin_actor(admin))
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{payment_id}/fail", response_model=PaymentResponse, response_model_by_alias=True)
async def fail_payment(
    payment_id: str,
    payload: PaymentFail,
    admin: UserPrincipal = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    try:
        return await asyncio.to_thread(
            service.fail_payment, payment_id, payload.reason, _admin_actor(admin)
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{payment_id}/refund", response_model=PaymentResponse, response_model_by_alias=True)
async def refund_payment(
    payment_id: str,
    payload: PaymentRefund,
    admin: UserPrincipal = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    try:
        return await asyncio.to_thread(
            service.refund,
            payment_id,
            _admin_actor(admin),
            payload.refund_amount,
            payload.reason,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/{payment_id}/refund-request",
    response_model=RefundRequestStatusResponse,
    response_model_by_alias=True,
)
async def get_refund_request_status(
    payment_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> RefundRequestStatusResponse:
    try:
        latest = await asyncio.to_thread(service.get_status_for_payment, payment_id, principal)
    except DomainException as e:
        handle_domain_exception(e)
    return RefundRequestStatusResponse(
        payment_id=payment_id,
        refund_request=RefundRequestResponse.model_validate(latest) if latest is not None else None,
    )
