# backend/app/routes/v1/refund_requests.py
"""
Refund request routes - API v1

Endpoints:
    POST / - Buyer or seller opens a refund request
    GET / - List refund requests (admin, paged, optional status filter)
    GET /{request_id} - Refund request details
    GET /{request_id}/history - Audit trail of the request
    PUT /{request_id} - Approve or reject (admin)
    POST /{request_id}/process - Retry the refund of an approved request (admin)
    POST /{request_id}/appeal - Requester appeals a rejection
    PUT /{request_id}/reopen - Reopen a rejected request (admin)
"""

import asyncio
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...api.dependencies import get_current_principal, get_refund_request_service, require_admin
from ...core.exceptions import DomainException
from ...models.refund_request import RefundRequest
from ...principal import Actor, ActorRole, UserPrincipal
from ...schemas.refund_request import (
    AuditEntryResponse,
    RefundRequestAppeal,
    RefundRequestCreate,
    RefundRequestDecision,
    RefundRequestListResponse,
    RefundRequestReopen,
    RefundRequestResponse,
)
from ...services.refund_request_service import RefundRequestService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["refund-requests-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _admin_actor(principal: UserPrincipal) -> Actor:
    return Actor(id=principal.id, role=ActorRole.ADMIN)


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post(
    "",
    response_model=RefundRequestResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_refund_request(
    payload: RefundRequestCreate,
    principal: UserPrincipal = Depends(get_current_principal),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> RefundRequest:
    try:
        return await asyncio.to_thread(
            service.create_refund_request,
            payload.payment_id,
            principal.id,
            payload.type,
            payload.requested_amount,
            payload.reason,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=RefundRequestListResponse, response_model_by_alias=True)
async def list_refund_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100, alias="perPage"),
    admin: UserPrincipal = Depends(require_admin),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> RefundRequestListResponse:
    try:
        items, total = await asyncio.to_thread(
            service.list_refund_requests, admin, status_filter, page, per_page
        )
    except DomainException as e:
        handle_domain_exception(e)
    return RefundRequestListResponse(
        items=[RefundRequestResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        per_page=per_page,
        has_next=page * per_page < total,
    )


# ============================================================================
# SECTION 2: Routes with a request id
# ============================================================================


@router.get("/{request_id}", response_model=RefundRequestResponse, response_model_by_alias=True)
async def get_refund_request(
    request_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> RefundRequest:
    try:
        return await asyncio.to_thread(service.get_for_principal, request_id, principal)
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/{request_id}/history",
    response_model=List[AuditEntryResponse],
    response_model_by_alias=True,
)
async def get_refund_request_history(
    request_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> List[AuditEntryResponse]:
    try:
        entries = await asyncio.to_thread(service.get_history, request_id, principal)
    except DomainException as e:
        handle_domain_exception(e)
    return [AuditEntryResponse.model_validate(entry) for entry in entries]


@router.put("/{request_id}", response_model=RefundRequestResponse, response_model_by_alias=True)
async def decide_refund_request(
    request_id: str,
    payload: RefundRequestDecision,
    admin: UserPrincipal = Depends(require_admin),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> RefundRequest:
    try:
        return await asyncio.to_thread(
            service.decide_refund_request,
            request_id,
            _admin_actor(admin),
            payload.status,
            payload.admin_notes,
            payload.admin_refund_amount,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{request_id}/process",
    response_model=RefundRequestResponse,
    response_model_by_alias=True,
)
async def process_refund_request(
    request_id: str,
    admin: UserPrincipal = Depends(require_admin),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> RefundRequest:
    try:
        return await asyncio.to_thread(service.process_refund_request, request_id, _admin_actor(admin))
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{request_id}/appeal",
    response_model=RefundRequestResponse,
    response_model_by_alias=True,
)
async def appeal_refund_request(
    request_id: str,
    payload: RefundRequestAppeal,
    principal: UserPrincipal = Depends(get_current_principal),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> RefundRequest:
    try:
        return await asyncio.to_thread(
            service.appeal_refund_request,
            request_id,
            principal.id,
            payload.appeal_reason,
            payload.appeal_text,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.put(
    "/{request_id}/reopen",
    response_model=RefundRequestResponse,
    response_model_by_alias=True,
)
async def reopen_refund_request(
    request_id: str,
    payload: RefundRequestReopen,
    admin: UserPrincipal = Depends(require_admin),
    service: RefundRequestService = Depends(get_refund_request_service),
) -> RefundRequest:
    try:
        return await asyncio.to_thread(
            service.reopen_refund_request,
            request_id,
            _admin_actor(admin),
            payload.reopen_reason,
        )
    except DomainException as e:
        handle_domain_exception(e)
