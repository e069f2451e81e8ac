import http
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from context_manager.context import context_user_data
from logger import logger

# schema
from schema.base import GenericResponseModel

# modules
from modules.ndr.ndr_schema import (
    Bulk_Ndr_action_request,
    Ndr_action_request,
    Ndr_attempt_create,
    Ndr_communication_create,
    Ndr_customer_response_update,
    Ndr_filters,
    Ndr_note_create,
    Ndr_reopen_request,
    Ndr_rto_request,
    Ndr_status_update,
)

# utils
from utils.jwt_token_handler import UserDataModel
from utils.response_handler import build_api_response, build_error_response
from limiter import limiter

# services
from .ndr_service import NdrService, get_ndr_service


# Creating the router for ndr
ndr_router = APIRouter(prefix="/ndr", tags=["ndr"])


async def current_client_id() -> int:
    user_data: UserDataModel = context_user_data.get()
    return user_data.client_id


def _handle(operation: str, call):
    try:
        response: GenericResponseModel = call()
        return build_api_response(response)

    except Exception as e:
        logger.error(
            extra=context_user_data.get(),
            msg="Unhandled error in {}: {}".format(operation, str(e)),
        )
        return build_error_response(
            "An error occurred while processing the NDR request.", str(e)
        )


# ============================================
# QUERIES
# ============================================


@ndr_router.get(
    "/",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def get_all_ndr(
    status: Optional[List[str]] = Query(default=None),
    reason_code: Optional[str] = None,
    attempts_min: Optional[int] = Query(default=None, ge=0),
    attempts_max: Optional[int] = Query(default=None, ge=0),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    ndr_filters = Ndr_filters(
        status=status,
        reason_code=reason_code,
        attempts_min=attempts_min,
        attempts_max=attempts_max,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        limit=limit,
    )
    return _handle("get_all_ndr", lambda: service.list_ndrs(ndr_filters, client_id))


@ndr_router.get(
    "/statistics/overview",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def get_ndr_overview(
    period: int = Query(default=30, ge=1, le=365),
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle("get_ndr_overview", lambda: service.overview(period, client_id))


@ndr_router.get(
    "/statistics/counts",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def get_ndr_counts(
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle("get_ndr_counts", lambda: service.counts(client_id))


@ndr_router.get(
    "/escalations",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def get_escalation_candidates(
    threshold_days: int = Query(default=7, ge=0),
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle(
        "get_escalation_candidates",
        lambda: service.escalations(threshold_days, client_id),
    )


@ndr_router.get(
    "/status/{correlation_id}",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def get_ndr_action_status(
    correlation_id: str,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle(
        "get_ndr_action_status",
        lambda: service.poll_status(correlation_id, client_id),
    )


# ============================================
# CARRIER ACTIONS
# ============================================


@ndr_router.post(
    "/action",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def take_ndr_action(
    ndr_action: Ndr_action_request,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle("take_ndr_action", lambda: service.take_action(ndr_action, client_id))


@ndr_router.post(
    "/bulk-action",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
@limiter.limit("10/minute")
def bulk_ndr_action(
    request: Request,
    bulk_action: Bulk_Ndr_action_request,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle("bulk_ndr_action", lambda: service.bulk_action(bulk_action, client_id))


@ndr_router.post(
    "/attempts",
    status_code=http.HTTPStatus.CREATED,
    response_model=GenericResponseModel,
)
def record_delivery_attempt(
    attempt: Ndr_attempt_create,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle("record_delivery_attempt", lambda: service.record_attempt(attempt, client_id))


# ============================================
# SINGLE NDR
# ============================================


@ndr_router.get(
    "/{identifier}",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def get_ndr(
    identifier: str,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle("get_ndr", lambda: service.get_ndr(identifier, client_id))


@ndr_router.patch(
    "/{identifier}/status",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def update_ndr_status(
    identifier: str,
    status_update: Ndr_status_update,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle(
        "update_ndr_status",
        lambda: service.update_status(identifier, status_update, client_id),
    )


@ndr_router.post(
    "/{identifier}/communications",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def record_communication(
    identifier: str,
    communication: Ndr_communication_create,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle(
        "record_communication",
        lambda: service.record_communication(identifier, communication, client_id),
    )


@ndr_router.post(
    "/{identifier}/rto",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def initiate_rto(
    identifier: str,
    rto_request: Ndr_rto_request,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle(
        "initiate_rto", lambda: service.initiate_rto(identifier, rto_request, client_id)
    )


@ndr_router.patch(
    "/{identifier}/customer-response",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def update_customer_response(
    identifier: str,
    customer_response: Ndr_customer_response_update,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle(
        "update_customer_response",
        lambda: service.update_customer_response(identifier, customer_response, client_id),
    )


@ndr_router.post(
    "/{identifier}/reopen",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def reopen_ndr(
    identifier: str,
    reopen_request: Ndr_reopen_request,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle("reopen_ndr", lambda: service.reopen(identifier, reopen_request, client_id))


@ndr_router.post(
    "/{identifier}/notes",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
def add_ndr_note(
    identifier: str,
    note: Ndr_note_create,
    client_id: int = Depends(current_client_id),
    service: NdrService = Depends(get_ndr_service),
):
    return _handle("add_ndr_note", lambda: service.add_note(identifier, note, client_id))
