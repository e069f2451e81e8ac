import http
from fastapi import APIRouter, Depends, Request

from context_manager.context import context_user_data
from logger import logger

# schema
from schema.base import GenericResponseModel
from modules.ndr.ndr_schema import Ndr_webhook_event

# utils
from utils.response_handler import build_api_response, build_error_response
from limiter import limiter

# service
from modules.ndr.ndr_service import NdrService, get_ndr_service

# creating a courier webhook router
delhivery_router = APIRouter(tags=["delhivery"])


@delhivery_router.post(
    "/webhook/courier/delhivery/ndr-status",
    status_code=http.HTTPStatus.OK,
    response_model=GenericResponseModel,
)
@limiter.limit("600/minute")
def ndr_status_webhook(
    request: Request,
    track_req: Ndr_webhook_event,
    service: NdrService = Depends(get_ndr_service),
):
    """
    Carrier status push. The acknowledgement is only sent once the event is
    committed, so a redelivery after a lost acknowledgement replays safely.
    """
    logger.info(
        extra=context_user_data.get(),
        msg="courier_webhook_hit {} {}".format(track_req.waybill, track_req.status),
    )

    try:
        response: GenericResponseModel = service.ingest_webhook(track_req)
        return build_api_response(response)

    except Exception as e:
        logger.error(
            extra=context_user_data.get(),
            msg="Unhandled error in ndr_status_webhook: {}".format(str(e)),
        )
        return build_error_response("Webhook could not be processed.", str(e))
