import http
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from schema.base import GenericResponseModel

from context_manager.context import context_user_data, context_request_id

from logger import logger


# build a proper api response from the Generic response sent to it
def build_api_response(generic_response: GenericResponseModel) -> JSONResponse:
    try:
        response_json = jsonable_encoder(generic_response)

        # the status code travels in the HTTP status line only
        response_json.pop("status_code", None)

        res = JSONResponse(
            status_code=int(generic_response.status_code), content=response_json
        )
        request_id = context_request_id.get()
        if request_id:
            res.headers["X-Request-ID"] = request_id

        logger.info(
            extra=context_user_data.get(),
            msg="build_api_response: {} responded with status_code: {}".format(
                request_id or "-", generic_response.status_code
            ),
        )
        return res

    except Exception as e:
        logger.error(
            extra=context_user_data.get(),
            msg=f"Exception in build_api_response error : {e}",
        )

        return JSONResponse(
            status_code=http.HTTPStatus.INTERNAL_SERVER_ERROR,
            content={"message": str(e), "status": False, "data": {}},
        )


# 500 envelope for failures nothing upstream converted into a response
def build_error_response(message: str, detail: Any = None) -> JSONResponse:
    return build_api_response(
        GenericResponseModel(
            status_code=http.HTTPStatus.INTERNAL_SERVER_ERROR,
            status=False,
            message=message,
            data=detail if detail is not None else {},
        )
    )
