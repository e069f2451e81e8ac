import uuid
from contextvars import ContextVar
from fastapi import Request
from logger import logger
from typing import Optional

# defining the context variables to store different types of required data

context_user_data: ContextVar[Optional[object]] = ContextVar("user_data", default=None)
context_request_id: ContextVar[str] = ContextVar("request_id", default="")


# whenever an api is hit, define the context variables for it
async def build_request_context(request: Request):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    context_request_id.set(request_id)
    logger.info(msg="REQUEST_INITIATED {} {} {}".format(request_id, request.method, request.url.path))


# Helper function to safely get user data from context
def get_user_data():
    """
    Safely get user data from context.
    Returns None if context is not set or user data is invalid.
    """
    user_data = context_user_data.get()
    if not user_data or not hasattr(user_data, "client_id"):
        return None
    return user_data


def get_client_id() -> Optional[int]:
    user_data = get_user_data()
    return user_data.client_id if user_data else None
