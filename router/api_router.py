from fastapi import APIRouter, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from context_manager.context import build_request_context

security = HTTPBearer()

# utils
from utils.jwt_token_handler import JWTHandler, UserDataModel

# routers
from modules.ndr import ndr_router


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> UserDataModel:
    """
    Decode the bearer token into the caller scope. The decoded user is also
    placed in the request context so services and logs can read client_id.
    """
    return JWTHandler.decode_access_token(credentials.credentials)


# create a comming master router for all the routes in the service
CommonRouter = APIRouter(
    prefix="/api/v1",
    dependencies=[Depends(build_request_context), Depends(get_current_user)],
)


# add all the routes to the master router
CommonRouter.include_router(ndr_router)
