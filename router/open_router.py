from fastapi import APIRouter, Depends

from context_manager.context import build_request_context

# routers
from shipping_partner.delhivery.delhivery_controller import delhivery_router


# routes that authenticate on their own terms (carrier webhooks)
OpenRouter = APIRouter(prefix="/api/v1", dependencies=[Depends(build_request_context)])


# add all the routes to the master router
OpenRouter.include_router(delhivery_router)
