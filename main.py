import uvicorn
import asyncio
import json
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from logger import logger
from pydantic import ValidationError
from utils.exception_handler import (
    NdrError,
    handle_validation_error,
    custom_http_exception_handler,
    ndr_exception_handler,
)

from router import CommonRouter, DefaultRouter, StatusRouter, OpenRouter
from limiter import limiter, rate_limit_handler

from database.db import init_models  # sync DB init

app = FastAPI(title="NDR Service")

# Routers
app.include_router(CommonRouter)
app.include_router(StatusRouter)
app.include_router(DefaultRouter)
app.include_router(OpenRouter)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# Exception handlers
app.add_exception_handler(ValidationError, handle_validation_error)
app.add_exception_handler(HTTPException, custom_http_exception_handler)
app.add_exception_handler(NdrError, ndr_exception_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------
# Startup event
# -------------------------------
@app.on_event("startup")
async def startup_event():
    loop = asyncio.get_running_loop()
    # Initialize DB safely in executor
    await loop.run_in_executor(None, init_models)
    logger.info(msg="NDR service started")


# -------------------------------
# Validation error handler
# -------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    raw = (await request.body()).decode("utf-8", "ignore")
    logger.error(msg="422 on {}\nBody: {}\nErrors: {}".format(request.url, raw, exc.errors()))
    try:
        parsed = json.loads(raw) if raw else None
    except json.JSONDecodeError:
        parsed = raw
    return JSONResponse(
        status_code=422,
        content={
            "message": "Validation error occurred.",
            "status": False,
            "data": {"detail": jsonable_encoder(exc.errors()), "body": parsed},
        },
    )


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
