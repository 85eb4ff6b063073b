from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from src.config import integration_config_status, settings
from src.observability import log_event
from src.routers import (
    internal_observability,
    webhooks,
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    log_event("integration_config_checked", integrations=integration_config_status(settings))
    yield


app = FastAPI(title="Cave Club Messaging Events", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid4())
    )
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

app.include_router(webhooks.router)
app.include_router(internal_observability.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "cave-club-messaging-events"}


@app.get("/health")
async def health():
    return {"status": "healthy", "integrations": integration_config_status(settings)}
