# dropline/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from dropline.core.config import settings
from dropline.core.errors import CoordinatorError
from dropline.core.logging import configure_logging
from dropline.deps import build_services
from dropline.middleware.request_log import RequestLogMiddleware
from dropline.routers import admin, customer, live, orders, partner

logger = structlog.get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    store, bus, live_status, coordinator = build_services(settings)
    await store.ensure_indexes()

    app.state.store = store
    app.state.bus = bus
    app.state.live = live_status
    app.state.coordinator = coordinator
    logger.info("Dropline started", store=store.name)

    yield

    await bus.close()
    if settings.use_mongo:
        from dropline.db import get_client
        get_client().close()
        get_client.cache_clear()
    logger.info("Dropline stopped")


app = FastAPI(lifespan=lifespan, title="Dropline API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLogMiddleware)

@app.exception_handler(CoordinatorError)
async def coordinator_error_handler(request: Request, exc: CoordinatorError):
    return JSONResponse(jsonable_encoder(exc.to_dict()), status_code=exc.status_code)

# ---------------- Include routers ----------------
app.include_router(orders.router)      # /orders
app.include_router(customer.router)    # /customer
app.include_router(partner.router)     # /partner
app.include_router(admin.router)       # /admin
app.include_router(live.router)        # /ws

# Health
@app.get("/health")
def health(request: Request):
    return {"ok": True, "store": request.app.state.store.name}
