# order_engine/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from order_engine.core.config import get_settings
from order_engine.core.exceptions import OrderServiceError
from order_engine.core.logging_config import configure_logging
from order_engine.core.security import require_auth
from order_engine.database import async_session
from order_engine.routes import anomaly_scan, health, orders
from order_engine.scheduler import AnomalyScanScheduler
from order_engine.services.anomaly_scan import AnomalyScanService
from order_engine.services.notification_service import get_notification_service

configure_logging()
logger = logging.getLogger(__name__)


def build_anomaly_scheduler(settings=None) -> AnomalyScanScheduler:
    settings = settings or get_settings()
    service = AnomalyScanService(async_session, get_notification_service(), settings)
    return AnomalyScanScheduler(service, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scan_scheduler = build_anomaly_scheduler()
    app.state.anomaly_scheduler = scan_scheduler
    scan_scheduler.start()
    try:
        yield  # This is where the app runs
    finally:
        await scan_scheduler.shutdown()


app = FastAPI(
    title="Order Consistency Engine",
    description="Batch ordering with supplier delivery thresholds and order anomaly scanning",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(OrderServiceError)
async def order_error_handler(request: Request, exc: OrderServiceError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.error_code} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


app.include_router(health.router)
app.include_router(orders.router, dependencies=[require_auth()])
app.include_router(anomaly_scan.router, dependencies=[require_auth()])
