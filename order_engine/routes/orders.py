"""Batch order routes - placement and delivery threshold dry-run."""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from order_engine.core.exceptions import DeliveryThresholdError
from order_engine.core.security import get_current_username
from order_engine.dependencies import get_batch_order_service, get_notifier
from order_engine.schemas.notifications import ShortSupplier, ThresholdShortfallAlert
from order_engine.schemas.order import (
    BatchOrderRequest,
    BatchOrderResponse,
    DeliveryCheckRequest,
    DeliveryCheckResponse,
)
from order_engine.services.batch_order_service import BatchOrderService
from order_engine.services.notification_service import NotificationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["orders"])


def _shortfall_alert(error: DeliveryThresholdError, request: BatchOrderRequest, actor: str) -> ThresholdShortfallAlert:
    return ThresholdShortfallAlert(
        store_id=request.store_id,
        actor=actor,
        failed_suppliers=[
            ShortSupplier(
                supplier=group.supplier,
                subtotal=group.subtotal,
                threshold=group.threshold,
                shortfall=group.shortfall,
            )
            for group in error.report.failed
        ],
        passed_count=len(error.report.passed),
    )


@router.post("/batch", response_model=BatchOrderResponse)
async def place_batch_order(
    request: BatchOrderRequest,
    background_tasks: BackgroundTasks,
    current_user: str = Depends(get_current_username),
    service: BatchOrderService = Depends(get_batch_order_service),
    notifier: NotificationService = Depends(get_notifier),
):
    """Place a batch order; all lines commit together or not at all."""
    try:
        result = await service.place_batch_order(request, actor=current_user)
    except DeliveryThresholdError as e:
        logger.info(f"Batch by {current_user} rejected: {e.message}")
        background_tasks.add_task(notifier.dispatch_quietly, _shortfall_alert(e, request, current_user))
        # Background tasks only run with the endpoint's own response
        return JSONResponse(
            status_code=e.status_code,
            content=jsonable_encoder(e.to_dict()),
            background=background_tasks,
        )
    return result.as_dict()


@router.post("/check-delivery", response_model=DeliveryCheckResponse)
async def check_delivery(
    request: DeliveryCheckRequest,
    current_user: str = Depends(get_current_username),
    service: BatchOrderService = Depends(get_batch_order_service),
):
    """Classify every supplier group against its delivery threshold without writing."""
    report = await service.check_delivery(BatchOrderRequest(items=request.items))
    return {
        "success": True,
        "total_suppliers": len(report.groups),
        "can_deliver_count": len(report.passed),
        "cannot_deliver_count": len(report.failed),
        "suppliers": [group.as_dict() for group in report.groups],
    }
