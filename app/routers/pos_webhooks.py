"""
Webhook router for POS vendors (Toast, Square, Clover).
Every vendor posts to the same endpoint; the vendor tag picks the normalizer.
"""

import json
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.config import settings
from app.integrations.base import PosEventValidationError
from app.services.event_store import EventStoreError
from app.services.pos_event_service import PosEventService, build_pos_event_service

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks/pos", tags=["pos-webhooks"])

_pos_event_service: Optional[PosEventService] = None


def get_pos_event_service() -> PosEventService:
    """Shared pipeline, built on first use."""
    global _pos_event_service
    if _pos_event_service is None:
        _pos_event_service = build_pos_event_service()
    return _pos_event_service


async def shutdown_pos_event_service():
    global _pos_event_service
    if _pos_event_service is not None:
        await _pos_event_service.close()
        _pos_event_service = None


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    from app.integrations.registry import normalizer_registry

    return {
        "status": "healthy",
        "available_vendors": normalizer_registry.list_available(),
        "supported_events": normalizer_registry.supported_events(),
        "signature_verification": settings.verify_webhook_signatures,
    }


@router.get("/events/unprocessed")
async def list_unprocessed_events(
    restaurant_id: str = Query(..., description="Restaurant to list events for"),
    limit: int = Query(100, ge=1, le=1000),
    service: PosEventService = Depends(get_pos_event_service),
):
    """Stored POS events not yet linked to a reservation (reconciliation backlog)."""
    try:
        events = service.list_unprocessed(restaurant_id, limit=limit)
    except EventStoreError as e:
        logger.error(
            "Failed to list unprocessed POS events",
            restaurant_id=restaurant_id,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )

    return {
        "restaurant_id": restaurant_id,
        "count": len(events),
        "events": [event.model_dump(mode="json") for event in events],
    }


@router.post("/{vendor}")
async def handle_pos_webhook(
    vendor: str,
    request: Request,
    reservation_id: Optional[str] = Query(None),
    service: PosEventService = Depends(get_pos_event_service),
):
    """
    Receive a POS webhook.

    Examples:
        POST /webhooks/pos/toast
        POST /webhooks/pos/square
        POST /webhooks/pos/clover?reservation_id=res_123
    """
    if not service.registry.is_available(vendor):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"POS vendor '{vendor}' not found. Available vendors: {service.registry.list_available()}",
        )

    # Read raw body for signature verification
    body_bytes = await request.body()
    headers = dict(request.headers)

    if settings.verify_webhook_signatures:
        normalizer = service.registry.get_normalizer(vendor)
        if not normalizer.verify_signature(body_bytes, headers, request_url=str(request.url)):
            logger.warning("Invalid POS webhook signature", vendor=vendor)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )

    try:
        payload = json.loads(body_bytes.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid JSON payload: {str(e)}",
        )

    try:
        result = await service.handle_webhook(
            vendor, payload, headers=headers, reservation_id=reservation_id
        )
    except PosEventValidationError as e:
        logger.warning("Rejected POS webhook", vendor=vendor, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except EventStoreError as e:
        # Not acknowledged, so the vendor redelivers
        logger.error("Failed to store POS event", vendor=vendor, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to store POS event: {str(e)}",
        )

    return result.to_response()
