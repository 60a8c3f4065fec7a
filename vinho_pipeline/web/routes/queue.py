"""Queue routes: enqueue scans and observe queue state."""

from uuid import UUID

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vinho_pipeline.core.errors import ValidationError
from vinho_pipeline.db.engine import get_session
from vinho_pipeline.db.repositories import QueueRepository
from vinho_pipeline.ingestion.processor import enqueue_scan
from vinho_pipeline.queue.stats import queue_stats

router = APIRouter(prefix="/queue", tags=["queue"])


class ScanRequest(BaseModel):
    """Body of a scan upload."""

    user_id: str
    image_url: str
    ocr_text: str | None = None
    scan_id: str | None = None


def _scan_payload(item) -> dict:
    return {
        "id": str(item.id),
        "status": item.status.value,
        "retry_count": item.retry_count,
        "image_url": item.image_url,
        "scan_id": item.scan_id,
        "processed_data": (
            item.processed_data.model_dump(mode="json") if item.processed_data else None
        ),
        "error_message": item.error_message,
        "created_at": item.created_at.isoformat(),
        "processed_at": item.processed_at.isoformat() if item.processed_at else None,
    }


@router.post("/scans")
async def api_enqueue_scan(request: ScanRequest) -> JSONResponse:
    """
    Queue a label photo.

    Returns 201 with the new row, or 200 with the row already in flight
    for the same user, image and OCR text.
    """
    with get_session() as session:
        try:
            item, created = enqueue_scan(
                session,
                user_id=request.user_id,
                image_url=request.image_url,
                ocr_text=request.ocr_text,
                scan_id=request.scan_id,
            )
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))

    return JSONResponse(
        {"scan": _scan_payload(item), "created": created},
        status_code=201 if created else 200,
    )


@router.get("/scans/{scan_id}")
async def api_get_scan(scan_id: UUID) -> JSONResponse:
    """Get a scan's status, retry count, result and last error."""
    with get_session() as session:
        item = QueueRepository(session).get_by_id(scan_id)

    if item is None:
        raise HTTPException(status_code=404, detail="Scan not found")

    return JSONResponse({"scan": _scan_payload(item)})


@router.get("/stats")
async def api_queue_stats() -> JSONResponse:
    """Row counts per status for every queue."""
    with get_session() as session:
        counts = queue_stats(session)

    return JSONResponse({"queues": counts})
