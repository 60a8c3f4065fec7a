"""Wine routes: visual recommendations."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from vinho_pipeline.db.engine import get_session
from vinho_pipeline.db.repositories_catalog import WineRepository
from vinho_pipeline.web.dependencies import get_matcher

router = APIRouter(prefix="/wines", tags=["wines"])


@router.get("/{wine_id}/similar")
async def api_similar_wines(
    wine_id: UUID,
    limit: int = Query(5, ge=1, le=20),
    threshold: float | None = Query(None, ge=0.0, le=1.0),
) -> JSONResponse:
    """
    Wines whose labels look like this wine's label.

    ``threshold`` can raise the similarity floor but never lowers it below
    the configured recommendation minimum. When the visual index is
    unavailable the list is empty and ``available`` is false.
    """
    with get_session() as session:
        if WineRepository(session).get_by_id(wine_id) is None:
            raise HTTPException(status_code=404, detail="Wine not found")

        matcher = get_matcher(session)
        if not matcher.visual_available:
            return JSONResponse({"wine_id": str(wine_id), "available": False, "results": []})

        results = matcher.similar_to_wine(str(wine_id), limit=limit, min_similarity=threshold)

    return JSONResponse({
        "wine_id": str(wine_id),
        "available": True,
        "results": [r.model_dump(mode="json") for r in results],
    })
