"""
Admin router - cache maintenance.

Routes:
  POST /api/v1/cache/invalidate?tag=institutions  -> drop one tag
  POST /api/v1/cache/invalidate                   -> drop everything
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from webapp.dependencies import get_cache

log = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cache", tags=["admin"])


@router.post("/invalidate")
def api_invalidate_cache(tag: str = Query(default=""), cache=Depends(get_cache)):
    """Clear cached query results (all, or one tag)."""
    try:
        if tag:
            removed = cache.invalidate_tag(tag)
            return JSONResponse({"status": "ok", "tag": tag, "removed": removed})
        cache.clear()
        log.info("Query cache cleared")
        return JSONResponse({"status": "ok", "tag": None})
    except Exception as e:
        log.error("Cache invalidation failed: %s", e)
        return JSONResponse({"error": str(e)}, status_code=500)
