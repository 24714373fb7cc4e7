"""
Dashboard router - institution statistics cards and chart data.

Routes:
  GET /institutions/dashboard   -> statistics page
  GET /api/v1/dashboard         -> same payload as JSON
"""
from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from webapp.config import TEMPLATES_DIR
from webapp.dependencies import get_cache, get_db
from webapp.services.statistics import get_dashboard

log = logging.getLogger(__name__)
router = APIRouter(tags=["dashboard"])
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

MARKET_SHARE_TITLES = {
    "assets": "Asset Concentration",
    "deposits": "Deposit Concentration",
    "equity": "Equity Concentration",
    "net_income": "Net Income Concentration",
}


@router.get("/institutions/dashboard")
def dashboard_page(request: Request, db: Session = Depends(get_db), cache=Depends(get_cache)):
    """Headline statistics, distributions and market-share cards."""
    data = get_dashboard(db, cache)
    return templates.TemplateResponse(request, "dashboard.html", {
        "data": data,
        "market_share_titles": MARKET_SHARE_TITLES,
        "update_date": date.today().strftime("%m/%d/%Y"),
    })


@router.get("/api/v1/dashboard")
def api_dashboard(db: Session = Depends(get_db), cache=Depends(get_cache)):
    return JSONResponse(jsonable_encoder(get_dashboard(db, cache)))
