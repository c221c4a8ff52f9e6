"""
Lighthouse Slack Reporter — FastAPI preview service

Endpoints:
  POST /report         — Aggregate posted runs and return the Slack blocks
  GET  /health         — Health check
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Literal

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Header
from pydantic import BaseModel

from .aggregator import EmptyInputError, collapse_runs
from .config import ci_run_url
from .models import RunResult, Summary
from .renderer import DEFAULT_TITLE, ReportRenderer
from .summary import build_summary, lowest_score

load_dotenv()

logger = logging.getLogger(__name__)

API_SECRET = os.environ.get("API_SECRET_KEY", "")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not API_SECRET:
        logger.warning("API_SECRET_KEY not set. /report is unauthenticated.")
    yield


app = FastAPI(
    title="Lighthouse Slack Reporter",
    version="1.0.0",
    lifespan=lifespan,
)


class ReportRequest(BaseModel):
    runs: list[RunResult]
    title: str = DEFAULT_TITLE
    layout: Literal["compact", "detailed"] = "compact"


class ReportResponse(BaseModel):
    summary: Summary
    blocks: list[dict]
    lowestScore: float | None


@app.get("/health")
async def health():
    return {"status": "ok", "engine": "lhci-slack-reporter"}


@app.post("/report", response_model=ReportResponse)
async def report(req: ReportRequest, x_api_key: str = Header(default="")):
    if API_SECRET and x_api_key != API_SECRET:
        raise HTTPException(status_code=401, detail="Invalid API key")

    if not req.runs:
        raise HTTPException(status_code=400, detail="At least one run is required")

    try:
        canonical = collapse_runs(req.runs)
    except EmptyInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    summary = build_summary(canonical)
    blocks = ReportRenderer(layout=req.layout, title=req.title).render(
        canonical, summary, run_url=ci_run_url(),
    )
    return ReportResponse(summary=summary, blocks=blocks, lowestScore=lowest_score(canonical))


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("lhci_reporter.main:app", host="0.0.0.0", port=port, reload=True)
