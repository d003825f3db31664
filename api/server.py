"""FastAPI server exposing job status, job triggers, and processing statistics."""

import json
import os
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from edgar_ingest.config import load_config
from edgar_ingest.logger import setup_logger
from edgar_ingest.models import ACCESSION_PATTERN
from edgar_ingest.pipeline import Pipeline, build_pipeline

load_dotenv()

app = FastAPI(
    title="EDGAR Ingest API",
    version="0.1.0",
    description="Job status, on-demand job runs, and processing statistics for the EDGAR ingestion pipeline.",
)

# --- Rate limiting ---
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return Response(
        content=json.dumps({"error": "Rate limit exceeded. Please slow down."}),
        status_code=429,
        media_type="application/json",
    )


# --- CORS ---
default_origins = "http://localhost:3000,http://127.0.0.1:3000"
cors_origins = os.environ.get("CORS_ORIGINS", default_origins).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_pipeline() -> Pipeline:
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        config_path = os.environ.get("EDGAR_INGEST_CONFIG", "config.yaml")
        if not os.path.exists(config_path):
            raise HTTPException(status_code=503, detail=f"Config not found: {config_path}")
        config = load_config(config_path)
        setup_logger(config.log_dir, config.log_level)
        pipeline = build_pipeline(config)
        app.state.pipeline = pipeline
    return pipeline


@app.on_event("shutdown")
def close_pipeline():
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is not None:
        pipeline.close()
        app.state.pipeline = None


# --- Models ---

class LastRun(BaseModel):
    id: str
    status: str
    files_downloaded: int
    total_files: int
    progress: int
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    name: str
    type: str
    enabled: bool
    schedule: str
    description: str
    running: bool
    processed: int
    total: int
    last_run: Optional[LastRun] = None


class TriggerResponse(BaseModel):
    name: str
    started: bool
    run_id: Optional[str] = None
    detail: str


class RecordResponse(BaseModel):
    accession_number: str
    form_type: str
    entity_id: str
    entity_name: str
    filing_date: Optional[str] = None
    status: str
    source_url: str
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    retry_count: int
    processed_at: Optional[str] = None
    processing_duration_ms: Optional[int] = None


def _job_or_404(pipeline: Pipeline, name: str):
    if name not in pipeline.scheduler.jobs:
        raise HTTPException(status_code=404, detail=f"Unknown job: {name}")
    return pipeline.scheduler.jobs[name]


# --- Routes ---

@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "edgar-ingest-api"}


@app.get("/api/jobs", response_model=List[JobStatusResponse])
@limiter.limit("60/minute")
async def list_jobs(request: Request):
    return get_pipeline().scheduler.statuses()


@app.get("/api/jobs/{name}", response_model=JobStatusResponse)
@limiter.limit("60/minute")
async def get_job(request: Request, name: str):
    pipeline = get_pipeline()
    _job_or_404(pipeline, name)
    return pipeline.scheduler.status(name)


@app.post("/api/jobs/{name}/run", response_model=TriggerResponse)
@limiter.limit("5/minute")
async def run_job(request: Request, name: str):
    """Start a job in the background. A disabled or already running job is not started."""
    pipeline = get_pipeline()
    job = _job_or_404(pipeline, name)
    run = pipeline.scheduler.trigger(name, wait=False)
    if run is None:
        detail = "disabled" if not job.enabled else "already running"
        return TriggerResponse(name=name, started=False, detail=detail)
    return TriggerResponse(name=name, started=True, run_id=run.id, detail="started")


@app.post("/api/jobs/{name}/cancel", response_model=TriggerResponse)
@limiter.limit("10/minute")
async def cancel_job(request: Request, name: str):
    pipeline = get_pipeline()
    _job_or_404(pipeline, name)
    cancelled = pipeline.scheduler.cancel(name)
    return TriggerResponse(name=name, started=False,
                           detail="cancellation requested" if cancelled else "not running")


@app.get("/api/statistics")
@limiter.limit("60/minute")
async def statistics(request: Request):
    pipeline = get_pipeline()
    return {
        "filing_types": pipeline.statistics(),
        "stored_filings": pipeline.db.count_filings(),
        "tickers": pipeline.db.count_tickers(),
    }


@app.get("/api/records/{accession_number}", response_model=RecordResponse)
@limiter.limit("60/minute")
async def get_record(request: Request, accession_number: str):
    if not ACCESSION_PATTERN.match(accession_number):
        raise HTTPException(status_code=400, detail="Invalid accession number format")
    record = get_pipeline().db.get_record(accession_number)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return RecordResponse(
        accession_number=record.accession_number,
        form_type=record.form_type,
        entity_id=record.entity_id,
        entity_name=record.entity_name,
        filing_date=record.filing_date.isoformat() if record.filing_date else None,
        status=record.status.value,
        source_url=record.source_url,
        error_message=record.error_message,
        error_kind=record.error_kind,
        retry_count=record.retry_count,
        processed_at=record.processed_at.isoformat() if record.processed_at else None,
        processing_duration_ms=record.processing_duration_ms,
    )
