from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status as http_status

from curator.core.sources import known_sources
from curator.schemas.queue import ScanRecommendationOut
from curator.schemas.scans import DailyScanSummaryOut, ForceScanRequest, ForecastDayOut, ScanResultOut
from curator.services.classifier import ClassifierError
from curator.services.orchestrator import ScanOrchestrator
from curator.services.providers import get_queue_manager, get_scan_orchestrator
from curator.services.repository import RepositoryUnavailableError

router = APIRouter()


def require_scan_orchestrator() -> ScanOrchestrator:
    try:
        return get_scan_orchestrator()
    except ClassifierError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/recommendations", response_model=list[ScanRecommendationOut])
async def scan_recommendations(queue_manager=Depends(get_queue_manager)) -> list[ScanRecommendationOut]:
    try:
        recommendations = await queue_manager.get_recommendations()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [ScanRecommendationOut(**asdict(item)) for item in recommendations]


@router.post("/daily", response_model=DailyScanSummaryOut)
async def run_daily_scan(orchestrator=Depends(require_scan_orchestrator)) -> DailyScanSummaryOut:
    try:
        summary = await orchestrator.run_daily_scan()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return DailyScanSummaryOut(**asdict(summary))


@router.post("/force", response_model=list[ScanResultOut])
async def force_scan(
    payload: ForceScanRequest,
    orchestrator=Depends(require_scan_orchestrator),
) -> list[ScanResultOut]:
    unknown = sorted({source for source in payload.sources if source not in known_sources()})
    if unknown:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"unknown sources: {', '.join(unknown)}",
        )
    try:
        results = await orchestrator.force_scan(payload.sources, payload.reason)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [ScanResultOut(**asdict(result)) for result in results]


@router.get("/forecast", response_model=list[ForecastDayOut])
async def weekly_forecast(queue_manager=Depends(get_queue_manager)) -> list[ForecastDayOut]:
    try:
        forecast = await queue_manager.weekly_forecast(datetime.now(timezone.utc).date())
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [ForecastDayOut(**asdict(day)) for day in forecast]
