from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from curator.schemas.queue import (
    DuplicateClusterOut,
    ProcessingStatsOut,
    QueueHealthOut,
    QueueStatsOut,
    SimilarEntryOut,
)
from curator.services.providers import get_duplicate_detector, get_queue_manager
from curator.services.repository import RepositoryNotFoundError, RepositoryUnavailableError, get_repository

router = APIRouter()


@router.get("/stats", response_model=QueueStatsOut)
async def queue_stats(queue_manager=Depends(get_queue_manager)) -> QueueStatsOut:
    try:
        stats = await queue_manager.get_stats()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return QueueStatsOut(**asdict(stats))


@router.get("/health", response_model=QueueHealthOut)
async def queue_health(queue_manager=Depends(get_queue_manager)) -> QueueHealthOut:
    try:
        health = await queue_manager.health_check()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return QueueHealthOut(healthy=health.healthy, issues=health.issues)


@router.get("/duplicates", response_model=list[DuplicateClusterOut])
async def duplicate_clusters(
    limit: int = Query(default=50, ge=1, le=500),
    detector=Depends(get_duplicate_detector),
) -> list[DuplicateClusterOut]:
    try:
        clusters = await detector.duplicate_clusters(limit)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [DuplicateClusterOut(**asdict(cluster)) for cluster in clusters]


@router.get("/duplicates/{entry_id}/similar", response_model=list[SimilarEntryOut])
async def similar_entries(
    entry_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    detector=Depends(get_duplicate_detector),
) -> list[SimilarEntryOut]:
    try:
        matches = await detector.similar_entries(entry_id, limit)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [SimilarEntryOut(**asdict(match)) for match in matches]


@router.get("/processing", response_model=ProcessingStatsOut)
async def processing_stats(repository=Depends(get_repository)) -> ProcessingStatsOut:
    try:
        stats = await repository.processing_stats()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return ProcessingStatsOut(**stats)
