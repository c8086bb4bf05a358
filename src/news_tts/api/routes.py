"""
Batch API Routes.

Endpoints:
    POST /v1/batch                        - Voice a batch of items
    GET  /v1/merges                       - Tracked merge jobs
    GET  /v1/merges/{correlation_id}      - Merge job status
    GET  /v1/merges/{correlation_id}/audio - Merged audio once succeeded
    GET  /health                          - Health check
    GET  /metrics                         - Prometheus metrics

POST /v1/batch responses:
    204  empty batch (nothing requested produced audio)
    200  single item: audio bytes, X-Correlation-Id: single_<uuid>
    202  several items: {"ok": true, "kind": "merge", "correlation_id": "merge_<uuid>", ...}
         the merge continues in the background; poll /v1/merges/{id}

Error Handling:
    All errors are returned as JSON:
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<human readable message>",
        "details": {...}
    }

    HTTP status codes come from core.errors.HTTP_STATUS, e.g.:
        - CONFIGURATION_MISSING -> 400
        - PROVIDER_PERMANENT -> 502
        - CIRCUIT_OPEN -> 503
        - RATE_LIMITED -> 429
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from fastapi.responses import FileResponse, JSONResponse

from news_tts.api.dependencies import get_batch_orchestrator
from news_tts.api.schemas import BatchAccepted, BatchRequest, MergeStatusResponse
from news_tts.core.errors import HTTP_STATUS, ErrorCode, NewsTTSError
from news_tts.core.logging import error, get_logger, get_correlation_id
from news_tts.services.batch_service import BatchOrchestrator
from news_tts.services.merge_jobs import JobState
from news_tts.tts.formats import get_format
from news_tts.tts.worker import ContentItem

router = APIRouter()

_LOG = get_logger("news-tts.api")


def _error_response(err: NewsTTSError, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=err.to_dict())


def _not_found(correlation_id: str) -> JSONResponse:
    return _error_response(
        NewsTTSError(f"unknown merge job {correlation_id}", code=ErrorCode.INVALID_INPUT,
                     details={"correlation_id": correlation_id}),
        404,
    )


def _split_items(req: BatchRequest, default_language: str):
    saved = set(req.saved_ids)
    wanted = set(req.needed_ids) if req.needed_ids is not None else None
    needed = []
    for item in req.items:
        if wanted is not None:
            if item.id not in wanted:
                continue
        elif item.id in saved:
            continue
        if not item.text.strip():
            raise NewsTTSError(f"item {item.id} has no text to synthesize",
                               code=ErrorCode.INVALID_INPUT, details={"item_id": item.id})
        needed.append(ContentItem(id=item.id, text=item.text, language=item.language or default_language))
    return needed, list(req.saved_ids)


@router.post("/v1/batch")
async def batch_v1(
    req: BatchRequest,
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
):
    """
    Voice a batch of news items.

    Example:
        curl -X POST http://localhost:8000/v1/batch \\
            -H "Content-Type: application/json" \\
            -d '{"items": [{"id": "1", "text": "Merhaba!"}]}' \\
            --output speech.mp3
    """
    try:
        needed, saved = _split_items(req, req.language or "tr")
        result = await orchestrator.process_batch(
            [item.id for item in req.items],
            needed,
            saved,
            language=req.language,
            fmt=req.format,
        )
    except NewsTTSError as e:
        return _error_response(e, HTTP_STATUS.get(e.code, 500))
    except Exception as e:
        error(_LOG, "batch_unhandled", exc_info=e, error=f"{type(e).__name__}: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "ok": False,
                "error": ErrorCode.INTERNAL_ERROR,
                "message": "Internal server error",
                "batch_id": get_correlation_id(),
            },
        )

    headers = {"X-Batch-Id": get_correlation_id()}
    if result.kind == "empty":
        return Response(status_code=204, headers=headers)
    if result.kind == "single":
        headers.update({
            "X-Correlation-Id": result.correlation_id,
            "X-Item-Id": result.item_id,
            "X-Bytes": str(result.buffer.size),
        })
        return Response(content=result.buffer.data, media_type=result.buffer.content_type, headers=headers)

    body = BatchAccepted(correlation_id=result.correlation_id, item_ids=result.item_ids)
    return JSONResponse(status_code=202, content=body.model_dump(), headers=headers)


@router.get("/v1/merges")
async def merge_list(orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator)):
    """Tracked merge jobs, oldest first."""
    jobs = [MergeStatusResponse(**status.to_dict()).model_dump() for status in orchestrator.supervisor.list_jobs()]
    return {"ok": True, "jobs": jobs}


@router.get("/v1/merges/{correlation_id}")
async def merge_status(
    correlation_id: str,
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
):
    status = orchestrator.supervisor.status(correlation_id)
    if status is None:
        return _not_found(correlation_id)
    return MergeStatusResponse(**status.to_dict()).model_dump()


@router.get("/v1/merges/{correlation_id}/audio")
async def merge_audio(
    correlation_id: str,
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
):
    status = orchestrator.supervisor.status(correlation_id)
    if status is None:
        return _not_found(correlation_id)
    path = orchestrator.supervisor.result(correlation_id)
    if path is None:
        code = ErrorCode.MERGE_FAILED if status.state is JobState.FAILED else ErrorCode.INVALID_INPUT
        return _error_response(
            NewsTTSError(f"merge job is {status.state.value}", code=code,
                         details={"correlation_id": correlation_id, "state": status.state.value}),
            409,
        )
    return FileResponse(path, media_type=get_format(status.fmt).content_type, filename=path.name)


@router.get("/health")
def health(orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator)):
    """Health check: limiter, circuit states, merge jobs, cache."""
    return orchestrator.get_health_info()


@router.get("/metrics")
def prometheus_metrics(orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator)):
    """Prometheus metrics in text format."""
    content, content_type = orchestrator.metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
