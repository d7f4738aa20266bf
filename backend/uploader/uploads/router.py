"""Upload endpoints.

Endpoints:
    POST /uploads      — Multipart upload with form options
    POST /uploads/tmp  — Materialize a URL or data: payload as a temp file

Both return 503 until the application lifespan installs an orchestrator.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from uploader.files.schemas import UploadOptions, UploadResult

from .orchestrator import UploadOrchestrator
from .schemas import STATUS_BY_KIND, TempUploadRequest, TempUploadResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])

# ---------------------------------------------------------------------------
# Singleton orchestrator management
# ---------------------------------------------------------------------------

_orchestrator: Optional[UploadOrchestrator] = None


def get_orchestrator() -> Optional[UploadOrchestrator]:
    """Return the global UploadOrchestrator, or None if not configured."""
    return _orchestrator


def set_orchestrator(orchestrator: Optional[UploadOrchestrator]) -> None:
    """Set (or clear) the global UploadOrchestrator."""
    global _orchestrator
    _orchestrator = orchestrator


def _require_orchestrator() -> UploadOrchestrator:
    orchestrator = get_orchestrator()
    if orchestrator is None:
        logger.warning("[uploads] Orchestrator not configured — returning 503")
        raise HTTPException(status_code=503, detail="Uploader not configured")
    return orchestrator


def status_for(kind: Optional[str]) -> int:
    return STATUS_BY_KIND.get(kind or "", 500)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", response_model=UploadResult)
async def upload(
    file: UploadFile = File(...),
    folder: str = Form(""),
    filename: Optional[str] = Form(None),
    formats: str = Form("*"),
    maximum: Optional[int] = Form(None),
    versions: str = Form(""),
    dimension: Optional[str] = Form(None),
    thumb_size: Optional[str] = Form(None),
    generate_thumb: bool = Form(True),
    same_name: bool = Form(False),
    temporal_time: float = Form(0),
) -> UploadResult:
    """Upload a file.

    Raises:
        HTTPException: With the status code of the error kind
            (400, 409, 413, 415, 422, 500, 502), or 503 if unconfigured.
    """
    orchestrator = _require_orchestrator()
    options = UploadOptions(
        folder=folder,
        filename=filename or file.filename,
        formats=formats,
        maximum=maximum,
        file_size=file.size,
        versions=versions,
        dimension=dimension or None,
        thumb_size=thumb_size or None,
        generate_thumb=generate_thumb,
        same_name=same_name,
        temporal_time=temporal_time,
    )
    result = await asyncio.to_thread(orchestrator.upload_file, file.file, options)
    if not result.ok:
        logger.info("[uploads] Rejected %s: %s", file.filename, result.error)
        raise HTTPException(status_code=status_for(result.error_kind), detail=result.error)
    return result


@router.post("/tmp", response_model=TempUploadResponse)
async def upload_tmp(request: TempUploadRequest) -> TempUploadResponse:
    """Download or decode *source* into the temp directory."""
    orchestrator = _require_orchestrator()
    temp = await asyncio.to_thread(
        orchestrator.materializer.materialize,
        request.source,
        name=request.name,
        formats=request.formats,
        maximum=orchestrator.settings.max_size_bytes,
        dimension=request.dimension,
    )
    if not temp.ok:
        raise HTTPException(status_code=status_for(temp.error_kind), detail=temp.error)
    return TempUploadResponse(path=temp.path, origin=temp.origin)
