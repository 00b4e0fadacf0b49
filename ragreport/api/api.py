"""API Module for the RAG report generator

This module provides the FastAPI endpoints for workspace management, document upload,
incremental ingestion, report generation (batch and Server-Sent Events), modification,
results listing and HTML export.

Endpoints:
- GET  /health: Health check.
- GET  /workspaces, POST /workspaces: List or create workspaces.
- POST /workspaces/{workspace}/upload: Upload one or more documents (multipart).
- GET  /workspaces/{workspace}/files: Uploaded files with their processed flag.
- POST /workspaces/{workspace}/ingest: Embed new uploads into the vector index.
- POST /workspaces/{workspace}/generate: Answer every prompt; returns the new results.
- POST /workspaces/{workspace}/generate/stream: Same, streamed as SSE events.
- POST /workspaces/{workspace}/modify: Revise selected sections with extra instructions.
- GET  /workspaces/{workspace}/results: Full results log.
- GET  /workspaces/{workspace}/export: Latest answers as an HTML report (attachment).

Run with: uvicorn ragreport.api.api:app --reload --host 0.0.0.0 --port 8000

Requires: fastapi, uvicorn, python-multipart.
"""

import json
from contextlib import aclosing
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field

import ragreport
from ragreport.core.config import Settings, get_settings
from ragreport.core.errors import (
    DocumentLoadError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    RagReportError,
    UnsupportedFormatError,
    ValidationError,
    WorkspaceExistsError,
)
from ragreport.core.logging import get_logger
from ragreport.workspaces.workspaces import WorkspaceService

logger = get_logger(__name__)

STATUS_BY_ERROR = [
    (NotFoundError, 404),
    (WorkspaceExistsError, 409),
    (ValidationError, 400),
    (UnsupportedFormatError, 400),
    (DocumentLoadError, 400),
    (ProviderError, 502),
    (PersistenceError, 500),
]


# Pydantic models
class WorkspaceRequest(BaseModel):
    name: str = Field(..., min_length=1)


class IngestRequest(BaseModel):
    files: Optional[List[str]] = None


class ModifyRequest(BaseModel):
    sections: List[str]
    extra_instructions: str


def status_for(exc: RagReportError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def get_service(request: Request) -> WorkspaceService:
    """Return the app's service, building it from settings on first use."""
    if request.app.state.service is None:
        request.app.state.service = WorkspaceService.from_settings(request.app.state.settings)
    return request.app.state.service


def create_app(service: Optional[WorkspaceService] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="RAG Report API",
        description="Generate versioned, retrieval-grounded report sections per workspace.",
        version=ragreport.__version__,
    )
    app.state.service = service
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RagReportError)
    async def handle_ragreport_error(request: Request, exc: RagReportError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({status}): {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": ragreport.__version__,
            "modules": ["ingestion", "embeddings", "storage", "retrieval", "generation", "export"],
        }

    @app.get("/workspaces")
    async def list_workspaces(service: WorkspaceService = Depends(get_service)) -> Dict[str, Any]:
        return {"workspaces": await service.list_workspaces()}

    @app.post("/workspaces", status_code=201)
    async def create_workspace(request: WorkspaceRequest,
                               service: WorkspaceService = Depends(get_service)) -> Dict[str, Any]:
        return await service.create_workspace(request.name)

    @app.post("/workspaces/{workspace}/upload", summary="Upload documents")
    async def upload_files(workspace: str, files: List[UploadFile] = File(...),
                           service: WorkspaceService = Depends(get_service)) -> Dict[str, Any]:
        """Upload PDF, DOCX, DOC or TXT documents. Existing file names are reported as duplicates.

        Every file is checked against the size limit before any of them is stored.
        """
        limit = settings.MAX_UPLOAD_BYTES
        accepted = []
        for upload in files:
            if upload.size is not None and upload.size > limit:
                raise HTTPException(status_code=413, detail=f"{upload.filename} exceeds the {limit} byte upload limit")
            data = await upload.read()
            if len(data) > limit:
                raise HTTPException(status_code=413, detail=f"{upload.filename} exceeds the {limit} byte upload limit")
            accepted.append((upload.filename or "", data))

        uploaded, duplicates = [], []
        for file_name, data in accepted:
            outcome = await service.upload(workspace, file_name, data)
            (duplicates if outcome["duplicate"] else uploaded).append(outcome["fileName"])
        return {"uploaded": uploaded, "duplicates": duplicates}

    @app.get("/workspaces/{workspace}/files")
    async def list_files(workspace: str, service: WorkspaceService = Depends(get_service)) -> Dict[str, Any]:
        return {"files": await service.list_files(workspace)}

    @app.post("/workspaces/{workspace}/ingest", summary="Ingest and index new uploads")
    async def ingest(workspace: str, request: Optional[IngestRequest] = None,
                     service: WorkspaceService = Depends(get_service)) -> Dict[str, Any]:
        files = request.files if request is not None else None
        report = await service.ingest(workspace, files)
        return report.to_dict()

    @app.post("/workspaces/{workspace}/generate")
    async def generate(workspace: str, service: WorkspaceService = Depends(get_service)) -> Dict[str, Any]:
        records = await service.generate_all(workspace)
        return {"results": [record.to_dict() for record in records], "count": len(records)}

    @app.post("/workspaces/{workspace}/generate/stream")
    async def generate_stream(workspace: str, service: WorkspaceService = Depends(get_service)) -> StreamingResponse:
        """
        Stream generation results as Server-Sent Events.

        Each event is `data: <json>` with type `result`, then `done` or `error`.
        """
        await service.require_workspace(workspace)

        async def events():
            async with aclosing(service.stream_generation(workspace)) as stream:
                async for event in stream:
                    yield f"data: {json.dumps(event)}\n\n"

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    @app.post("/workspaces/{workspace}/modify")
    async def modify(workspace: str, request: ModifyRequest,
                     service: WorkspaceService = Depends(get_service)) -> Dict[str, Any]:
        records = await service.modify(workspace, request.sections, request.extra_instructions)
        return {"results": [record.to_dict() for record in records], "count": len(records)}

    @app.get("/workspaces/{workspace}/results")
    async def list_results(workspace: str, service: WorkspaceService = Depends(get_service)) -> Dict[str, Any]:
        records = await service.list_results(workspace)
        return {"results": [record.to_dict() for record in records]}

    @app.get("/workspaces/{workspace}/export")
    async def export(workspace: str, service: WorkspaceService = Depends(get_service)) -> Response:
        html = await service.export_html(workspace)
        return Response(
            content=html,
            media_type="text/html",
            headers={"Content-Disposition": f'attachment; filename="results_{workspace}.html"'},
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
