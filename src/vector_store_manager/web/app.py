from __future__ import annotations

import asyncio
import logging
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable

from fastapi import Depends, FastAPI, File, Header, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vector_store_manager.application.bootstrap import Services, build_services
from vector_store_manager.core.config import AppConfig
from vector_store_manager.core.errors import (
    AlreadyExistsError,
    ConcurrentUpdateError,
    NotFoundError,
    ValidationError,
    VSMError,
)
from vector_store_manager.domain.models.page import DeletedObject, Page
from vector_store_manager.domain.models.source_file import SourceFile

logger = logging.getLogger(__name__)

# Exception type -> (status code, error code); first match wins.
_ERROR_STATUS: tuple[tuple[type[VSMError], int, str], ...] = (
    (ValidationError, 400, "invalid_argument"),
    (NotFoundError, 404, "not_found"),
    (AlreadyExistsError, 409, "already_exists"),
    (ConcurrentUpdateError, 409, "concurrent_update"),
)

DISCONNECT_POLL_SECONDS = 0.5


class CreateVectorStoreRequest(BaseModel):
    name: str = ""
    file_ids: list[str] = Field(default_factory=list)
    chunking_strategy: dict[str, Any] | None = None
    expires_after: dict[str, Any] | None = None
    metadata: dict[str, str] | None = None


class UpdateVectorStoreRequest(BaseModel):
    name: str | None = None
    expires_after: dict[str, Any] | None = None
    metadata: dict[str, str] | None = None


class CreateVectorStoreFileRequest(BaseModel):
    file_id: str = ""
    chunking_strategy: dict[str, Any] | None = None
    wait: bool = True


class SearchRequest(BaseModel):
    query: str = ""
    num_documents: int = 0


def error_response(exc: VSMError) -> JSONResponse:
    status_code, code = 500, "internal"
    for exc_type, mapped_status, mapped_code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code, code = mapped_status, mapped_code
            break
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": str(exc)}},
    )


async def run_until_disconnect(
    request: Request,
    func: Callable[..., Any],
    *args: Any,
    poll_seconds: float = DISCONNECT_POLL_SECONDS,
    **kwargs: Any,
) -> Any:
    """Run a blocking service call in the threadpool.

    The call receives a ``cancellation_check`` that turns true once the client
    disconnects, so in-flight ingestion stops before anything is inserted.
    """
    gone = threading.Event()

    async def watch() -> None:
        while not gone.is_set():
            if await request.is_disconnected():
                logger.info("Client disconnected from %s; cancelling", request.url.path)
                gone.set()
                return
            await asyncio.sleep(poll_seconds)

    watcher = asyncio.create_task(watch())
    try:
        return await run_in_threadpool(func, *args, cancellation_check=gone.is_set, **kwargs)
    finally:
        watcher.cancel()


def _list_payload(page: Page, items: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "object": "list",
        "data": items,
        "first_id": page.first_id or None,
        "last_id": page.last_id or None,
        "has_more": page.has_more,
    }


def _deleted_payload(deleted: DeletedObject) -> dict[str, Any]:
    return {"id": deleted.id, "object": f"{deleted.object}.deleted", "deleted": deleted.deleted}


def _file_payload(source_file: SourceFile) -> dict[str, Any]:
    return {
        "id": source_file.id,
        "object": "file",
        "filename": source_file.filename,
        "bytes": source_file.size_bytes,
        "media_type": source_file.media_type,
        "sha256": source_file.digest_sha256,
        "created_at": source_file.created_at,
    }


def create_app(config: AppConfig, services: Services | None = None) -> FastAPI:
    app = FastAPI(title="Vector Store Manager", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    state: dict[str, Services | None] = {"services": services}

    def get_services() -> Services:
        if state["services"] is None:
            state["services"] = build_services(config)
        return state["services"]

    def project_id(x_project_id: str | None = Header(default=None)) -> str:
        return (x_project_id or "").strip() or config.default_project_id

    @app.exception_handler(VSMError)
    async def _handle_vsm_error(request: Request, exc: VSMError) -> JSONResponse:
        response = error_response(exc)
        if response.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return response

    @app.on_event("shutdown")
    def _shutdown_services() -> None:
        if state["services"] is not None:
            state["services"].shutdown()

    @app.post("/v1/files")
    async def api_upload_file(file: UploadFile = File(...)) -> dict[str, Any]:
        suffix = Path(file.filename or "upload.bin").suffix
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
                temp_path = Path(tmp.name)
                tmp.write(await file.read())
            result = get_services().file_registry.register_file(temp_path, filename=file.filename)
        finally:
            if temp_path and temp_path.exists():
                temp_path.unlink(missing_ok=True)
        payload = _file_payload(result.source_file)
        payload["status"] = result.status
        return payload

    @app.get("/v1/files")
    def api_list_files(limit: int = Query(default=100, ge=1, le=10000)) -> dict[str, Any]:
        files = get_services().file_registry.list_files(limit=limit)
        return {"object": "list", "data": [_file_payload(f) for f in files]}

    @app.get("/v1/files/{file_id}")
    def api_get_file(file_id: str) -> dict[str, Any]:
        return _file_payload(get_services().file_registry.get_file(file_id))

    @app.post("/v1/vector_stores")
    async def api_create_vector_store(
        req: CreateVectorStoreRequest,
        request: Request,
        project: str = Depends(project_id),
    ) -> dict[str, Any]:
        result = await run_until_disconnect(
            request,
            get_services().vector_stores.create_vector_store,
            project,
            req.name,
            file_ids=req.file_ids,
            chunking_strategy=req.chunking_strategy,
            expires_after=req.expires_after,
            metadata=req.metadata,
        )
        payload = result.vector_store.to_dict()
        if result.error is not None:
            payload["file_errors"] = [
                {"file_id": failure.file_id, "message": failure.message} for failure in result.error.failures
            ]
        return payload

    @app.get("/v1/vector_stores")
    def api_list_vector_stores(
        limit: int | None = None,
        after: str | None = None,
        order: str | None = None,
        project: str = Depends(project_id),
    ) -> dict[str, Any]:
        page = get_services().vector_stores.list_vector_stores(project, after=after, order=order, limit=limit)
        return _list_payload(page, [store.to_dict() for store in page.data])

    @app.get("/v1/vector_stores/{vector_store_id}")
    def api_get_vector_store(vector_store_id: str, project: str = Depends(project_id)) -> dict[str, Any]:
        return get_services().vector_stores.get_vector_store(project, vector_store_id).to_dict()

    @app.post("/v1/vector_stores/{vector_store_id}")
    def api_update_vector_store(
        vector_store_id: str,
        req: UpdateVectorStoreRequest,
        project: str = Depends(project_id),
    ) -> dict[str, Any]:
        store = get_services().vector_stores.update_vector_store(
            project,
            vector_store_id,
            name=req.name,
            expires_after=req.expires_after,
            metadata=req.metadata,
        )
        return store.to_dict()

    @app.delete("/v1/vector_stores/{vector_store_id}")
    def api_delete_vector_store(vector_store_id: str, project: str = Depends(project_id)) -> dict[str, Any]:
        return _deleted_payload(get_services().vector_stores.delete_vector_store(project, vector_store_id))

    @app.post("/v1/vector_stores/{vector_store_id}/files")
    async def api_create_vector_store_file(
        vector_store_id: str,
        req: CreateVectorStoreFileRequest,
        request: Request,
        project: str = Depends(project_id),
    ) -> dict[str, Any]:
        record = await run_until_disconnect(
            request,
            get_services().vector_store_files.create_vector_store_file,
            project,
            vector_store_id,
            req.file_id,
            req.chunking_strategy,
            wait=req.wait,
        )
        return record.to_dict()

    @app.get("/v1/vector_stores/{vector_store_id}/files")
    def api_list_vector_store_files(
        vector_store_id: str,
        limit: int | None = None,
        after: str | None = None,
        order: str | None = None,
        project: str = Depends(project_id),
    ) -> dict[str, Any]:
        page = get_services().vector_store_files.list_vector_store_files(
            project, vector_store_id, after=after, order=order, limit=limit
        )
        return _list_payload(page, [record.to_dict() for record in page.data])

    @app.get("/v1/vector_stores/{vector_store_id}/files/{file_id}")
    def api_get_vector_store_file(
        vector_store_id: str,
        file_id: str,
        project: str = Depends(project_id),
    ) -> dict[str, Any]:
        return get_services().vector_store_files.get_vector_store_file(project, vector_store_id, file_id).to_dict()

    @app.delete("/v1/vector_stores/{vector_store_id}/files/{file_id}")
    def api_delete_vector_store_file(
        vector_store_id: str,
        file_id: str,
        project: str = Depends(project_id),
    ) -> dict[str, Any]:
        deleted = get_services().vector_store_files.delete_vector_store_file(project, vector_store_id, file_id)
        return _deleted_payload(deleted)

    @app.post("/v1/vector_stores/{vector_store_id}/files/{file_id}/cancel")
    def api_cancel_vector_store_file(
        vector_store_id: str,
        file_id: str,
        project: str = Depends(project_id),
    ) -> dict[str, Any]:
        record = get_services().vector_store_files.cancel_vector_store_file(project, vector_store_id, file_id)
        return record.to_dict()

    @app.post("/internal/v1/vector_stores/{vector_store_id}/search")
    def api_search_vector_store(vector_store_id: str, req: SearchRequest) -> dict[str, Any]:
        results = get_services().retrieval.search_vector_store(vector_store_id, req.query, req.num_documents)
        return {"object": "list", "data": results}

    @app.get("/internal/v1/health")
    def api_health() -> dict[str, Any]:
        report = get_services().health.run_doctor()
        return {
            "ok": report.ok,
            "checks_run": report.checks_run,
            "issues": [
                {"check": issue.check, "level": issue.level, "message": issue.message} for issue in report.issues
            ],
        }

    return app
