"""HTTP API for the document review queue and reconciliation.

Routes are thin: they parse the request, call one pipeline operation and
serialize the result. Routes that only touch the document store are plain
functions, which FastAPI runs in its threadpool. Workflow errors map to
status codes in one place (_STATUS_BY_ERROR).
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from accounting import AccountingError
from ledgerdesk import LedgerDesk, __version__
from workflows import (
    AlreadyProcessed,
    ApprovalPipeline,
    ConcurrentModification,
    DocumentNotFound,
    IntakePipeline,
    InvalidTransition,
    LedgerDeskError,
    ReconciliationEngine,
)

# Most specific first
_STATUS_BY_ERROR = (
    (DocumentNotFound, status.HTTP_404_NOT_FOUND),
    (AlreadyProcessed, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (ConcurrentModification, status.HTTP_409_CONFLICT),
)


@dataclass
class Services:
    """Pipelines the routes call into."""
    approval: ApprovalPipeline
    reconciliation: ReconciliationEngine
    intake: Optional[IntakePipeline] = None  # None when no classifier is configured

    @classmethod
    def from_app_state(cls) -> "Services":
        """Build pipelines from the collaborators LedgerDesk.init_services() created."""
        if LedgerDesk.store is None:
            LedgerDesk.init_services()
        intake = None
        if LedgerDesk.classifier is not None:
            intake = IntakePipeline(LedgerDesk.classifier, LedgerDesk.store, LedgerDesk.repository)
        return cls(
            approval=ApprovalPipeline(LedgerDesk.store, LedgerDesk.repository, LedgerDesk.accounting),
            reconciliation=ReconciliationEngine(LedgerDesk.store, LedgerDesk.accounting),
            intake=intake,
        )


class DocumentAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    document_id: Optional[str] = Field(None, alias="documentId")
    doc_id: Optional[str] = Field(None, alias="docId")

    def require_id(self) -> str:
        document_id = self.document_id or self.doc_id
        if not document_id:
            raise MissingField("Document ID required")
        return document_id


class ConfirmRequest(DocumentAction):
    destination: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    target_path: Optional[str] = Field(None, alias="targetPath")


class ResolveDuplicateRequest(DocumentAction):
    resolution: Optional[str] = None


class MissingField(ValueError):
    pass


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pipelines to serve. Defaults to ones built from the
            configured LedgerDesk state.
    """
    app = FastAPI(title="LedgerDesk API", version=__version__)
    app.state.services = services

    def get_services() -> Services:
        if app.state.services is None:
            app.state.services = Services.from_app_state()
        return app.state.services

    @app.exception_handler(LedgerDeskError)
    async def handle_workflow_error(request: Request, exc: LedgerDeskError) -> JSONResponse:
        for error_type, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                return _error(status_code, str(exc))
        LedgerDesk.log(f"[red]{request.url.path}: {exc}[/red]")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.exception_handler(AccountingError)
    async def handle_accounting_error(request: Request, exc: AccountingError) -> JSONResponse:
        LedgerDesk.log(f"[red]{request.url.path}: {exc}[/red]")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.exception_handler(ValueError)
    async def handle_bad_value(request: Request, exc: ValueError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid request body")

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        LedgerDesk.log(f"[red]{request.url.path}: {type(exc).__name__}: {exc}[/red]")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Internal error")

    @app.get("/healthz")
    async def healthz() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/files/upload", status_code=status.HTTP_201_CREATED)
    async def upload(file: UploadFile = File(...), source: str = Form("web")) -> Dict[str, Any]:
        data = await file.read()
        if not data:
            raise MissingField("File is empty")
        intake = get_services().intake
        if intake is None:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "No classifier configured")
        doc = await intake.stage_and_ingest(
            data,
            file.filename or "upload",
            file.content_type or "application/octet-stream",
            source,
        )
        return {"success": True, "document": doc.to_dict()}

    @app.get("/api/files/pending")
    def pending() -> Dict[str, Any]:
        docs = get_services().approval.list_pending()
        return {"documents": [doc.to_dict() for doc in docs]}

    @app.post("/api/files/confirm")
    async def confirm(payload: ConfirmRequest) -> Dict[str, Any]:
        result = await get_services().approval.approve(
            payload.require_id(),
            destination=payload.destination,
            metadata=payload.metadata,
            target_path=payload.target_path or "",
        )
        return {
            "success": True,
            "document": result.document.to_dict(),
            "destination": result.destination.value,
            "billId": result.bill.id if result.bill else None,
            "finalPath": result.final_path,
            "fileMoved": result.file_moved,
        }

    @app.post("/api/files/reject")
    async def reject(payload: DocumentAction) -> Dict[str, Any]:
        doc = await get_services().approval.reject(payload.require_id())
        return {"success": True, "document": doc.to_dict()}

    @app.post("/api/files/resolve-duplicate")
    async def resolve_duplicate(payload: ResolveDuplicateRequest) -> Dict[str, Any]:
        document_id = payload.require_id()
        if not payload.resolution:
            raise MissingField("Resolution required")
        doc = await get_services().approval.resolve_duplicate(document_id, payload.resolution)
        return {"success": True, "document": doc.to_dict()}

    @app.patch("/api/files/{document_id}")
    def edit(document_id: str, corrections: Dict[str, Any]) -> Dict[str, Any]:
        doc = get_services().approval.edit_document(document_id, corrections)
        return {"success": True, "document": doc.to_dict()}

    @app.post("/api/reconciliation/{realm_id}/sync")
    async def sync(realm_id: str) -> Dict[str, Any]:
        count = await get_services().reconciliation.sync_book_transactions(realm_id)
        return {"success": True, "synced": count}

    @app.get("/api/reconciliation/{realm_id}/ghosts")
    def ghosts(realm_id: str) -> Dict[str, Any]:
        found = get_services().reconciliation.detect_ghosts(realm_id)
        return {"count": len(found), "ghosts": [txn.to_dict() for txn in found]}

    return app
