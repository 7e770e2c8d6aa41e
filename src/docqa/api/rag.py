"""API router exposing document and question endpoints for the RAG service."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from pydantic import BaseModel, Field

from docqa.errors import RemoteServiceError
from docqa.services.rag import APOLOGY_MESSAGE, RAGService
from docqa.services.scheduler import IngestReport
from docqa.storage import DocumentStore

router = APIRouter(tags=["rag"])


def get_rag_service(request: Request) -> RAGService:
    return request.app.state.rag_service


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store


class DocumentInfo(BaseModel):
    """Uploaded document as listed by the API."""

    id: str
    name: str
    size_bytes: int
    processed: bool = False


class DocumentSelection(BaseModel):
    """Request body naming a set of documents."""

    document_ids: list[str] = Field(default_factory=list, description="Ids of the selected documents.")


class QueryRequest(BaseModel):
    """Request body accepted by the query endpoint."""

    question: str = Field(..., min_length=1, description="Question to answer from the selected documents.")
    document_ids: list[str] = Field(default_factory=list, description="Documents the answer may draw from.")


class IngestFailureModel(BaseModel):
    document_id: str
    document_name: str
    error_type: str
    message: str


class IngestReportModel(BaseModel):
    processed: list[str]
    skipped: list[str]
    failures: list[IngestFailureModel]
    discarded: list[str] = Field(default_factory=list)


class AnswerSourceModel(BaseModel):
    document_id: str
    document_name: str
    page_number: int
    text: str
    similarity: float
    passage_id: str


class DiagnosticsModel(BaseModel):
    documents_requested: int
    documents_indexed: int
    total_passages: int


class AnswerMetadataModel(BaseModel):
    processing_time_ms: float
    chunks_used: int
    documents_queried: list[str]
    sub_questions: list[str]
    diagnostics: DiagnosticsModel | None = None
    warnings: list[str] = Field(default_factory=list)
    usage: dict[str, dict[str, int]] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    """Response payload for the query endpoint."""

    answer: str
    sources: list[AnswerSourceModel]
    metadata: AnswerMetadataModel


class SelectionResponse(BaseModel):
    scheduled: list[str]
    debounce_seconds: float


class StatusResponse(BaseModel):
    ingesting: bool
    last_status: dict[str, Any] | None = None
    last_report: IngestReportModel | None = None


class StatsResponse(BaseModel):
    total_passages: int
    total_documents: int
    passages_per_document: dict[str, int]


def _report_model(report: IngestReport) -> IngestReportModel:
    return IngestReportModel.model_validate(asdict(report))


def _selected_documents(store: DocumentStore, document_ids: list[str]):
    try:
        return store.get_many(document_ids)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown document id(s): {exc.args[0]}") from exc


@router.post("/documents", response_model=list[DocumentInfo])
async def upload_documents(
    files: list[UploadFile] = File(...),
    store: DocumentStore = Depends(get_document_store),
) -> list[DocumentInfo]:
    """Store one or more uploaded documents; ingestion happens on selection or query."""

    if not files:
        raise HTTPException(status_code=400, detail="At least one file must be provided")

    saved = [await store.save(upload) for upload in files if upload is not None]
    return [DocumentInfo(id=document.id, name=document.name, size_bytes=document.size_bytes) for document in saved]


@router.get("/documents", response_model=list[DocumentInfo])
def list_documents(
    store: DocumentStore = Depends(get_document_store),
    rag_service: RAGService = Depends(get_rag_service),
) -> list[DocumentInfo]:
    return [
        DocumentInfo(
            id=document.id,
            name=document.name,
            size_bytes=document.size_bytes,
            processed=rag_service.index.contains(document.id),
        )
        for document in store.list()
    ]


@router.delete("/documents/{document_id}")
def delete_document(
    document_id: str,
    store: DocumentStore = Depends(get_document_store),
    rag_service: RAGService = Depends(get_rag_service),
) -> dict[str, Any]:
    """Remove a document from the store and its passages from the index."""

    known = store.get(document_id) is not None or rag_service.index.contains(document_id)
    if not known:
        raise HTTPException(status_code=404, detail=f"Unknown document id: {document_id}")

    store.remove(document_id)
    removed = rag_service.remove_document(document_id)
    return {"id": document_id, "removed_passages": removed}


@router.post("/documents/process", response_model=IngestReportModel)
async def process_documents(
    selection: DocumentSelection,
    store: DocumentStore = Depends(get_document_store),
    rag_service: RAGService = Depends(get_rag_service),
) -> IngestReportModel:
    """Ingest the selected documents now and report per-document outcomes."""

    documents = _selected_documents(store, selection.document_ids)
    report = await rag_service.scheduler.ensure_processed(documents)
    return _report_model(report)


@router.post("/documents/select", response_model=SelectionResponse, status_code=status.HTTP_202_ACCEPTED)
async def select_documents(
    selection: DocumentSelection,
    store: DocumentStore = Depends(get_document_store),
    rag_service: RAGService = Depends(get_rag_service),
) -> SelectionResponse:
    """Record a selection change; ingestion starts once the selection settles."""

    documents = _selected_documents(store, selection.document_ids)
    rag_service.scheduler.schedule(documents)
    return SelectionResponse(
        scheduled=[document.id for document in documents],
        debounce_seconds=rag_service.scheduler.debounce,
    )


@router.get("/documents/status", response_model=StatusResponse)
def ingestion_status(rag_service: RAGService = Depends(get_rag_service)) -> StatusResponse:
    scheduler = rag_service.scheduler
    last_status = asdict(scheduler.last_status) if scheduler.last_status else None
    if last_status is not None:
        last_status["phase"] = scheduler.last_status.phase.value
    return StatusResponse(
        ingesting=scheduler.is_ingesting,
        last_status=last_status,
        last_report=_report_model(scheduler.last_report) if scheduler.last_report else None,
    )


@router.post("/query", response_model=QueryResponse)
async def query_documents(
    request: QueryRequest,
    store: DocumentStore = Depends(get_document_store),
    rag_service: RAGService = Depends(get_rag_service),
) -> QueryResponse:
    """Answer a question from the selected documents, ingesting them first if needed."""

    if not request.question.strip():
        raise HTTPException(status_code=422, detail="Question must not be empty")

    requested = list(dict.fromkeys(request.document_ids))
    documents = [document for document in map(store.get, requested) if document is not None]
    unknown = [document_id for document_id in requested if store.get(document_id) is None]

    try:
        answer = await rag_service.ask(request.question, documents, document_ids=requested)
    except RemoteServiceError as exc:
        raise HTTPException(
            status_code=502,
            detail={"answer": APOLOGY_MESSAGE, "error": str(exc)},
        ) from exc

    if unknown:
        answer.metadata.warnings.append(f"Unknown document id(s): {', '.join(unknown)}")
    return QueryResponse.model_validate(asdict(answer))


@router.get("/stats", response_model=StatsResponse)
def index_stats(rag_service: RAGService = Depends(get_rag_service)) -> StatsResponse:
    return StatsResponse.model_validate(asdict(rag_service.stats()))
