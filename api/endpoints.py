# api/endpoints.py
"""
API endpoints for document processing, retrieval and question answering.

Authentication happens upstream: callers identify the user with the
X-User-Id header and the core trusts it.
"""
from contextlib import contextmanager

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from typing import Optional

from config import settings
from core.domain import DocumentStatus, ProjectSettings, SearchMode
from core.errors import (
    InvalidStatusTransitionError, NoRelevantContentError, NotFoundError, RAGError,
    ValidationError,
)
from services.factory import ServiceContainer
from api.schemas import (
    ChunkItem,
    ChunkListResponse,
    DocumentStatusResponse,
    FeedbackRequest,
    FeedbackResponse,
    HealthResponse,
    ProcessingAccepted,
    ProcessRequest,
    ProjectSettingsModel,
    QueryAnswerResponse,
    QueryDetailResponse,
    QueryListResponse,
    QueryRequest,
    QuerySummary,
    ReindexAccepted,
    ResponseItem,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
    SimilarQueriesRequest,
    SimilarQueriesResponse,
    SimilarQueryItem,
    TaskStatusResponse,
)

router = APIRouter()


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def _status_code_for(error: RAGError) -> int:
    if isinstance(error, InvalidStatusTransitionError):
        return 409
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, (NotFoundError, NoRelevantContentError)):
        return 404
    # ProviderError and anything unexpected
    return 500


@contextmanager
def domain_errors():
    """Translate domain errors into HTTP errors with a stable payload."""
    try:
        yield
    except RAGError as e:
        raise HTTPException(
            status_code=_status_code_for(e),
            detail={"errorCode": e.error_code.value, "message": e.message},
        ) from e


# ---------- Document processing ----------
@router.post("/documents/{document_id}/process", status_code=202, response_model=ProcessingAccepted)
async def process_document(
    document_id: str,
    response: Response,
    body: Optional[ProcessRequest] = None,
    container: ServiceContainer = Depends(get_container),
) -> ProcessingAccepted:
    force = body.force if body else False
    processor = container.processor
    with domain_errors():
        document = await processor.get_document(document_id)
        if document.status == DocumentStatus.COMPLETED and not force:
            response.status_code = 200
            return ProcessingAccepted(document_id=document_id, status=DocumentStatus.COMPLETED)
        document = await processor.begin(document_id)

    task_id = container.runner.submit(
        "process", document_id, processor.run(document),
        on_cancel=lambda: processor.abandon(document),
    )
    return ProcessingAccepted(document_id=document_id, status=DocumentStatus.PROCESSING, task_id=task_id)


@router.get("/documents/{document_id}/status", response_model=DocumentStatusResponse)
async def get_document_status(
    document_id: str, container: ServiceContainer = Depends(get_container)
) -> DocumentStatusResponse:
    with domain_errors():
        document = await container.processor.get_document(document_id)
    return DocumentStatusResponse(
        document_id=document.id,
        name=document.name,
        status=document.status,
        processed_at=document.processed_at,
        error_message=document.error_message,
    )


@router.post("/documents/{document_id}/reprocess", status_code=202, response_model=ProcessingAccepted)
async def reprocess_document(
    document_id: str, container: ServiceContainer = Depends(get_container)
) -> ProcessingAccepted:
    processor = container.processor
    with domain_errors():
        document = await processor.begin(document_id)
    task_id = container.runner.submit(
        "reprocess", document_id, processor.run(document),
        on_cancel=lambda: processor.abandon(document),
    )
    return ProcessingAccepted(document_id=document_id, status=DocumentStatus.PROCESSING, task_id=task_id)


@router.post("/projects/{project_id}/reindex", status_code=202, response_model=ReindexAccepted)
async def reindex_project(
    project_id: str, container: ServiceContainer = Depends(get_container)
) -> ReindexAccepted:
    documents = await container.document_store.list_by_project(project_id)
    task_id = container.runner.submit(
        "reindex", project_id, container.processor.reindex_project(project_id)
    )
    return ReindexAccepted(project_id=project_id, documents_count=len(documents), task_id=task_id)


@router.get("/documents/{document_id}/chunks", response_model=ChunkListResponse)
async def list_document_chunks(
    document_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    container: ServiceContainer = Depends(get_container),
) -> ChunkListResponse:
    with domain_errors():
        chunks, total = await container.processor.list_chunks(document_id, limit, offset)
    return ChunkListResponse(
        document_id=document_id,
        chunks=[
            ChunkItem(
                chunk_id=c.chunk_id,
                chunk_index=c.chunk_index,
                content=c.content,
                document_name=c.metadata.document_name,
                metadata=c.metadata.extra,
            )
            for c in chunks
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


# ---------- Search ----------
async def _search(request: SearchRequest, mode: SearchMode, container: ServiceContainer) -> SearchResponse:
    with domain_errors():
        results = await container.search_engine.search(
            request.project_id,
            request.query,
            limit=request.limit,
            threshold=request.threshold,
            filters=request.filters.to_domain() if request.filters else None,
            mode=mode,
        )
    items = [SearchResultItem.from_result(r) for r in results]
    return SearchResponse(query=request.query, mode=mode, results=items, total=len(items))


@router.post("/search/vector", response_model=SearchResponse)
async def vector_search(
    request: SearchRequest, container: ServiceContainer = Depends(get_container)
) -> SearchResponse:
    return await _search(request, SearchMode.VECTOR, container)


@router.post("/search/keyword", response_model=SearchResponse)
async def keyword_search(
    request: SearchRequest, container: ServiceContainer = Depends(get_container)
) -> SearchResponse:
    return await _search(request, SearchMode.KEYWORD, container)


@router.post("/search/hybrid", response_model=SearchResponse)
async def hybrid_search(
    request: SearchRequest, container: ServiceContainer = Depends(get_container)
) -> SearchResponse:
    return await _search(request, SearchMode.HYBRID, container)


@router.post("/search/similar-queries", response_model=SimilarQueriesResponse)
async def similar_queries(
    request: SimilarQueriesRequest, container: ServiceContainer = Depends(get_container)
) -> SimilarQueriesResponse:
    with domain_errors():
        similar = await container.search_engine.similar_queries(
            request.project_id, request.query, limit=request.limit or settings.SIMILAR_QUERIES_LIMIT
        )
    return SimilarQueriesResponse(
        query=request.query,
        results=[
            SimilarQueryItem(query_id=s.query_id, text=s.text, score=round(s.score, 4), created_at=s.created_at)
            for s in similar
        ],
    )


# ---------- Queries ----------
@router.post("/queries", response_model=QueryAnswerResponse)
async def submit_query(
    request: QueryRequest,
    x_user_id: str = Header(...),
    container: ServiceContainer = Depends(get_container),
) -> QueryAnswerResponse:
    options = request.options.to_domain() if request.options else None
    with domain_errors():
        result = await container.orchestrator.submit_query(
            request.project_id, x_user_id, request.query, options
        )
    return QueryAnswerResponse(
        id=result.query.id,
        query=result.query.text,
        answer=result.response.answer_text,
        response_id=result.response.id,
        model_identifier=result.response.model_identifier,
        token_count=result.response.token_count,
        sources=[SearchResultItem.from_result(r) for r in result.sources],
        created_at=result.response.created_at,
    )


@router.post("/queries/{query_id}/responses/{response_id}/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    query_id: str,
    response_id: str,
    request: FeedbackRequest,
    container: ServiceContainer = Depends(get_container),
) -> FeedbackResponse:
    with domain_errors():
        updated = await container.orchestrator.submit_feedback(
            query_id, response_id, request.rating, request.comment
        )
    return FeedbackResponse(
        query_id=query_id,
        response_id=updated.id,
        rating=updated.feedback_rating,
        comment=updated.feedback_comment,
    )


@router.get("/queries/{query_id}", response_model=QueryDetailResponse)
async def get_query(
    query_id: str, container: ServiceContainer = Depends(get_container)
) -> QueryDetailResponse:
    with domain_errors():
        query, responses = await container.orchestrator.get_query(query_id)
    return QueryDetailResponse(
        id=query.id,
        project_id=query.project_id,
        user_id=query.user_id,
        query=query.text,
        language=query.language,
        created_at=query.created_at,
        responses=[
            ResponseItem(
                id=r.id,
                answer=r.answer_text,
                model_identifier=r.model_identifier,
                token_count=r.token_count,
                sources=r.source_chunks,
                feedback_rating=r.feedback_rating,
                feedback_comment=r.feedback_comment,
                created_at=r.created_at,
            )
            for r in responses
        ],
    )


@router.delete("/queries/{query_id}", status_code=204)
async def delete_query(
    query_id: str, container: ServiceContainer = Depends(get_container)
) -> None:
    with domain_errors():
        await container.orchestrator.delete_query(query_id)


@router.get("/projects/{project_id}/queries", response_model=QueryListResponse)
async def list_project_queries(
    project_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    container: ServiceContainer = Depends(get_container),
) -> QueryListResponse:
    with domain_errors():
        queries = await container.orchestrator.list_queries(project_id, limit, offset)
    return QueryListResponse(
        project_id=project_id,
        queries=[
            QuerySummary(id=q.id, user_id=q.user_id, query=q.text, language=q.language, created_at=q.created_at)
            for q in queries
        ],
        limit=limit,
        offset=offset,
    )


# ---------- Project settings ----------
@router.get("/projects/{project_id}/settings", response_model=ProjectSettingsModel)
async def get_project_settings(
    project_id: str, container: ServiceContainer = Depends(get_container)
) -> ProjectSettingsModel:
    current = await container.settings_repo.get(project_id)
    return ProjectSettingsModel(
        chunk_size=current.chunk_size,
        chunk_overlap=current.chunk_overlap,
        similarity_threshold=current.similarity_threshold,
        max_documents_per_query=current.max_documents_per_query,
    )


@router.put("/projects/{project_id}/settings", response_model=ProjectSettingsModel)
async def update_project_settings(
    project_id: str,
    request: ProjectSettingsModel,
    container: ServiceContainer = Depends(get_container),
) -> ProjectSettingsModel:
    with domain_errors():
        await container.settings_repo.save(ProjectSettings(
            project_id=project_id,
            chunk_size=request.chunk_size,
            chunk_overlap=request.chunk_overlap,
            similarity_threshold=request.similarity_threshold,
            max_documents_per_query=request.max_documents_per_query,
        ))
    return request


# ---------- Background tasks ----------
@router.get("/tasks/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(
    task_id: str, container: ServiceContainer = Depends(get_container)
) -> TaskStatusResponse:
    record = container.runner.get(task_id)
    if not record:
        raise HTTPException(status_code=404, detail="No task found with this id")
    return TaskStatusResponse(**record)


# ---------- Health Check ----------
@router.get("/health", response_model=HealthResponse)
async def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
    with domain_errors():
        count = await container.index_store.count()
    return HealthResponse(
        status="healthy",
        chunks_indexed=count,
        pending_tasks=container.runner.pending,
        version=settings.APP_VERSION,
    )
