"""Document endpoints - upload, ingest, list, get, delete and signed file URLs."""

import logging
import time
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import BaseModel, Field

from backend.app.api.auth import AuthUser, get_current_user
from backend.app.api.dependencies import StudyServices, get_repositories, get_services
from backend.app.db.repositories import Repositories
from backend.app.docs.ingest import display_filename
from backend.app.errors import FileTooLarge, NotFound, StudyError, ValidationError
from backend.app.models.docs import StudyDocument
from backend.app.storage import upload_path, validate_user_path

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/study", tags=["documents"])


class IngestRequest(BaseModel):
    """Request body for POST /api/study/ingest.

    The file itself is uploaded to object storage by the client first;
    ingestion references it by its storage path.
    """

    storage_path: str = Field(..., min_length=1, description="Path inside the materials bucket")
    filename: str = Field("", max_length=255, description="Original filename for display")
    mime_type: str | None = Field(None, description="Client-declared MIME type")
    module_name: str = Field("General", min_length=1, max_length=100)


class IngestResponse(BaseModel):
    """Response for POST /api/study/ingest."""

    message: str
    document: StudyDocument


class DeleteResponse(BaseModel):
    message: str


class SignRequest(BaseModel):
    """Request body for POST /api/study/sign."""

    paths: list[str] = Field(..., min_length=1)


class SignedUrl(BaseModel):
    path: str
    signed_url: str


class SignResponse(BaseModel):
    urls: list[SignedUrl]


async def _accept(
    services: StudyServices,
    repos: Repositories,
    user: AuthUser,
    *,
    storage_path: str,
    filename: str,
    module_name: str,
    declared_mime: str | None,
) -> IngestResponse:
    pipeline = services.pipeline
    prepared = await pipeline.start(
        ctx=user,
        storage_path=storage_path,
        filename=filename,
        module_name=module_name.strip(),
        documents=repos.documents,
        declared_mime=declared_mime,
    )

    services.tasks.spawn(
        pipeline.process_detached(services.provider, prepared.document, prepared.text),
        name=f"ingest-{prepared.document.id}",
    )

    return IngestResponse(
        message="Document uploaded. Processing embeddings...",
        document=prepared.document,
    )


@router.post("/ingest", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_document(
    request: IngestRequest,
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> IngestResponse:
    """Accept a stored file for ingestion.

    Extraction runs in the request; chunking and embedding continue in the
    background after the response. Poll GET /documents/{id} for the status.
    """
    return await _accept(
        services,
        repos,
        user,
        storage_path=request.storage_path,
        filename=request.filename,
        module_name=request.module_name,
        declared_mime=request.mime_type,
    )


@router.post("/upload", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_document(
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
    file: UploadFile = File(...),
    module_name: str = Form("General", min_length=1, max_length=100),
) -> IngestResponse:
    """Store a multipart upload under the caller's namespace, then ingest it."""
    max_bytes = services.settings.max_upload_bytes
    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise FileTooLarge(max_bytes)

    filename = display_filename(file.filename or "", "upload")
    storage_path = upload_path(user.user_id, filename, int(time.time()))
    await services.storage.upload(
        storage_path, content, file.content_type or "application/octet-stream"
    )
    logger.info(f"Stored upload {storage_path} ({len(content)} bytes)")

    try:
        return await _accept(
            services,
            repos,
            user,
            storage_path=storage_path,
            filename=filename,
            module_name=module_name,
            declared_mime=file.content_type,
        )
    except StudyError:
        # Rejected uploads do not stay in storage
        await services.storage.remove([storage_path])
        raise


@router.get("/documents", response_model=list[StudyDocument])
async def list_documents(
    user: Annotated[AuthUser, Depends(get_current_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
    module: Annotated[str | None, Query(max_length=100)] = None,
) -> list[StudyDocument]:
    """List the caller's documents, newest first, optionally for one module."""
    return await repos.documents.list_documents(user.user_id, module_name=module)


@router.get("/documents/{document_id}", response_model=StudyDocument)
async def get_document(
    document_id: uuid.UUID,
    user: Annotated[AuthUser, Depends(get_current_user)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> StudyDocument:
    document = await repos.documents.get_document(document_id, user.user_id)
    if document is None:
        raise NotFound("Document not found")
    return document


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(
    document_id: uuid.UUID,
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> DeleteResponse:
    """Delete a document, its chunks and the stored file."""
    document = await repos.documents.get_document(document_id, user.user_id)
    if document is None:
        raise NotFound("Document not found")

    await repos.documents.delete_document(document_id, user.user_id)

    try:
        await services.storage.remove([document.file_path])
    except StudyError as e:
        logger.warning(f"Stored file {document.file_path} not removed: {e}")

    return DeleteResponse(message="Document deleted successfully")


@router.post("/sign", response_model=SignResponse)
async def sign_paths(
    request: SignRequest,
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
) -> SignResponse:
    """Create time-limited download URLs for the caller's own files.

    Paths that cannot be signed come back with an empty ``signed_url``.
    """
    settings = services.settings
    if len(request.paths) > settings.max_signed_paths:
        raise ValidationError(f"Too many paths (max {settings.max_signed_paths})")

    for path in request.paths:
        validate_user_path(path, user.user_id)

    urls = await services.storage.create_signed_urls(request.paths, settings.signed_url_ttl_seconds)
    return SignResponse(
        urls=[SignedUrl(path=p, signed_url=u) for p, u in zip(request.paths, urls, strict=True)]
    )


@router.get("/documents/{document_id}/file", response_model=SignedUrl)
async def get_document_file(
    document_id: uuid.UUID,
    user: Annotated[AuthUser, Depends(get_current_user)],
    services: Annotated[StudyServices, Depends(get_services)],
    repos: Annotated[Repositories, Depends(get_repositories)],
) -> SignedUrl:
    """Time-limited download URL for one of the caller's documents."""
    document = await repos.documents.get_document(document_id, user.user_id)
    if document is None:
        raise NotFound("Document not found")

    url = await services.storage.create_signed_url(
        document.file_path, services.settings.signed_url_ttl_seconds
    )
    return SignedUrl(path=document.file_path, signed_url=url)
