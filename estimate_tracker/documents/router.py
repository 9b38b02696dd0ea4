"""
Privacy Documents Router - admin-only management of the DSGVO documents.
"""
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response

from ..auth.dependencies import require_admin
from ..auth.models import Account
from ..config import settings
from ..dependencies import get_object_store
from .schemas import DocumentEnvelope, DocumentInfo, DocumentListEnvelope
from .service import (
    build_archive, delete_document, download_document, list_documents, upload_document, zip_filename
)

router = APIRouter(prefix="/api/v1/documents", tags=["Privacy Documents"])


def _attachment(filename: str) -> dict:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}


@router.get("", response_model=DocumentListEnvelope)
async def get_documents(
    objects=Depends(get_object_store),
    current_account: Account = Depends(require_admin)
):
    """List the stored documents."""
    documents = await list_documents(objects, settings.dsgvo_documents_bucket)
    return DocumentListEnvelope(documents=[DocumentInfo(**document) for document in documents])

@router.post("", response_model=DocumentEnvelope, status_code=201)
async def post_document(
    file: UploadFile = File(...),
    objects=Depends(get_object_store),
    current_account: Account = Depends(require_admin)
):
    """Upload a document; a document with the same name is replaced."""
    data = await file.read()
    name = await upload_document(
        objects, settings.dsgvo_documents_bucket, file.filename, file.content_type, data
    )
    return DocumentEnvelope(name=name)

# Must stay above "/{name}"
@router.get("/archive")
async def get_archive(
    objects=Depends(get_object_store),
    current_account: Account = Depends(require_admin)
):
    """Download every document as one ZIP file."""
    content = await build_archive(objects, settings.dsgvo_documents_bucket)
    return Response(content, media_type="application/zip", headers=_attachment(zip_filename()))

@router.get("/{name}")
async def get_document(
    name: str,
    objects=Depends(get_object_store),
    current_account: Account = Depends(require_admin)
):
    """Download a single document."""
    content = await download_document(objects, settings.dsgvo_documents_bucket, name)
    return Response(content, media_type="application/octet-stream", headers=_attachment(name))

@router.delete("/{name}", response_model=DocumentEnvelope)
async def remove_document(
    name: str,
    objects=Depends(get_object_store),
    current_account: Account = Depends(require_admin)
):
    """Delete a document."""
    await delete_document(objects, settings.dsgvo_documents_bucket, name)
    return DocumentEnvelope(name=name)
