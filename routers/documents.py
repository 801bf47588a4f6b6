from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from models.receipt_document import ReceiptDocument
from services.document_service import DocumentService, UploadedDocument
from utils.auth_dependency import (
    Principal, get_current_employee, get_current_principal, get_principal_from_header_or_query,
)
from utils.dependencies import client_ip, get_document_service

router = APIRouter(prefix="/api/documents", tags=["Documents"])


class DocumentResponse(BaseModel):
    id: int
    receipt_id: int
    document_type: str
    file_name: str
    mime_type: str
    file_size: Optional[int] = None
    description: Optional[str] = None
    created_by_user_id: int
    created_at: Optional[datetime] = None
    download_url: str


def document_response(document: ReceiptDocument) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        receipt_id=document.receipt_id,
        document_type=document.document_type.value,
        file_name=document.file_name,
        mime_type=document.mime_type,
        file_size=document.file_size,
        description=document.description,
        created_by_user_id=document.created_by_user_id,
        created_at=document.created_at,
        download_url=f"{router.prefix}/download/{document.id}",
    )


@router.post("/upload/{receipt_id}", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def upload_delivery_note(
    receipt_id: int,
    request: Request,
    document: Optional[UploadFile] = File(None),
    description: Optional[str] = Form(None),
    principal: Principal = Depends(get_current_employee),
    service: DocumentService = Depends(get_document_service),
):
    """Attach a delivery note PDF to a goods receipt"""
    upload = None
    if document is not None and document.filename:
        upload = UploadedDocument(document.filename, await document.read(), document.content_type)

    saved = await run_in_threadpool(
        service.upload, receipt_id, upload, principal.user_id, description, client_ip(request)
    )
    return document_response(saved)


@router.get("/goods-receipt/{receipt_id}", response_model=List[DocumentResponse])
def list_receipt_documents(
    receipt_id: int,
    principal: Principal = Depends(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    return [document_response(document) for document in service.list_documents(receipt_id, principal)]


@router.get("/download/{document_id}")
def download_document(
    document_id: int,
    principal: Principal = Depends(get_principal_from_header_or_query),
    service: DocumentService = Depends(get_document_service),
):
    document = service.get_for_principal(document_id, principal)
    return FileResponse(
        service.file_path(document),
        media_type=document.mime_type,
        filename=document.file_name,
        content_disposition_type="inline",
        headers={"Cache-Control": "no-cache"},
    )


@router.delete("/{document_id}")
def delete_document(
    document_id: int,
    request: Request,
    principal: Principal = Depends(get_current_employee),
    service: DocumentService = Depends(get_document_service),
):
    service.delete(document_id, principal.user_id, ip_address=client_ip(request))
    return {"message": "Document deleted"}
