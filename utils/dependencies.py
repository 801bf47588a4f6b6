from fastapi import Depends, Request
from sqlalchemy.orm import Session
from database import get_db
from services.document_service import DocumentService
from services.file_storage import LocalFileStorage
from services.goods_receipt_service import GoodsReceiptService
from services.image_pipeline import ImagePipeline
from services.table_capability import TableCapability


def get_storage(request: Request) -> LocalFileStorage:
    return request.app.state.storage


def get_image_pipeline(request: Request) -> ImagePipeline:
    return request.app.state.image_pipeline


def get_photo_capability(request: Request) -> TableCapability:
    return request.app.state.photo_capability


def get_document_service(request: Request, db: Session = Depends(get_db)) -> DocumentService:
    return DocumentService(db, request.app.state.document_storage, request.app.state.document_capability)


def get_goods_receipt_service(
    db: Session = Depends(get_db),
    storage: LocalFileStorage = Depends(get_storage),
    pipeline: ImagePipeline = Depends(get_image_pipeline),
    photo_capability: TableCapability = Depends(get_photo_capability),
    documents: DocumentService = Depends(get_document_service),
) -> GoodsReceiptService:
    return GoodsReceiptService(db, storage, pipeline, photo_capability, documents)


def client_ip(request: Request):
    return request.client.host if request.client else None
