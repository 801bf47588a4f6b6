"""
Delivery note PDFs attached to goods receipts. Files live in their own storage root and
are only handed out through the authenticated download route, never as static files.
"""
from dataclasses import dataclass
from pathlib import Path
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session
from typing import List, Optional
from config import settings
from models.customer import Customer
from models.goods_receipt import GoodsReceipt
from models.receipt_document import DocumentType, ReceiptDocument
from services.customer_scope import fulfillment_label_clause
from services.file_storage import LocalFileStorage
from services.table_capability import TableCapability
from utils.auth_dependency import Principal
from utils.errors import InvalidFormat, NotFound, PayloadTooLarge, StorageInconsistency, ValidationError
from utils.logger import DatabaseLogger
import logging
import os

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
PDF_MAGIC = b"%PDF"


@dataclass
class UploadedDocument:
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class DocumentService:
    def __init__(
        self,
        db: Session,
        storage: LocalFileStorage,
        capability: TableCapability,
        max_bytes: int = settings.max_document_bytes,
    ):
        self.db = db
        self.storage = storage
        self.capability = capability
        self.max_bytes = max_bytes

    def validate(self, upload: Optional[UploadedDocument]):
        if upload is None or upload.size == 0:
            raise ValidationError("No file uploaded", details=[{"field": "document", "error": "required"}])
        if upload.size > self.max_bytes:
            raise PayloadTooLarge(
                f"File {upload.filename} exceeds maximum allowed size of {self.max_bytes // (1024 * 1024)}MB"
            )
        extension = os.path.splitext(upload.filename or "")[1].lower()
        content_type = (upload.content_type or "").lower()
        if extension != ".pdf" or content_type != PDF_CONTENT_TYPE or not upload.content.startswith(PDF_MAGIC):
            raise InvalidFormat("Only PDF files are allowed")

    def upload(
        self,
        receipt_id: int,
        upload: Optional[UploadedDocument],
        user_id: int,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> ReceiptDocument:
        self._require_table()
        self.validate(upload)

        receipt = (
            self.db.query(GoodsReceipt)
            .filter(GoodsReceipt.id == receipt_id, fulfillment_label_clause(GoodsReceipt.customer_id))
            .first()
        )
        if not receipt:
            raise NotFound("Goods receipt not found or not a fulfillment customer")

        name = self.storage.generate_name(upload.filename, prefix="lieferschein", extension=".pdf")
        self.storage.put(name, upload.content)
        try:
            document = ReceiptDocument(
                receipt_id=receipt_id,
                document_type=DocumentType.DELIVERY_NOTE,
                file_name=upload.filename,
                file_path=name,
                mime_type=PDF_CONTENT_TYPE,
                file_size=upload.size,
                description=(description or "").strip() or None,
                created_by_user_id=user_id,
            )
            self.db.add(document)
            self.db.commit()
            self.db.refresh(document)
        except Exception as e:
            self.db.rollback()
            self.storage.delete(name)
            if isinstance(e, (ProgrammingError, OperationalError)):
                self.capability.invalidate()
            logger.error(f"Delivery note for goods receipt {receipt_id} not saved, removed {name}: {e}")
            raise

        logger.info(f"Delivery note {document.id} uploaded for goods receipt {receipt_id} ({upload.size} bytes)")
        DatabaseLogger.log_user_activity(
            self.db, user_id=user_id, action="upload_delivery_note", description=upload.filename,
            entity_type="goods_receipt", entity_id=receipt_id, ip_address=ip_address,
        )
        return document

    def list_documents(self, receipt_id: int, principal: Principal) -> List[ReceiptDocument]:
        """Documents the principal may see, newest first; foreign receipts yield an empty list"""
        if not self.capability.is_available(self.db):
            return []
        query = self._visible(principal).filter(ReceiptDocument.receipt_id == receipt_id)
        return query.order_by(ReceiptDocument.created_at.desc(), ReceiptDocument.id.desc()).all()

    def get_for_principal(self, document_id: int, principal: Principal) -> ReceiptDocument:
        self._require_table()
        document = self._visible(principal).filter(ReceiptDocument.id == document_id).first()
        if not document:
            raise NotFound("Document not found or no access")
        return document

    def file_path(self, document: ReceiptDocument) -> Path:
        path = self.storage.path(document.file_path)
        if not path.exists():
            logger.error(f"File {document.file_path} of document {document.id} is missing")
            raise NotFound("File not found")
        return path

    def delete(self, document_id: int, user_id: int, ip_address: Optional[str] = None):
        self._require_table()
        document = self.db.query(ReceiptDocument).filter(ReceiptDocument.id == document_id).first()
        if not document:
            raise NotFound("Document not found")

        receipt_id, file_path = document.receipt_id, document.file_path
        self.db.delete(document)
        self.db.commit()
        self.discard_files([file_path])

        DatabaseLogger.log_user_activity(
            self.db, user_id=user_id, action="delete_delivery_note",
            entity_type="goods_receipt", entity_id=receipt_id, ip_address=ip_address,
        )

    def detach_for_receipt(self, receipt_id: int) -> List[str]:
        """Mark a receipt's documents for deletion in the caller's transaction; returns their files"""
        if not self.capability.is_available(self.db):
            return []
        documents = self.db.query(ReceiptDocument).filter(ReceiptDocument.receipt_id == receipt_id).all()
        for document in documents:
            self.db.delete(document)
        return [document.file_path for document in documents]

    def discard_files(self, names: List[str]):
        for name in names:
            try:
                self.storage.delete(name)
            except OSError as e:
                logger.error(f"Could not delete document file {name}: {e}")

    def _visible(self, principal: Principal):
        query = (
            self.db.query(ReceiptDocument)
            .join(GoodsReceipt, GoodsReceipt.id == ReceiptDocument.receipt_id)
            .filter(fulfillment_label_clause(GoodsReceipt.customer_id))
        )
        if principal.is_employee:
            return query
        query = query.filter(GoodsReceipt.customer_id == principal.customer_id)
        if principal.customer_number is not None:
            query = query.join(Customer, Customer.id == GoodsReceipt.customer_id).filter(
                Customer.customer_number == principal.customer_number
            )
        return query

    def _require_table(self):
        if not self.capability.is_available(self.db):
            raise StorageInconsistency("Document storage is not available")
