from sqlalchemy import Column, Integer, String, DateTime, BigInteger, ForeignKey, Enum as SQLEnum
from datetime import datetime
from database import Base
import enum


class DocumentType(str, enum.Enum):
    DELIVERY_NOTE = "DeliveryNote"


class ReceiptDocument(Base):
    """Lieferschein PDFs attached to a goods receipt"""
    __tablename__ = "goods_receipt_documents"

    id = Column(Integer, primary_key=True, index=True)
    receipt_id = Column(Integer, ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type = Column(SQLEnum(DocumentType, values_callable=lambda e: [m.value for m in e]),
                           default=DocumentType.DELIVERY_NOTE, nullable=False)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    mime_type = Column(String(100), nullable=False)
    file_size = Column(BigInteger, nullable=True)
    description = Column(String(500), nullable=True)
    created_by_user_id = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
