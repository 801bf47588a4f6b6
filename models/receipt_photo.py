from sqlalchemy import Column, Integer, String, DateTime, Boolean, BigInteger, ForeignKey, UniqueConstraint
from datetime import datetime
from database import Base


class ReceiptPhoto(Base):
    """Additional photos of a goods receipt. The main photo stays on GoodsReceipt.main_photo_path."""
    __tablename__ = "goods_receipt_photos"
    __table_args__ = (
        UniqueConstraint("receipt_id", "sort_order", name="uq_goods_receipt_photos_sort_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    receipt_id = Column(Integer, ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False, index=True)
    file_path = Column(String(500), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_size = Column(BigInteger, nullable=True)
    is_main_photo = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, nullable=False)
    description = Column(String(500), nullable=True)
    created_by_user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
