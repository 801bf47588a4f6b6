from sqlalchemy import Column, Integer, String, Date, Time, DateTime, Boolean, Text, Enum as SQLEnum
from datetime import datetime
from database import Base
import enum


class ReceiptStatus(str, enum.Enum):
    RECEIVED = "Received"
    IN_STORAGE = "InStorage"
    STORED = "Stored"


class PackageKind(str, enum.Enum):
    CARTON = "Carton"
    PALLET = "Pallet"
    PACKAGE = "Package"
    SACK = "Sack"
    CRATE = "Crate"
    ROLL = "Roll"
    OTHER = "Other"


class ReceiptCondition(str, enum.Enum):
    OK = "OK"
    DAMAGED = "Damaged"
    PARTIALLY_DAMAGED = "PartiallyDamaged"


class GoodsReceipt(Base):
    """Warenannahme: one delivery event of goods arriving for a fulfillment customer"""
    __tablename__ = "goods_receipts"

    id = Column(Integer, primary_key=True, index=True)
    receipt_date = Column(Date, nullable=False, index=True)
    receipt_time = Column(Time, nullable=False)
    # ERP customer id; lives in another schema so there is no FK constraint
    customer_id = Column(Integer, nullable=False, index=True)
    carrier_name = Column(String(100), nullable=False)
    package_kind = Column(SQLEnum(PackageKind, values_callable=lambda e: [m.value for m in e]), nullable=False)
    package_count = Column(Integer, nullable=False)
    condition = Column(SQLEnum(ReceiptCondition, values_callable=lambda e: [m.value for m in e]),
                       default=ReceiptCondition.OK, nullable=False)
    pallet_exchange = Column(Boolean, default=False, nullable=False)
    supplier_order_ref = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    main_photo_path = Column(String(500), nullable=True)
    created_by_user_id = Column(Integer, nullable=False)
    status = Column(SQLEnum(ReceiptStatus, values_callable=lambda e: [m.value for m in e]),
                    default=ReceiptStatus.RECEIVED, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
