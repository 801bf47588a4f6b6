from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime
from database import Base


class UserActivityLog(Base):
    """User activity and action logs"""
    __tablename__ = "user_activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    action = Column(String(200), nullable=False, index=True)  # create_goods_receipt, delete_photo, etc.
    description = Column(Text, nullable=True)
    entity_type = Column(String(100), nullable=True)  # goods_receipt, receipt_photo
    entity_id = Column(Integer, nullable=True)
    ip_address = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
