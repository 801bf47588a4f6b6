"""
Activity logging to the portal database
"""
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from models.log import UserActivityLog
from typing import Optional
import logging

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000


class DatabaseLogger:
    """Writes user activity rows; a failed write never fails the calling request"""

    @staticmethod
    def log_user_activity(
        db: Session,
        user_id: int,
        action: str,
        description: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        ip_address: Optional[str] = None,
    ):
        if description and len(description) > MAX_DESCRIPTION_LENGTH:
            description = description[:MAX_DESCRIPTION_LENGTH] + "...[TRUNCATED]"

        try:
            db.add(UserActivityLog(
                user_id=user_id,
                action=action,
                description=description,
                entity_type=entity_type,
                entity_id=entity_id,
                ip_address=ip_address
            ))
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write user activity log ({action}): {e}")
            db.rollback()
