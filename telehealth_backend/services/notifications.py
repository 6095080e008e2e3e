import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from telehealth_backend.database import SessionLocal
from telehealth_backend.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fire-and-forget in-app notifications.

    Writes go through their own database session so a failed notification can
    never roll back the booking or cancellation that triggered it.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def notify(
        self,
        user_ids: list[int],
        notification_type: str,
        title: str,
        message: str,
        related_session_id: int | None = None,
    ) -> bool:
        db = self.session_factory()
        try:
            for user_id in user_ids:
                db.add(
                    Notification(
                        user_id=user_id,
                        type=notification_type,
                        title=title,
                        message=message,
                        related_session_id=related_session_id,
                    )
                )
            db.commit()
            return True
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Failed to store %s notification for users %s', notification_type, user_ids)
            return False
        finally:
            db.close()
