import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from leave_engine.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Outbox for leave events. Emitted after the business transaction has
    committed, on a separate session, so a failed notification never
    undoes a leave decision.
    """

    def __init__(self, db: Session):
        self.bind = db.get_bind()

    def emit(
        self,
        event: str,
        recipient_id: Optional[int],
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Notification]:
        if recipient_id is None:
            return None
        session = Session(bind=self.bind)
        try:
            notification = Notification(
                recipient_id=recipient_id,
                event=event,
                title=title,
                message=message,
                payload=payload,
            )
            session.add(notification)
            session.commit()
            return notification
        except Exception as e:
            session.rollback()
            logger.warning(f"Failed to emit {event} to {recipient_id}: {e}")
            return None
        finally:
            session.close()
