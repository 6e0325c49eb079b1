import logging
from sqlalchemy.orm import Session


class BaseService:
    """
    Common plumbing for service classes: the caller's session and a
    logger named after the concrete service module.
    Services never open their own transactions on a caller's session;
    they commit or roll back at the end of a public operation.
    """

    def __init__(self, db: Session):
        self.db = db
        self._logger = logging.getLogger(self.__class__.__module__)

    def log_info(self, message: str, **extra):
        self._logger.info(message, extra=extra or None)

    def log_warning(self, message: str, **extra):
        self._logger.warning(message, extra=extra or None)

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
