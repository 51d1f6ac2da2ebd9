"""
Notificaciones internas (fire-and-forget)

Se llama después del commit de la operación financiera. Cualquier error se
loguea y se descarta: una notificación nunca revierte ni bloquea un pago.
"""

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from models.core import Notification
from utils.logging_utils import log_event


class NotificationService:

    @staticmethod
    def notify(
        db: Session,
        event_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Notification]:
        try:
            notification = Notification(
                event_type=event_type,
                title=title,
                message=message,
                payload=jsonable_encoder(payload or {}),
            )
            db.add(notification)
            db.commit()
            return notification
        except Exception as e:
            db.rollback()
            log_event("notificaciones", "system", "Error al registrar notificación", f"evento={event_type}, error={str(e)}", level="warning")
            return None
