import json
import logging
import uuid
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gatherly import repo
from gatherly.database import SessionLocal

logger = logging.getLogger(__name__)


def log_product_event(
    db,
    *,
    event_name: str,
    user_id: str | None = None,
    event_id: str | None = None,
    group_id: str | None = None,
    properties: dict[str, Any] | None = None,
) -> None:
    properties = properties or {}
    db.execute(
        text(
            """
            INSERT INTO product_event (id, user_id, event_id, group_id, event_name, properties)
            VALUES (
              :id,
              CAST(NULLIF(:user_id, '') AS uuid),
              CAST(NULLIF(:event_id, '') AS uuid),
              CAST(NULLIF(:group_id, '') AS uuid),
              :event_name,
              CAST(:properties AS jsonb)
            )
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id or "",
            "event_id": event_id or "",
            "group_id": group_id or "",
            "event_name": event_name,
            "properties": json.dumps(properties),
        },
    )


def emit_product_event(
    *,
    event_name: str,
    user_id: str | None = None,
    event_id: str | None = None,
    group_id: str | None = None,
    properties: dict[str, Any] | None = None,
) -> None:
    """Fire-and-forget analytics write. Failures are logged and dropped."""
    try:
        with SessionLocal() as db:
            log_product_event(
                db,
                event_name=event_name,
                user_id=user_id,
                event_id=event_id,
                group_id=group_id,
                properties=properties,
            )
            db.commit()
    except SQLAlchemyError as exc:
        logger.warning("[analytics] dropped %s event: %s", event_name, exc)


def notify_group_assigned(*, group_id: str, event_id: str, user_ids: list[str]) -> int:
    queued = 0
    for uid in user_ids:
        try:
            repo.enqueue_outbox_notification(
                user_id=uid,
                notification_type="group_assigned",
                payload={"group_id": group_id, "event_id": event_id},
                idempotency_key=f"group_assigned:{group_id}:{uid}",
            )
            queued += 1
        except SQLAlchemyError as exc:
            logger.warning("[analytics] notification for user=%s group=%s not queued: %s", uid, group_id, exc)
    return queued
