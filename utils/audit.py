import json
from flask import current_app, has_request_context, request
from models import db
from models.audit_log import AuditLog

def log_event(action: str, user_id=None, entity=None, entity_id=None, metadata=None):
    # background jobs (reaper, birthday bonus) run without a request
    ip = None
    user_agent = None
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = request.headers.get("User-Agent", "")

    row = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None
    )
    db.session.add(row)
    db.session.commit()


def record_event(action: str, user_id=None, entity=None, entity_id=None, metadata=None) -> bool:
    """Best-effort log_event for writes that follow an already committed change.

    A failed audit insert is logged and rolled back; it never undoes or
    interrupts the business change it describes.
    """
    try:
        log_event(action, user_id=user_id, entity=entity, entity_id=entity_id, metadata=metadata)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to write audit event %s for %s %s", action, entity, entity_id)
        return False
    return True
