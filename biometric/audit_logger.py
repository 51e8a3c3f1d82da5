from flask import current_app
from models import db
from models.audit_log import AuditLog

def log_action(actor, action, entity, entity_id=None, meta=None):
    """
    Adds an audit log row to the current session; the caller's commit
    persists it together with the change it describes.
    Never store raw punch files in meta.
    """
    log = AuditLog(
        user_id=getattr(actor, "id", None),
        action=action,
        entity=entity,
        entity_id=entity_id,
        meta=meta,
    )
    db.session.add(log)
    current_app.logger.info(f"AUDIT {action} {entity}#{entity_id} by user {log.user_id}")
    return log
