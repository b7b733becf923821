import json

from flask import current_app

from .app import db
from .models import ActivityLog

ENTITY_TYPES = (
    'user',
    'group',
    'group_member',
    'player',
    'matchday',
    'team',
    'team_assignment',
    'game',
)
ACTIONS = ('create', 'update', 'delete', 'restore')

# bookkeeping columns that change on every write and carry no meaning in a diff
_VOLATILE_KEYS = ('created_at', 'updated_at', 'created_by', 'updated_by')


def generate_diff(old, new):
    """Describe what changed between two snapshots of an entity.

    ``old`` of ``None`` means the entity was created, ``new`` of ``None``
    means it was deleted. Otherwise only keys whose values differ are
    reported, as ``{key: {'from': ..., 'to': ...}}``.
    """
    if old is None:
        return {'created': new}
    if new is None:
        return {'deleted': old}
    diff = {}
    for key in list(old) + [k for k in new if k not in old]:
        before = old.get(key)
        after = new.get(key)
        if before != after:
            diff[key] = {'from': before, 'to': after}
    return diff


def snapshot(obj):
    data = obj.to_dict()
    for key in _VOLATILE_KEYS:
        data.pop(key, None)
    return data


def activity_enabled():
    return current_app.config.get('ACTIVITY_LOG_ENABLED', True)


def log_activity(entity_type, entity_id, action, actor_id, changes=None, metadata=None):
    if not activity_enabled():
        return None
    entry = ActivityLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        changes=json.dumps(changes, default=str) if changes is not None else None,
        details=json.dumps(metadata, default=str) if metadata is not None else None,
    )
    db.session.add(entry)
    db.session.commit()
    return entry


def log_change(entity_type, obj, action, actor_id, before=None, metadata=None):
    """Record ``action`` on ``obj`` with a diff against the ``before`` snapshot."""
    if action == 'create':
        changes = generate_diff(None, snapshot(obj))
    elif action == 'delete' and before is None:
        changes = generate_diff(snapshot(obj), None)
    else:
        changes = generate_diff(before or {}, snapshot(obj))
    return log_activity(entity_type, obj.id, action, actor_id, changes=changes, metadata=metadata)


def recent_activity(entity_type=None, entity_id=None, actor_id=None, limit=50):
    query = db.session.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    if actor_id is not None:
        query = query.filter(ActivityLog.actor_id == actor_id)
    return query.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit).all()
