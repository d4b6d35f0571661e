import json
import uuid

from django.core.serializers.json import DjangoJSONEncoder

from core.models import AuditLog


def _parse_uuid(value):
    if not value:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def _json_safe(value):
    if value is None:
        return None
    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def get_request_id(request):
    if request is None:
        return None
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID")


def create_audit_log(
    *,
    actor=None,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    if actor is not None and not getattr(actor, "is_authenticated", False):
        actor = None
    return AuditLog.objects.create(
        actor=actor,
        action=action,
        entity=entity,
        entity_id=_parse_uuid(entity_id),
        before_snapshot=_json_safe(before_snapshot),
        after_snapshot=_json_safe(after_snapshot),
        request_id=request_id,
    )


def create_audit_log_from_request(
    request,
    *,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
):
    return create_audit_log(
        actor=getattr(request, "user", None),
        action=action,
        entity=entity,
        entity_id=entity_id,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=get_request_id(request),
    )
