import logging
from collections.abc import Mapping

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from common.audit import create_audit_log
from common.errors import CannotDeleteDefaultError, TemplateNotFoundError, TemplateValidationError
from common.utils import to_bool, to_number
from labels.elements import elements_from_dicts
from labels.models import LabelTemplate
from labels.validation import validate_template

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (Copy)"
IMPORT_SUFFIX = " (Imported)"
EDITABLE_FIELDS = ("name", "width", "height", "elements")


def _number(value):
    number = to_number(value)
    if number is None:
        return value
    return int(number) if number.is_integer() else number


def get_template(template_id):
    try:
        template = LabelTemplate.objects.filter(pk=template_id).first()
    except (DjangoValidationError, ValueError, TypeError):
        template = None
    if template is None:
        raise TemplateNotFoundError()
    return template


def template_payload(template):
    return {
        "name": template.name,
        "width": _number(template.width),
        "height": _number(template.height),
        "isDefault": template.is_default,
        "elements": list(template.elements or []),
    }


def wants_default(data):
    return to_bool(data.get("isDefault", data.get("is_default")))


def _ensure_valid(payload):
    result = validate_template(payload)
    if not result.is_valid:
        raise TemplateValidationError(result.errors)


def _normalized(payload):
    return {
        "name": payload["name"].strip(),
        "width": to_number(payload["width"]),
        "height": to_number(payload["height"]),
        "elements": [element.to_dict() for element in elements_from_dicts(payload["elements"])],
    }


def _clear_default(exclude_id=None):
    others = LabelTemplate.objects.filter(is_default=True)
    if exclude_id is not None:
        others = others.exclude(pk=exclude_id)
    others.update(is_default=False)


def _audit(action, template_id, *, actor=None, request_id=None, before=None, after=None):
    create_audit_log(
        actor=actor,
        action=f"label_template.{action}",
        entity="label_template",
        entity_id=template_id,
        before_snapshot=before,
        after_snapshot=after,
        request_id=request_id,
    )


def _save_new(payload, *, is_default=False, actor=None, request_id=None):
    _ensure_valid(payload)
    with transaction.atomic():
        if is_default:
            _clear_default()
        template = LabelTemplate.objects.create(is_default=is_default, **_normalized(payload))
        if is_default:
            _audit("set_default", template.id, actor=actor, request_id=request_id, after={"name": template.name})
    logger.info("label_template_created", extra={"template_id": str(template.id)})
    return template


def create_template(data, *, actor=None, request_id=None):
    if not isinstance(data, Mapping):
        raise TemplateValidationError(["Template data must be an object"])
    payload = {field: data.get(field) for field in EDITABLE_FIELDS}
    return _save_new(payload, is_default=wants_default(data), actor=actor, request_id=request_id)


def update_template(template_id, changes, *, actor=None, request_id=None):
    """Merge `changes` over the stored template and save it if the result is valid."""
    template = get_template(template_id)
    if not isinstance(changes, Mapping):
        raise TemplateValidationError(["Template data must be an object"])

    payload = template_payload(template)
    payload.update({field: changes[field] for field in EDITABLE_FIELDS if field in changes})
    _ensure_valid(payload)

    with transaction.atomic():
        for field, value in _normalized(payload).items():
            setattr(template, field, value)
        template.save()

        if "isDefault" in changes or "is_default" in changes:
            if wants_default(changes) and not template.is_default:
                set_default(template.id, actor=actor, request_id=request_id)
                template.refresh_from_db()
            elif not wants_default(changes) and template.is_default:
                template.is_default = False
                template.save(update_fields=["is_default", "updated_at"])
                _audit("unset_default", template.id, actor=actor, request_id=request_id)

    logger.info("label_template_updated", extra={"template_id": str(template.id)})
    return template


def delete_template(template_id, *, actor=None, request_id=None):
    template = get_template(template_id)
    if template.is_default:
        raise CannotDeleteDefaultError()
    snapshot = template_payload(template)
    template.delete()
    _audit("delete", template_id, actor=actor, request_id=request_id, before=snapshot)
    logger.info("label_template_deleted", extra={"template_id": str(template_id)})


@transaction.atomic
def set_default(template_id, *, actor=None, request_id=None):
    template = get_template(template_id)
    previous = LabelTemplate.objects.filter(is_default=True).exclude(pk=template.pk).values_list("pk", flat=True).first()
    _clear_default(exclude_id=template.pk)
    if not template.is_default:
        template.is_default = True
        template.save(update_fields=["is_default", "updated_at"])
    _audit(
        "set_default",
        template.id,
        actor=actor,
        request_id=request_id,
        before={"default_id": str(previous) if previous else None},
        after={"default_id": str(template.id)},
    )
    return template


def get_default_template():
    return LabelTemplate.objects.filter(is_default=True).first()


def duplicate_template(template_id, *, actor=None, request_id=None):
    source = get_template(template_id)
    payload = template_payload(source)
    payload["name"] = f"{source.name}{COPY_SUFFIX}"
    return _save_new(payload, actor=actor, request_id=request_id)


def export_template(template_id):
    return template_payload(get_template(template_id))


def import_template(blob, *, actor=None, request_id=None):
    """Create a template from an exported blob; the copy is never the default."""
    if not isinstance(blob, Mapping):
        raise TemplateValidationError(["Template data must be an object"])
    payload = {field: blob.get(field) for field in EDITABLE_FIELDS}
    _ensure_valid(payload)
    payload["name"] = f"{payload['name']}{IMPORT_SUFFIX}"
    return _save_new(payload, actor=actor, request_id=request_id)
