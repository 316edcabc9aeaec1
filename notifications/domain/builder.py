import hashlib
import json
import string
from typing import Any, Dict, Mapping

from loguru import logger
from pydantic import ValidationError
from pydantic.alias_generators import to_camel, to_snake

from .catalog import KindRule, lookup
from .entities import Notification, NotificationKind

MISSING_FIELD_PLACEHOLDER = "Unknown"

# First present key wins; the order is most to least specific.
SUBJECT_KEYS = ("productId", "saleId", "subjectId", "errorCode", "reportDate")


class _TemplateFields(dict):
    def __missing__(self, key: str) -> str:
        return MISSING_FIELD_PLACEHOLDER


_formatter = string.Formatter()


def render(template: str, context: Mapping[str, Any]) -> str:
    """Substitute context values into a `str.format` template.

    Fields absent from `context` render as "Unknown". A malformed template or
    an unformattable value falls back to the raw template instead of raising.
    """
    fields = _TemplateFields(
        {key: value for key, value in context.items() if value is not None}
    )
    try:
        return _formatter.vformat(template, (), fields)
    except (ValueError, IndexError, AttributeError, TypeError) as e:
        logger.warning(f"⚠️ Could not render template {template!r}: {e}")
        return template


def normalize_context(rule: KindRule, context: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Validate `context` against the kind family's model and normalize its keys.

    Fields that fail validation are dropped and the rest are normalized. If
    the remainder still does not validate, the payload is kept as given.
    """
    raw = dict(context or {})
    model = rule.context_model
    try:
        return model.model_validate(raw).normalized()
    except ValidationError as e:
        invalid = {str(error["loc"][0]) for error in e.errors() if error["loc"]}

    valid = {
        key: value
        for key, value in raw.items()
        if not {key, to_camel(key), to_snake(key)} & invalid
    }
    logger.warning(
        f"⚠️ {model.__name__} rejected {', '.join(sorted(set(raw) - set(valid)))}, dropping them"
    )
    try:
        return model.model_validate(valid).normalized()
    except ValidationError as e:
        logger.warning(
            f"⚠️ {model.__name__} rejected context, using it unvalidated: "
            f"{e.error_count()} error(s)"
        )
        return raw


def stable_subject_id(context: Mapping[str, Any]) -> str:
    """Identifier of the subject a notification is about.

    Falls back to a digest of the whole context when no subject key is present,
    so identical payloads still collapse onto one dedup key.
    """
    for key in SUBJECT_KEYS:
        value = context.get(key)
        if value is not None and value != "":
            return str(value)

    canonical = json.dumps(context, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:16]


def build_notification(
    kind: NotificationKind | str,
    recipient_id: str,
    context: Mapping[str, Any] | None = None,
) -> Notification:
    """Build an unsaved notification from a kind and its triggering context.

    Parameters
    ----------
    kind : NotificationKind | str
        Kind of notification to build.
    recipient_id : str
        Recipient of the notification.
    context : Mapping[str, Any] | None, optional
        Triggering payload, camelCase or snake_case keys.

    Returns
    -------
    Notification
        Candidate notification without id, timestamp or urgency.

    Raises
    ------
    UnknownKindError
        If `kind` has no catalog rule.
    """
    rule = lookup(kind)
    kind = NotificationKind(kind)
    normalized = normalize_context(rule, context)

    priority = rule.base_priority
    if rule.escalation is not None:
        escalated = rule.escalation(normalized)
        if escalated is not None:
            priority = priority.raised_to(escalated)

    return Notification(
        recipient_id=recipient_id,
        kind=kind,
        family=rule.family,
        title=render(rule.title_template, normalized),
        message=render(rule.message_template, normalized),
        priority=priority,
        dedup_key=f"{kind.value}:{stable_subject_id(normalized)}",
        context=normalized,
        icon=rule.icon,
        color=rule.color,
        persistent=rule.persistent,
    )
