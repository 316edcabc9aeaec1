from typing import Any, Mapping

from .entities import Notification, NotificationPriority, UrgencyAssessment

BASE_URGENCY = {
    NotificationPriority.LOW: 10.0,
    NotificationPriority.MEDIUM: 40.0,
    NotificationPriority.HIGH: 70.0,
    NotificationPriority.CRITICAL: 90.0,
}
CONFIDENCE_WEIGHT = 10.0
IMPACT_BONUS = 10.0
ACTION_THRESHOLD = 60.0

# Monetary fields, checked in order; the first present one is the impact.
IMPACT_KEYS = ("additionalProfit", "potentialRevenue", "revenueImpact")


def _float(context: Mapping[str, Any], key: str) -> float | None:
    value = context.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def score(
    notification: Notification, profit_threshold: float = 1000.0
) -> UrgencyAssessment:
    """Derive urgency and the action-required flag of a notification.

    The score starts from the priority's base value, gains up to 10 points
    from `confidence` (clamped to [0, 1]) and 10 points when the monetary
    impact reaches `profit_threshold`, and is clamped to [0, 100].

    Parameters
    ----------
    notification : Notification
        Notification to score.
    profit_threshold : float, default=1000.0
        Impact from which the monetary bonus applies.

    Returns
    -------
    UrgencyAssessment
        Urgency score and action-required flag.
    """
    context = notification.context or {}
    urgency = BASE_URGENCY[notification.priority]

    confidence = _float(context, "confidence")
    if confidence is not None:
        urgency += min(max(confidence, 0.0), 1.0) * CONFIDENCE_WEIGHT

    impact = next(
        (value for key in IMPACT_KEYS if (value := _float(context, key)) is not None),
        None,
    )
    if impact is not None and impact >= profit_threshold:
        urgency += IMPACT_BONUS

    urgency = min(max(urgency, 0.0), 100.0)

    action_required = notification.priority == NotificationPriority.CRITICAL or (
        notification.priority == NotificationPriority.HIGH
        and urgency >= ACTION_THRESHOLD
    )
    return UrgencyAssessment(urgency_score=urgency, action_required=action_required)
