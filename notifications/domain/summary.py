from typing import Iterable

from .entities import DashboardSummary, Notification, NotificationPriority


def summarize(notifications: Iterable[Notification]) -> DashboardSummary:
    """Reduce notifications to dashboard counts; an empty input yields zeros."""
    by_priority = {priority: 0 for priority in NotificationPriority}
    total = action_required = ml_generated = 0

    for notification in notifications:
        total += 1
        by_priority[notification.priority] += 1
        action_required += notification.action_required
        ml_generated += notification.is_ml_generated

    return DashboardSummary(
        total_active=total,
        by_priority=by_priority,
        action_required_count=action_required,
        ml_generated_count=ml_generated,
    )
