"""
Tests for building candidate notifications from a kind and its context.
"""

import pytest

from notifications.domain.builder import (
    MISSING_FIELD_PLACEHOLDER,
    build_notification,
    render,
    stable_subject_id,
)
from notifications.domain.entities import (
    KindFamily,
    NotificationKind,
    NotificationPriority,
)
from notifications.domain.exceptions import UnknownKindError

LOW_STOCK_CONTEXT = {
    "productId": 7,
    "productName": "Paracetamol 500mg",
    "currentStock": 8,
    "reorderLevel": 10,
    "criticalLevel": 5,
}


class TestRendering:
    """Template substitution."""

    def test_low_stock_message_is_rendered_from_context(self):
        notification = build_notification("low_stock", "pharmacist-1", LOW_STOCK_CONTEXT)

        assert notification.title == "Low Stock Warning"
        assert notification.message == (
            "Paracetamol 500mg is running low: 8 units remaining (reorder at 10)"
        )

    def test_missing_fields_render_as_placeholder(self):
        notification = build_notification("low_stock", "pharmacist-1", {"productId": 7})

        assert notification.message == (
            f"{MISSING_FIELD_PLACEHOLDER} is running low: {MISSING_FIELD_PLACEHOLDER} "
            f"units remaining (reorder at {MISSING_FIELD_PLACEHOLDER})"
        )

    def test_malformed_template_falls_back_to_template(self):
        assert render("{unclosed", {"unclosed": 1}) == "{unclosed"

    def test_none_values_render_as_placeholder(self):
        assert render("{a}-{b}", {"a": 1, "b": None}) == f"1-{MISSING_FIELD_PLACEHOLDER}"


class TestContextNormalization:
    """Context payloads are validated per family and keyed in camelCase."""

    def test_snake_case_keys_are_normalized(self):
        notification = build_notification(
            "low_stock",
            "pharmacist-1",
            {"product_id": 7, "product_name": "Ibuprofen", "current_stock": 8},
        )

        assert notification.context["productName"] == "Ibuprofen"
        assert notification.context["currentStock"] == 8
        assert "product_name" not in notification.context
        assert notification.message.startswith("Ibuprofen is running low")

    def test_unknown_keys_are_kept(self):
        notification = build_notification(
            "sale_completed", "pharmacist-1", {"saleId": 3, "cashier": "amaka"}
        )
        assert notification.context["cashier"] == "amaka"

    def test_invalid_field_is_dropped_and_the_rest_kept(self):
        notification = build_notification(
            "low_stock",
            "pharmacist-1",
            {"productId": 7, "product_name": "X", "currentStock": "lots"},
        )

        assert notification.context == {"productId": 7, "productName": "X"}
        assert notification.dedup_key == "low_stock:7"
        assert f"{MISSING_FIELD_PLACEHOLDER} units remaining" in notification.message
        assert notification.priority == NotificationPriority.MEDIUM

    def test_invalid_snake_case_field_is_dropped(self):
        notification = build_notification(
            "expiry_warning",
            "pharmacist-1",
            {"product_name": "Amoxicillin", "days_until_expiry": "soon"},
        )

        assert notification.context == {"productName": "Amoxicillin"}

    def test_expiry_date_is_serialized(self):
        notification = build_notification(
            "expiry_warning",
            "pharmacist-1",
            {"productId": 1, "expiryDate": "2026-04-01", "daysUntilExpiry": 22},
        )
        assert notification.context["expiryDate"] == "2026-04-01"


class TestPriority:
    """Base priorities and context escalation."""

    def test_low_stock_above_critical_level_keeps_base_priority(self):
        notification = build_notification("low_stock", "pharmacist-1", LOW_STOCK_CONTEXT)
        assert notification.priority == NotificationPriority.MEDIUM

    def test_low_stock_at_critical_level_escalates_to_high(self):
        context = {**LOW_STOCK_CONTEXT, "currentStock": 5}
        notification = build_notification("low_stock", "pharmacist-1", context)
        assert notification.priority == NotificationPriority.HIGH

    def test_low_stock_uses_default_critical_level(self):
        notification = build_notification(
            "low_stock", "pharmacist-1", {"productId": 2, "currentStock": 3}
        )
        assert notification.priority == NotificationPriority.HIGH

    @pytest.mark.parametrize(
        ("days", "expected"),
        [
            (10, NotificationPriority.HIGH),
            (14, NotificationPriority.HIGH),
            (20, NotificationPriority.MEDIUM),
        ],
    )
    def test_expiry_warning_escalates_within_two_weeks(self, days, expected):
        notification = build_notification(
            "expiry_warning", "pharmacist-1", {"productId": 1, "daysUntilExpiry": days}
        )
        assert notification.priority == expected

    def test_critical_anomaly_escalates_to_critical(self):
        notification = build_notification(
            "ml_anomaly", "pharmacist-1", {"productId": 4, "severity": "CRITICAL"}
        )
        assert notification.priority == NotificationPriority.CRITICAL

    def test_escalation_never_lowers_priority(self):
        notification = build_notification(
            "critical_stock", "pharmacist-1", {**LOW_STOCK_CONTEXT, "currentStock": 2}
        )
        assert notification.priority == NotificationPriority.CRITICAL


class TestBuiltNotification:
    """Shape of the candidate handed to the dispatcher."""

    def test_candidate_carries_rule_metadata(self):
        notification = build_notification(
            NotificationKind.CRITICAL_STOCK, "pharmacist-1", LOW_STOCK_CONTEXT
        )

        assert notification.kind == NotificationKind.CRITICAL_STOCK
        assert notification.family == KindFamily.INVENTORY
        assert notification.persistent is True
        assert notification.icon == "AlertTriangle"
        assert notification.color == "red"

    def test_candidate_is_unsaved(self):
        notification = build_notification("low_stock", "pharmacist-1", LOW_STOCK_CONTEXT)

        assert notification.id is None
        assert notification.created_at is None
        assert notification.is_read is False

    def test_unknown_kind_raises(self):
        with pytest.raises(UnknownKindError):
            build_notification("low_stok", "pharmacist-1", LOW_STOCK_CONTEXT)

    def test_none_context_is_accepted(self):
        notification = build_notification("daily_report", "pharmacist-1", None)
        assert notification.context == {}


class TestDedupKey:
    """Dedup keys combine the kind and a stable subject identifier."""

    def test_dedup_key_uses_product_id(self):
        notification = build_notification("low_stock", "pharmacist-1", LOW_STOCK_CONTEXT)
        assert notification.dedup_key == "low_stock:7"

    def test_dedup_key_differs_per_kind(self):
        low = build_notification("low_stock", "pharmacist-1", LOW_STOCK_CONTEXT)
        critical = build_notification("critical_stock", "pharmacist-1", LOW_STOCK_CONTEXT)
        assert low.dedup_key != critical.dedup_key

    def test_subject_without_identifier_uses_stable_digest(self):
        first = build_notification("system_alert", "a", {"message": "Backup completed"})
        second = build_notification("system_alert", "b", {"message": "Backup completed"})
        other = build_notification("system_alert", "a", {"message": "Backup failed"})

        assert first.dedup_key == second.dedup_key
        assert first.dedup_key != other.dedup_key

    def test_digest_ignores_key_order(self):
        assert stable_subject_id({"a": 1, "b": 2}) == stable_subject_id({"b": 2, "a": 1})
