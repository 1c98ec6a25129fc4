from .ledger import DEFAULT_LEDGER_PATH, NotificationLedger
from .messages import TEST_EMAIL_SUBJECT, ComposedEmail, build_test_email
from .policy import (
    REBOOT_ACTIONS,
    NotificationChannel,
    NotificationDecision,
    NotificationPayload,
    NotificationStatus,
    RemediationDecision,
    cooldown_key,
    evaluate_notifications,
    within_cooldown,
)

__all__ = [
    "DEFAULT_LEDGER_PATH",
    "REBOOT_ACTIONS",
    "TEST_EMAIL_SUBJECT",
    "ComposedEmail",
    "NotificationChannel",
    "NotificationDecision",
    "NotificationLedger",
    "NotificationPayload",
    "NotificationStatus",
    "RemediationDecision",
    "build_test_email",
    "cooldown_key",
    "evaluate_notifications",
    "within_cooldown",
]
