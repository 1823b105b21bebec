"""
Bridges from configuration to kernel value objects.

The kernel never imports fees_config; these functions hand it the plain
values it needs.
"""

from fees_config.schema import FeesConfiguration
from fees_kernel.domain.notifications import NotificationPolicy
from fees_kernel.services.student_serializer import StudentLockRegistry


def notification_policy(config: FeesConfiguration) -> NotificationPolicy:
    return NotificationPolicy(
        school_name=config.school.name,
        currency=config.school.currency,
        operator_recipients=config.notifications.operator_recipients,
        notify_operator_on_payment=config.notifications.notify_operator_on_payment,
    )


def student_lock_registry(config: FeesConfiguration) -> StudentLockRegistry:
    return StudentLockRegistry(
        timeout_seconds=config.concurrency.student_lock_timeout_seconds
    )
