# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification delivery for lifecycle events.

Notifications are queued in the outbox inside the lifecycle transaction
and delivered after commit.
"""

from src.infrastructure.notifications.outbox import (
    DeliveryStatus,
    NotificationKind,
    NotificationOutbox,
)

__all__ = [
    "DeliveryStatus",
    "NotificationKind",
    "NotificationOutbox",
]
