# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification outbox.

Promotion notices and archive confirmations are queued as rows inside the
lifecycle transaction, so a rolled-back batch never notifies anyone.
dispatch_pending() delivers them after commit through the notification
collaborator; delivery failures are recorded on the row and retried on the
next dispatch until max_attempts is reached.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.models import NotificationOutboxEntry, generate_uuid
from src.models.lifecycle import ExitStatus
from src.utils.datetime import utc_now

if TYPE_CHECKING:
    from src.domains.lifecycle.ports import NotificationPort

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Kinds of queued lifecycle notifications."""

    PROMOTION_NOTICE = "promotion_notice"
    ARCHIVE_CONFIRMATION = "archive_confirmation"


class DeliveryStatus(str, Enum):
    """Delivery status of an outbox entry."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationOutbox:
    """Transactional outbox for lifecycle notifications.

    Attributes:
        db: Async database session shared with the mutating service.
        max_attempts: Delivery attempts before an entry is marked failed.
    """

    def __init__(self, db: AsyncSession, max_attempts: int = 3) -> None:
        self.db = db
        self.max_attempts = max_attempts

    def queue_promotion_notice(
        self,
        student_id: str,
        guardian_contact: str | None,
        payload: dict[str, Any],
    ) -> str:
        """Queue a promotion notice. Returns the outbox entry id."""
        return self._queue(
            NotificationKind.PROMOTION_NOTICE, student_id, guardian_contact, payload
        )

    def queue_archive_confirmation(
        self,
        student_id: str,
        guardian_contact: str | None,
        exit_status: ExitStatus,
    ) -> str:
        """Queue an archive confirmation. Returns the outbox entry id."""
        return self._queue(
            NotificationKind.ARCHIVE_CONFIRMATION,
            student_id,
            guardian_contact,
            {"exit_status": exit_status.value},
        )

    def _queue(
        self,
        kind: NotificationKind,
        student_id: str,
        guardian_contact: str | None,
        payload: dict[str, Any],
    ) -> str:
        entry_id = generate_uuid()
        self.db.add(
            NotificationOutboxEntry(
                id=entry_id,
                kind=kind.value,
                student_id=student_id,
                guardian_contact=guardian_contact,
                payload=payload,
                status=DeliveryStatus.PENDING.value,
                attempts=0,
            )
        )
        return entry_id

    async def dispatch_pending(
        self,
        notifier: "NotificationPort",
        entry_ids: Sequence[str] | None = None,
    ) -> int:
        """Deliver pending notifications and commit their delivery state.

        Args:
            notifier: Notification collaborator.
            entry_ids: Restrict delivery to these entries.

        Returns:
            Number of notifications delivered.
        """
        query = select(NotificationOutboxEntry).where(
            NotificationOutboxEntry.status == DeliveryStatus.PENDING.value
        )
        if entry_ids is not None:
            if not entry_ids:
                return 0
            query = query.where(NotificationOutboxEntry.id.in_(list(entry_ids)))

        result = await self.db.execute(query.order_by(NotificationOutboxEntry.created_at))
        entries = list(result.scalars().all())

        sent = 0
        for entry in entries:
            entry.attempts += 1
            try:
                await self._deliver(notifier, entry)
            except Exception as e:
                entry.last_error = str(e)
                if entry.attempts >= self.max_attempts:
                    entry.status = DeliveryStatus.FAILED.value
                logger.warning(
                    "Notification delivery failed: kind=%s, student=%s, attempt=%d, error=%s",
                    entry.kind,
                    entry.student_id,
                    entry.attempts,
                    str(e),
                )
                continue

            entry.status = DeliveryStatus.SENT.value
            entry.sent_at = utc_now()
            entry.last_error = None
            sent += 1

        await self.db.commit()

        if entries:
            logger.info("Dispatched notifications: sent=%d, total=%d", sent, len(entries))
        return sent

    async def _deliver(self, notifier: "NotificationPort", entry: NotificationOutboxEntry) -> None:
        if entry.kind == NotificationKind.PROMOTION_NOTICE.value:
            await notifier.send_promotion_notice(
                entry.student_id, entry.guardian_contact, dict(entry.payload)
            )
        elif entry.kind == NotificationKind.ARCHIVE_CONFIRMATION.value:
            await notifier.send_archive_confirmation(
                entry.student_id,
                entry.guardian_contact,
                ExitStatus(entry.payload["exit_status"]),
            )
        else:
            raise ValueError(f"Unknown notification kind: {entry.kind}")
