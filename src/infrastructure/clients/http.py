# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""HTTP clients for the roster, capacity, fee and notification services.

Every client wraps one httpx.AsyncClient. Transport and HTTP status
failures are raised as CollaboratorError.

Example:
    collaborators = build_http_collaborators(settings.services)
    members = await collaborators.roster.list_cohort("7", "2024-2025")
    await close_http_collaborators(collaborators)
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from src.core.config.settings import ServicesSettings
from src.domains.lifecycle.ports import (
    CapacitySnapshot,
    CohortMember,
    LifecycleCollaborators,
)
from src.models.lifecycle import ExamResult, ExitStatus

logger = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """Raised when an external collaborator call fails.

    Attributes:
        service: Name of the collaborator.
        status_code: HTTP status code, if a response was received.
    """

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class CohortMemberPayload(BaseModel):
    """Student entry returned by the roster service."""

    student_id: str
    name: str
    attendance_pct: float = Field(ge=0, le=100)
    exam_result: ExamResult
    roll: int | None = None
    section: str | None = None
    academic_score: float | None = None
    guardian_contact: str | None = None

    def to_member(self) -> CohortMember:
        return CohortMember(**self.model_dump())


class CapacityPayload(BaseModel):
    """Capacity returned by the capacity service; null capacity is unlimited."""

    capacity: int | None = None
    current_enrolled: int = Field(ge=0)


class ServiceClient:
    """Base class for collaborator clients."""

    service_name = "collaborator"

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service base URL.
            headers: Headers sent on every request.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "%s returned %d for %s %s",
                self.service_name,
                e.response.status_code,
                method,
                path,
            )
            raise CollaboratorError(
                self.service_name,
                f"{method} {path} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.warning("%s request failed: %s %s: %s", self.service_name, method, path, str(e))
            raise CollaboratorError(self.service_name, f"{method} {path} failed: {e}") from e
        return response

    async def aclose(self) -> None:
        await self._client.aclose()


class RosterClient(ServiceClient):
    """Roster/directory service client."""

    service_name = "roster"

    async def list_cohort(self, class_id: str, year: str) -> list[CohortMember]:
        response = await self._request(
            "GET", "/cohorts", params={"class_id": class_id, "academic_year": year}
        )
        payload = response.json()
        return [CohortMemberPayload.model_validate(item).to_member() for item in payload["students"]]

    async def apply_placement(
        self, student_id: str, class_id: str, section: str | None, roll: int | None
    ) -> None:
        await self._request(
            "PUT",
            f"/students/{student_id}/placement",
            json={"class_id": class_id, "section": section, "roll": roll},
        )


class CapacityClient(ServiceClient):
    """Class capacity service client."""

    service_name = "capacity"

    async def get_capacity(self, class_id: str, year: str) -> CapacitySnapshot:
        response = await self._request(
            "GET", f"/classes/{class_id}/capacity", params={"academic_year": year}
        )
        payload = CapacityPayload.model_validate(response.json())
        return CapacitySnapshot(
            class_id=class_id,
            capacity=payload.capacity,
            current_enrolled=payload.current_enrolled,
        )


class FeeClient(ServiceClient):
    """Fee service client."""

    service_name = "fee"

    async def assign_fee_structure(self, student_id: str, year: str) -> None:
        await self._request(
            "POST",
            "/fee-assignments",
            json={"student_id": student_id, "academic_year": year},
        )

    async def revoke_fee_structure(self, student_id: str, year: str) -> None:
        await self._request("DELETE", f"/fee-assignments/{student_id}/{year}")


class NotificationClient(ServiceClient):
    """Notification service client."""

    service_name = "notification"

    async def send_promotion_notice(
        self, student_id: str, guardian_contact: str | None, payload: dict[str, Any]
    ) -> None:
        await self._request(
            "POST",
            "/notifications",
            json={
                "kind": "promotion_notice",
                "student_id": student_id,
                "guardian_contact": guardian_contact,
                "payload": payload,
            },
        )

    async def send_archive_confirmation(
        self,
        student_id: str,
        guardian_contact: str | None,
        exit_status: ExitStatus,
    ) -> None:
        await self._request(
            "POST",
            "/notifications",
            json={
                "kind": "archive_confirmation",
                "student_id": student_id,
                "guardian_contact": guardian_contact,
                "payload": {"exit_status": exit_status.value},
            },
        )


def build_http_collaborators(
    services: ServicesSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LifecycleCollaborators:
    """Build HTTP collaborators from settings.

    Args:
        services: Collaborator endpoint settings.
        transport: Optional transport shared by all clients.

    Returns:
        LifecycleCollaborators backed by HTTP clients.
    """
    options: dict[str, Any] = {
        "headers": services.auth_headers,
        "timeout": services.timeout,
        "transport": transport,
    }
    return LifecycleCollaborators(
        roster=RosterClient(services.roster_url, **options),
        capacity=CapacityClient(services.capacity_url, **options),
        fee=FeeClient(services.fee_url, **options),
        notifier=NotificationClient(services.notification_url, **options),
    )


async def close_http_collaborators(collaborators: LifecycleCollaborators) -> None:
    """Close every HTTP client in the bundle."""
    for client in (
        collaborators.roster,
        collaborators.capacity,
        collaborators.fee,
        collaborators.notifier,
    ):
        if isinstance(client, ServiceClient):
            await client.aclose()
