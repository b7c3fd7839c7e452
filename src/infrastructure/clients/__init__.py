# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""HTTP clients for external lifecycle collaborators."""

from src.infrastructure.clients.http import (
    CapacityClient,
    CollaboratorError,
    FeeClient,
    NotificationClient,
    RosterClient,
    ServiceClient,
    build_http_collaborators,
    close_http_collaborators,
)

__all__ = [
    "CapacityClient",
    "CollaboratorError",
    "FeeClient",
    "NotificationClient",
    "RosterClient",
    "ServiceClient",
    "build_http_collaborators",
    "close_http_collaborators",
]
