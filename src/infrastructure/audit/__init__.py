# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Append-only audit trail for lifecycle mutations."""

from src.infrastructure.audit.sink import DatabaseAuditSink

__all__ = ["DatabaseAuditSink"]
