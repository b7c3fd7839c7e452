# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer for persistence and external service integrations.

This package contains:
- Database connections and ORM models (SQLAlchemy async)
- The database-backed audit sink
- The notification outbox
- HTTP clients for the roster, capacity, fee and notification services
"""
