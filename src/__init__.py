"""Student Lifecycle Service.

Cohort promotion, override auditing, capacity gating and alumni archive
management for school administration systems.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "0.1.0"
