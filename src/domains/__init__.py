# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer for the student lifecycle service.

Domains:
    lifecycle: Eligibility, overrides, capacity gating, promotion batches
        and the alumni archive.
"""
