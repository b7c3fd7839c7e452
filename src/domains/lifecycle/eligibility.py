# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Default promotion eligibility.

Attendance is a hard gate checked before the exam result; it is never
averaged with the academic score.
"""

from src.domains.lifecycle.errors import ValidationError
from src.models.lifecycle import ExamResult, LifecycleStatus

DEFAULT_MIN_ATTENDANCE_PCT = 75.0


def evaluate_eligibility(
    attendance_pct: float,
    exam_result: ExamResult,
    min_attendance_pct: float = DEFAULT_MIN_ATTENDANCE_PCT,
) -> LifecycleStatus:
    """Compute a student's default promotion status.

    Args:
        attendance_pct: Attendance percentage, 0 to 100.
        exam_result: Final exam result.
        min_attendance_pct: Attendance below this retains the student.

    Returns:
        LifecycleStatus.RETAINED or LifecycleStatus.ELIGIBLE.

    Raises:
        ValidationError: If attendance is outside 0 to 100.
    """
    if not 0 <= attendance_pct <= 100:
        raise ValidationError(
            f"Attendance must be between 0 and 100, got {attendance_pct}",
            code="invalid_input",
        )

    if attendance_pct < min_attendance_pct:
        return LifecycleStatus.RETAINED
    if exam_result in (ExamResult.FAIL, ExamResult.WITHHELD):
        return LifecycleStatus.RETAINED
    return LifecycleStatus.ELIGIBLE


class EligibilityEvaluator:
    """Evaluator bound to a configured attendance threshold."""

    def __init__(self, min_attendance_pct: float = DEFAULT_MIN_ATTENDANCE_PCT) -> None:
        self.min_attendance_pct = min_attendance_pct

    def evaluate(self, attendance_pct: float, exam_result: ExamResult) -> LifecycleStatus:
        return evaluate_eligibility(attendance_pct, exam_result, self.min_attendance_pct)
