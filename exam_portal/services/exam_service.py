"""
services/exam_service.py

시험 채점 및 응시 가능 여부 판정 비즈니스 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경 없음.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Mapping, Optional

from exam_portal.models.question_model import ExamSpec, Question
from exam_portal.models.session_state import ExamAvailability, ScoreResult


def round_half_away(value: float) -> int:
    """
    정수로 반올림한다. 0.5는 0에서 먼 쪽으로 올린다 (2.5 → 3, -2.5 → -3).
    내장 round()는 은행가 반올림이므로 사용하지 않는다.
    """
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def score(
    questions: List[Question],
    answers: Mapping[int, int],
    total_grade: float,
) -> ScoreResult:
    """
    사용자 답안을 채점하여 만점(total_grade) 기준 점수를 반환한다.

    문제당 배점 = total_grade / 문제 수. 맞힌 문제의 배점을 누적한 뒤
    마지막에 한 번만 반올림한다.

    정답 판정 기준: question.correct_option_id() == answers.get(question.id)
    응답하지 않은 문제, 정답 보기가 0개 또는 2개 이상인 문제는 오답 처리.

    Args:
        questions:   채점 대상 Question 리스트.
        answers:     답안지 스냅샷. {question.id: 선택한 option.id}
        total_grade: 시험 만점.

    Returns:
        ScoreResult. questions가 빈 리스트이면 0점 (0 / 0).
    """
    total = len(questions)
    weight = total_grade / total if total else 0.0

    correct_count = 0
    earned = 0.0
    for q in questions:
        correct_id = q.correct_option_id()
        if correct_id is not None and answers.get(q.id) == correct_id:
            correct_count += 1
            earned += weight

    return ScoreResult(
        correct_count=correct_count,
        score=round_half_away(earned),
        total_questions=total,
    )


def percentage(score_value: float, total_grade: float) -> int:
    """만점 대비 백분율 (반올림 정수). total_grade가 0 이하이면 0."""
    if total_grade <= 0:
        return 0
    return round_half_away(score_value / total_grade * 100)


def solve_duration_minutes(started_at: float, finished_at: float) -> int:
    """시작~제출 사이 경과 시간 (분, 반올림)."""
    return max(0, round_half_away((finished_at - started_at) / 60))


def exam_availability(
    exam: ExamSpec,
    submitted_exam_ids: Iterable[int],
    now: Optional[datetime] = None,
) -> ExamAvailability:
    """
    응시 가능 여부를 판정한다.

    - 이미 제출한 시험 → taken
    - 마감 시각이 없거나 아직 지나지 않음 → available
    - 마감 시각이 지남 → missed
    """
    if exam.id in set(submitted_exam_ids):
        return ExamAvailability.TAKEN
    if exam.end_date is None:
        return ExamAvailability.AVAILABLE
    now = now or datetime.now(exam.end_date.tzinfo)
    if exam.end_date > now:
        return ExamAvailability.AVAILABLE
    return ExamAvailability.MISSED
