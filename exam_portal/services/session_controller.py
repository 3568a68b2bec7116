"""
services/session_controller.py

한 학생의 한 번의 시험 응시를 진행하는 세션 컨트롤러.

상태 전이:
  loading     → in_progress  문제 로드 성공 (제한 시간이 있으면 카운트다운 시작)
  loading     → failed       문제 로드 실패 (DataUnavailable)
  in_progress → finalizing   SubmissionGuard의 승자 트리거 (마감 또는 수동 제출)
  finalizing  → completed    채점 + 저장 성공 (중복 제출 Conflict 포함)
  finalizing  → failed       저장 실패 (재시도 가능), 사용자 확인 실패 또는 예기치 못한 오류 (재시도 불가)
  failed      → finalizing   retry() — 캐시된 점수를 그대로 다시 저장

답안 기록은 in_progress 상태에서만 반영되고, 그 외 상태에서는 조용히 무시된다.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Set

from config import TICK_INTERVAL_SECONDS
from exam_portal.models.answer_ledger import AnswerLedger
from exam_portal.models.question_model import ExamSpec, Question
from exam_portal.models.session_state import (
    ExamResult,
    FinalizeTrigger,
    OptionView,
    PendingSubmission,
    QuestionView,
    SessionState,
    SessionView,
    SubmissionRecord,
)
from exam_portal.services.countdown import Countdown, running_task
from exam_portal.services.errors import (
    DataUnavailable,
    InvalidTransition,
    PersistFailed,
    Unauthenticated,
)
from exam_portal.services.exam_service import percentage, score, solve_duration_minutes
from exam_portal.services.submission_guard import FinalizeOutcome, SubmissionGuard

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
    SessionState.LOADING: {SessionState.IN_PROGRESS, SessionState.FAILED},
    SessionState.IN_PROGRESS: {SessionState.FINALIZING},
    SessionState.FINALIZING: {SessionState.COMPLETED, SessionState.FAILED},
    SessionState.FAILED: {SessionState.FINALIZING},
    SessionState.COMPLETED: set(),
}


class ExamSession:
    """
    Args:
        exam:           응시할 시험 정보.
        question_store: load_questions(exam_id) 제공자.
        identity:       current_user_id() 제공자.
        submissions:    create_submission(exam_id, user_id, score, minutes) 제공자.
        clock:          현재 시각 함수 (Unix timestamp).
        tick_interval:  카운트다운 주기 (초).
        on_complete:    최종 결과를 전달받는 콜백. 세션당 최대 한 번 호출된다.
    """

    def __init__(
        self,
        exam: ExamSpec,
        question_store,
        identity,
        submissions,
        clock: Callable[[], float] = time.time,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        on_complete: Optional[Callable[[ExamResult], None]] = None,
    ) -> None:
        self.exam = exam
        self._question_store = question_store
        self._identity = identity
        self._submissions = submissions
        self._clock = clock
        self._tick_interval = tick_interval
        self._on_complete = on_complete

        self.state = SessionState.LOADING
        self.questions: List[Question] = []
        self.ledger = AnswerLedger()
        self.current_index = 0
        self.countdown: Optional[Countdown] = None
        self.started_at: Optional[float] = None

        self.result: Optional[ExamResult] = None
        self.record: Optional[SubmissionRecord] = None
        self.error: Optional[str] = None
        self.retryable = False

        self._guard = SubmissionGuard(
            compute=self._compute,
            persist=self._persist,
            on_claim=self._on_claim,
        )
        self._tasks: Set[asyncio.Task] = set()

    # ── 상태 ─────────────────────────────────────────────────────────────────

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} → {target.value}")
        logger.info(f"세션 상태 전이 (exam_id={self.exam.id}): {self.state.value} → {target.value}")
        self.state = target

    def _fail(self, message: str, retryable: bool) -> None:
        self._transition(SessionState.FAILED)
        self.error = message
        self.retryable = retryable

    @property
    def winner(self) -> Optional[FinalizeTrigger]:
        return self._guard.winner

    @property
    def pending(self) -> Optional[PendingSubmission]:
        return self._guard.pending

    def remaining_seconds(self) -> Optional[int]:
        """남은 시간 (초). 시간 제한이 없거나 아직 시작 전이면 None."""
        if self.countdown is None or not self.countdown.is_timed:
            return None
        return self.countdown.remaining()

    # ── 로드 ─────────────────────────────────────────────────────────────────

    async def load(self) -> None:
        """
        문제 세트를 불러와 시험을 시작한다. 세션당 한 번만 유효하다.

        Raises:
            DataUnavailable: 로드 실패. 세션은 failed 상태가 된다.
        """
        if self.state is not SessionState.LOADING:
            logger.warning(f"이미 로드된 세션 (상태: {self.state.value})")
            return

        try:
            questions = await asyncio.to_thread(
                self._question_store.load_questions, self.exam.id
            )
        except DataUnavailable as e:
            logger.error(f"문제 로드 실패 (exam_id={self.exam.id}): {e}")
            self._fail(str(e), retryable=False)
            raise

        self.questions = sorted(questions, key=lambda q: q.id)
        self.started_at = self._clock()
        self.countdown = Countdown(
            self.exam.duration_seconds,
            on_deadline=self._on_deadline,
            start_time=self.started_at,
            clock=self._clock,
            interval=self._tick_interval,
        )
        self._transition(SessionState.IN_PROGRESS)
        self.countdown.start()

    # ── 답안 / 이동 ──────────────────────────────────────────────────────────

    def _question(self, question_id: int) -> Question:
        for q in self.questions:
            if q.id == question_id:
                return q
        raise ValueError(f"존재하지 않는 문제입니다 (question_id={question_id})")

    def answer(self, question_id: int, option_id: int) -> bool:
        """
        답안 기록. in_progress가 아니면 무시하고 False.

        Raises:
            ValueError: 문제가 없거나 보기가 해당 문제에 속하지 않음.
        """
        if self.state is not SessionState.IN_PROGRESS:
            logger.debug(f"답안 무시 (상태: {self.state.value}, question_id={question_id})")
            return False

        question = self._question(question_id)
        if not question.has_option(option_id):
            raise ValueError(
                f"보기 {option_id}는 문제 {question_id}의 보기가 아닙니다"
            )
        self.ledger.record(question_id, option_id)
        return True

    def go_to(self, index: int) -> int:
        last = max(0, len(self.questions) - 1)
        self.current_index = max(0, min(index, last))
        return self.current_index

    def next(self) -> int:
        return self.go_to(self.current_index + 1)

    def previous(self) -> int:
        return self.go_to(self.current_index - 1)

    # ── 제출 ─────────────────────────────────────────────────────────────────

    def _on_deadline(self) -> None:
        task = asyncio.get_running_loop().create_task(
            self._finalize(FinalizeTrigger.DEADLINE)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def finish(self) -> Optional[ExamResult]:
        """사용자의 수동 제출. 이미 다른 제출이 진행 중이면 None."""
        return await self._finalize(FinalizeTrigger.MANUAL)

    async def _finalize(self, trigger: FinalizeTrigger) -> Optional[ExamResult]:
        if self.state is not SessionState.IN_PROGRESS:
            logger.debug(f"제출 무시 ({trigger.value}, 상태: {self.state.value})")
            return None
        try:
            outcome = await self._guard.try_finalize(trigger)
        except (PersistFailed, Unauthenticated) as e:
            self._handle_finalize_error(e)
            return None
        except Exception as e:
            self._handle_unexpected_error(e)
            return None
        if outcome is None:
            return None
        return self._complete(outcome)

    async def retry(self) -> Optional[ExamResult]:
        """
        저장 실패 후 재시도. 최초 계산된 점수를 그대로 저장한다.
        재시도할 수 없는 상태이면 None.
        """
        if self.state is not SessionState.FAILED or not self.retryable:
            logger.debug(f"재시도 무시 (상태: {self.state.value})")
            return None

        self._transition(SessionState.FINALIZING)
        self.error = None
        self.retryable = False
        try:
            outcome = await self._guard.retry()
        except (PersistFailed, Unauthenticated) as e:
            self._handle_finalize_error(e)
            return None
        except Exception as e:
            self._handle_unexpected_error(e)
            return None
        if outcome is None:
            return None
        return self._complete(outcome)

    def _handle_finalize_error(self, e: Exception) -> None:
        if isinstance(e, PersistFailed):
            logger.error(f"제출 저장 실패 (exam_id={self.exam.id}): {e}")
            self._fail(str(e), retryable=True)
        else:
            logger.error(f"사용자 확인 실패로 제출 중단 (exam_id={self.exam.id}): {e}")
            self._fail(str(e), retryable=False)

    def _handle_unexpected_error(self, e: Exception) -> None:
        # 채점/저장 중 예상하지 못한 오류. 래치를 잡은 뒤라면 finalizing에 머물지 않는다
        if self.state is not SessionState.FINALIZING:
            raise e
        logger.exception(f"제출 중 예기치 못한 오류 (exam_id={self.exam.id}): {e}")
        self._fail(str(e) or type(e).__name__, retryable=False)

    def _on_claim(self, trigger: FinalizeTrigger) -> None:
        # 마감 틱이 다시 들어오기 전에 카운트다운부터 멈춘다
        if self.countdown is not None:
            self.countdown.stop()
        self._transition(SessionState.FINALIZING)

    def _compute(self, trigger: FinalizeTrigger) -> PendingSubmission:
        result = score(self.questions, self.ledger.snapshot(), self.exam.total_grade)
        minutes = solve_duration_minutes(self.started_at or self._clock(), self._clock())
        logger.info(
            f"채점 완료 (exam_id={self.exam.id}): {result.correct_count}/{result.total_questions}, "
            f"점수 {result.score}"
        )
        return PendingSubmission(
            exam_id=self.exam.id,
            result=result,
            solve_duration_minutes=minutes,
            trigger=trigger,
        )

    async def _persist(self, pending: PendingSubmission) -> Optional[SubmissionRecord]:
        user_id = await asyncio.to_thread(self._identity.current_user_id)
        return await asyncio.to_thread(
            self._submissions.create_submission,
            pending.exam_id,
            user_id,
            pending.result.score,
            pending.solve_duration_minutes,
        )

    def _complete(self, outcome: FinalizeOutcome) -> ExamResult:
        pending = outcome.pending
        self.record = outcome.record
        self.result = ExamResult(
            exam_id=self.exam.id,
            exam_name=self.exam.name,
            score=pending.result.score,
            total_grade=self.exam.total_grade,
            total_questions=pending.result.total_questions,
            correct_count=pending.result.correct_count,
            percentage=percentage(pending.result.score, self.exam.total_grade),
            solve_duration_minutes=pending.solve_duration_minutes,
            already_submitted=outcome.already_submitted,
        )
        self._transition(SessionState.COMPLETED)
        if self._on_complete is not None:
            self._on_complete(self.result)
        return self.result

    # ── 표현 계층 ────────────────────────────────────────────────────────────

    def view(self) -> SessionView:
        current = None
        if self.questions:
            q = self.questions[self.current_index]
            current = QuestionView(
                id=q.id,
                index=self.current_index,
                question_text=q.question_text,
                question_image_url=q.question_image_url,
                options=[OptionView(id=o.id, option_text=o.option_text) for o in q.options],
                selected_option_id=self.ledger.get(q.id),
            )

        return SessionView(
            exam_id=self.exam.id,
            exam_name=self.exam.name,
            state=self.state,
            remaining_seconds=self.remaining_seconds(),
            total_questions=len(self.questions),
            answered_count=len(self.ledger),
            current_index=self.current_index,
            current_question=current,
            answers=dict(self.ledger.snapshot()),
            result=self.result,
            error=self.error,
            retryable=self.retryable,
        )

    async def wait_idle(self) -> None:
        """마감 트리거로 시작된 제출 태스크가 끝날 때까지 대기."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """
        세션 폐기. 카운트다운을 멈추고, 아직 끝나지 않은 마감 제출 태스크를 취소한다.
        이벤트 루프 스레드에서 호출해야 한다.
        """
        if self.countdown is not None:
            self.countdown.stop()
        current = running_task()
        for task in list(self._tasks):
            if not task.done() and task is not current:
                task.cancel()
