"""
services/submission_guard.py

제출 중복 방지 래치.

타이머 마감과 사용자의 "제출" 버튼이 동시에 제출을 시도해도
채점 → 저장 → 보고 시퀀스는 세션당 한 번만 실행된다.

래치 확인과 설정은 await 이전에 락 안에서 한 번에 일어나므로,
저장 대기 중에 들어온 두 번째 시도는 즉시 무시된다.
저장에 실패해도 래치는 풀리지 않는다 — retry()는 처음 계산한 점수를 그대로 다시 저장한다.
"""

import logging
import threading
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from exam_portal.models.session_state import (
    FinalizeTrigger,
    PendingSubmission,
    SubmissionRecord,
)
from exam_portal.services.errors import Conflict

logger = logging.getLogger(__name__)


class FinalizeOutcome(BaseModel):
    pending: PendingSubmission
    record: Optional[SubmissionRecord] = None
    already_submitted: bool = False


class SubmissionGuard:
    """
    Args:
        compute:  승자 트리거에서 한 번만 호출되어 제출할 점수를 계산한다.
        persist:  PendingSubmission을 저장하는 코루틴 함수.
                  PersistFailed / Unauthenticated 등은 그대로 호출자에게 전파된다.
        on_claim: 래치를 획득한 직후, 어떤 await보다 먼저 동기적으로 호출된다.
    """

    def __init__(
        self,
        compute: Callable[[FinalizeTrigger], PendingSubmission],
        persist: Callable[[PendingSubmission], Awaitable[Optional[SubmissionRecord]]],
        on_claim: Optional[Callable[[FinalizeTrigger], None]] = None,
    ) -> None:
        self._compute = compute
        self._persist = persist
        self._on_claim = on_claim

        self._lock = threading.Lock()
        self._latched = False
        self._in_flight = False
        self._done = False

        self.winner: Optional[FinalizeTrigger] = None
        self.pending: Optional[PendingSubmission] = None

    @property
    def latched(self) -> bool:
        return self._latched

    @property
    def done(self) -> bool:
        return self._done

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _claim(self, trigger: FinalizeTrigger) -> bool:
        with self._lock:
            if self._latched:
                return False
            self._latched = True
            self._in_flight = True
            self.winner = trigger
            return True

    async def try_finalize(self, trigger: FinalizeTrigger) -> Optional[FinalizeOutcome]:
        """
        제출 시도. 이미 다른 트리거가 래치를 잡았다면 아무것도 하지 않고 None.
        """
        if not self._claim(trigger):
            logger.debug("제출 시도 무시 (%s) — 이미 %s 트리거가 처리 중", trigger.value, self.winner.value)
            return None

        logger.info("제출 시작 (트리거: %s)", trigger.value)
        try:
            if self._on_claim is not None:
                self._on_claim(trigger)
            self.pending = self._compute(trigger)
        except Exception:
            with self._lock:
                self._in_flight = False
            raise
        return await self._persist_pending()

    async def retry(self) -> Optional[FinalizeOutcome]:
        """
        저장 실패 후 수동 재시도. 캐시된 점수를 재사용하며 다시 채점하지 않는다.
        저장이 진행 중이거나, 이미 완료되었거나, 제출 시도가 없었다면 None.
        """
        with self._lock:
            if not self._latched or self.pending is None or self._done or self._in_flight:
                return None
            self._in_flight = True

        logger.info("제출 재시도 (점수 %d)", self.pending.result.score)
        return await self._persist_pending()

    async def _persist_pending(self) -> FinalizeOutcome:
        pending = self.pending
        already_submitted = False
        record = None
        try:
            record = await self._persist(pending)
        except Conflict:
            logger.info("이미 제출된 시험 (exam_id=%s) — 성공으로 처리", pending.exam_id)
            already_submitted = True
        finally:
            with self._lock:
                self._in_flight = False

        self._done = True
        return FinalizeOutcome(
            pending=pending,
            record=record,
            already_submitted=already_submitted,
        )
