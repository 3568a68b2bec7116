"""
models/session_state.py

시험 세션 상태 및 결과 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """
    시험 세션 상태.

    loading → in_progress → finalizing → completed
    loading → failed, finalizing → failed (재시도 시 failed → finalizing)
    """
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class FinalizeTrigger(str, Enum):
    """제출을 시도한 주체."""
    DEADLINE = "deadline"
    MANUAL = "manual"


class ExamAvailability(str, Enum):
    AVAILABLE = "available"
    MISSED = "missed"
    TAKEN = "taken"


class ScoreResult(BaseModel):
    """채점 결과. exam_service.score()의 반환값."""
    model_config = ConfigDict(frozen=True)

    correct_count: int = Field(..., ge=0)
    score: int = Field(..., description="반올림된 정수 점수")
    total_questions: int = Field(..., ge=0)


class PendingSubmission(BaseModel):
    """
    제출 대기 중인 채점 결과.

    최초 제출 시 한 번만 계산되고, 저장 실패 후 재시도할 때도 그대로 재사용된다.
    """
    model_config = ConfigDict(frozen=True)

    exam_id: int
    result: ScoreResult
    solve_duration_minutes: int = Field(..., ge=0)
    trigger: FinalizeTrigger


class SubmissionRecord(BaseModel):
    """submissions 테이블 행. 세션당 한 번만 기록된다."""
    model_config = ConfigDict(frozen=True)

    exam_id: int
    user_id: str
    score: int
    solve_duration_minutes: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ExamResult(BaseModel):
    """
    호출자에게 보고되는 최종 결과.

    Attributes:
        percentage:        만점 대비 점수 비율 (반올림 정수, 0 ~ 100).
        already_submitted: 저장소가 중복 제출(Conflict)로 응답한 경우 True.
    """
    model_config = ConfigDict(frozen=True)

    exam_id: int
    exam_name: str
    score: int
    total_grade: float
    total_questions: int
    correct_count: int
    percentage: int
    solve_duration_minutes: int
    already_submitted: bool = False


class OptionView(BaseModel):
    """화면에 노출되는 보기. 정답 여부는 포함하지 않는다."""
    id: int
    option_text: str


class QuestionView(BaseModel):
    id: int
    index: int
    question_text: str
    question_image_url: Optional[str] = None
    options: List[OptionView] = Field(default_factory=list)
    selected_option_id: Optional[int] = None


class SessionView(BaseModel):
    """
    표현 계층에 노출되는 세션 스냅샷.

    Attributes:
        remaining_seconds: 남은 시간 (초). 시간 제한이 없으면 None.
        error:             failed 상태일 때의 오류 설명.
        retryable:         failed 상태에서 재시도(retry) 가능 여부.
    """
    exam_id: int
    exam_name: str
    state: SessionState
    remaining_seconds: Optional[int] = None
    total_questions: int = 0
    answered_count: int = 0
    current_index: int = 0
    current_question: Optional[QuestionView] = None
    answers: Dict[int, int] = Field(default_factory=dict)
    result: Optional[ExamResult] = None
    error: Optional[str] = None
    retryable: bool = False
