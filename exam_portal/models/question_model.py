from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Option(BaseModel):
    """
    문제 보기 모델 (options 테이블 행)
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(
        ...,
        description="보기 고유 식별자"
    )
    option_text: str = Field(
        "",
        description="보기 내용"
    )
    is_correct: bool = Field(
        False,
        description="정답 보기 여부"
    )


class Question(BaseModel):
    """
    시험 문제 모델 (questions 테이블 행 + 중첩 options)
    Pydantic v2 적용
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(
        ...,
        description="문제 고유 식별자 (정렬 키)"
    )
    question_text: str = Field(
        "",
        description="발문/문제 내용"
    )
    question_image_url: Optional[str] = Field(
        None,
        description="문제 이미지 주소 (없으면 None)"
    )
    options: List[Option] = Field(
        default_factory=list,
        description="보기 리스트 (id 오름차순)"
    )

    @field_validator('options')
    @classmethod
    def sort_options(cls, v: List[Option]) -> List[Option]:
        """
        보기 순서는 id 오름차순으로 고정한다.
        """
        return sorted(v, key=lambda o: o.id)

    def correct_option_id(self) -> Optional[int]:
        """
        정답 보기 id를 반환한다.
        정답이 0개이거나 2개 이상이면 채점 불가로 보고 None.
        """
        correct = [o.id for o in self.options if o.is_correct]
        if len(correct) != 1:
            return None
        return correct[0]

    def has_option(self, option_id: int) -> bool:
        return any(o.id == option_id for o in self.options)


class ExamSpec(BaseModel):
    """
    시험 정보 모델 (exams 테이블 행). 세션 동안 변경되지 않는다.
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(
        ...,
        description="시험 고유 식별자"
    )
    name: str = Field(
        ...,
        description="시험 이름"
    )
    total_grade: float = Field(
        ...,
        gt=0,
        description="만점 (양수)"
    )
    duration_minutes: Optional[int] = Field(
        None,
        ge=0,
        description="제한 시간 (분). None 또는 0이면 시간 제한 없음"
    )
    start_date: Optional[datetime] = Field(
        None,
        description="응시 가능 시작 시각"
    )
    end_date: Optional[datetime] = Field(
        None,
        description="응시 마감 시각 (None이면 마감 없음)"
    )

    @property
    def duration_seconds(self) -> int:
        return (self.duration_minutes or 0) * 60

    @property
    def is_timed(self) -> bool:
        return self.duration_seconds > 0
