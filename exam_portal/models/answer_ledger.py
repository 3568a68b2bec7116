"""
models/answer_ledger.py

사용자 답안지 (OMR 카드). {question.id: 선택한 option.id}
덮어쓰기만 가능하고 삭제는 없다.
"""

from types import MappingProxyType
from typing import Dict, Mapping


class AnswerLedger:
    def __init__(self) -> None:
        self._answers: Dict[int, int] = {}

    def record(self, question_id: int, option_id: int) -> None:
        """같은 문제에 대한 이전 선택은 새 선택으로 대체된다."""
        self._answers[question_id] = option_id

    def get(self, question_id: int) -> int | None:
        return self._answers.get(question_id)

    def snapshot(self) -> Mapping[int, int]:
        """채점용 읽기 전용 사본. 이후 record() 호출의 영향을 받지 않는다."""
        return MappingProxyType(dict(self._answers))

    def __len__(self) -> int:
        return len(self._answers)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._answers
