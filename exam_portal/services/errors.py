"""
services/errors.py

시험 세션 오류 분류.
"""


class ExamSessionError(Exception):
    """시험 세션 관련 오류의 기반 클래스."""


class DataUnavailable(ExamSessionError):
    """문제/시험 정보를 불러오지 못함. 세션 진행 불가."""


class Unauthenticated(ExamSessionError):
    """로그인된 사용자가 없음. 제출을 진행하지 않는다."""


class PersistFailed(ExamSessionError):
    """제출 저장 실패 (네트워크/저장소 오류). 재시도 가능."""


class Conflict(ExamSessionError):
    """동일 (exam_id, user_id) 제출이 이미 존재함. 성공으로 취급한다."""


class InvalidTransition(ExamSessionError):
    """허용되지 않은 상태 전이 (프로그래밍 오류)."""
