"""
services/question_loader.py

Supabase에서 시험/문제 데이터를 읽어오는 서비스.
Public API:
  - QuestionSetLoader.load_questions(exam_id) -> List[Question]
  - QuestionSetLoader.load_exam(exam_id)      -> ExamSpec
  - QuestionSetLoader.list_exams()            -> List[ExamSpec]
  - QuestionSetLoader.submitted_exam_ids(uid) -> Set[int]

읽기 외의 부작용 없음. 자동 재시도하지 않는다 — 재시도 정책은 호출자가 결정.
실패는 모두 DataUnavailable로 변환된다.
"""

import logging
from typing import Any, Dict, List, Set

import httpx
from postgrest.exceptions import APIError
from pydantic import ValidationError
from supabase import Client

from exam_portal.models.question_model import ExamSpec, Question
from exam_portal.services.errors import DataUnavailable

logger = logging.getLogger(__name__)

_FETCH_ERRORS = (APIError, httpx.HTTPError)


def parse_question_rows(rows: List[Dict[str, Any]]) -> List[Question]:
    """
    questions 행(+ 중첩 options) → Question 리스트 (id 오름차순).
    검증 실패 행이 하나라도 있으면 전체를 DataUnavailable로 처리한다.
    """
    try:
        questions = [
            Question.model_validate({**row, "options": row.get("options") or []})
            for row in rows
        ]
    except ValidationError as e:
        raise DataUnavailable(f"문제 데이터 형식 오류: {e.error_count()}건") from e
    return sorted(questions, key=lambda q: q.id)


class QuestionSetLoader:
    """questions / options / exams 테이블 읽기 전용 래퍼."""

    def __init__(self, client: Client):
        self.client = client

    def load_questions(self, exam_id: int) -> List[Question]:
        try:
            response = (
                self.client.table("questions")
                .select("*, options (*)")
                .eq("exam_id", exam_id)
                .order("id")
                .execute()
            )
        except _FETCH_ERRORS as e:
            logger.error(f"문제 조회 실패 (exam_id={exam_id}): {e}")
            raise DataUnavailable(f"문제를 불러오지 못했습니다 (exam_id={exam_id})") from e

        questions = parse_question_rows(response.data or [])
        logger.info(f"문제 {len(questions)}개 로드 (exam_id={exam_id})")
        return questions

    def load_exam(self, exam_id: int) -> ExamSpec:
        try:
            response = (
                self.client.table("exams")
                .select("*")
                .eq("id", exam_id)
                .limit(1)
                .execute()
            )
        except _FETCH_ERRORS as e:
            logger.error(f"시험 조회 실패 (exam_id={exam_id}): {e}")
            raise DataUnavailable(f"시험 정보를 불러오지 못했습니다 (exam_id={exam_id})") from e

        if not response.data:
            raise DataUnavailable(f"시험을 찾을 수 없습니다 (exam_id={exam_id})")
        try:
            return ExamSpec.model_validate(response.data[0])
        except ValidationError as e:
            raise DataUnavailable(f"시험 데이터 형식 오류 (exam_id={exam_id})") from e

    def list_exams(self) -> List[ExamSpec]:
        try:
            response = (
                self.client.table("exams")
                .select("*")
                .order("start_date", desc=True)
                .execute()
            )
            return [ExamSpec.model_validate(row) for row in response.data or []]
        except _FETCH_ERRORS as e:
            logger.error(f"시험 목록 조회 실패: {e}")
            raise DataUnavailable("시험 목록을 불러오지 못했습니다") from e
        except ValidationError as e:
            raise DataUnavailable("시험 데이터 형식 오류") from e

    def submitted_exam_ids(self, user_id: str) -> Set[int]:
        try:
            response = (
                self.client.table("submissions")
                .select("exam_id")
                .eq("user_id", user_id)
                .execute()
            )
        except _FETCH_ERRORS as e:
            logger.error(f"제출 내역 조회 실패 (user_id={user_id}): {e}")
            raise DataUnavailable("제출 내역을 불러오지 못했습니다") from e
        return {row["exam_id"] for row in response.data or []}
