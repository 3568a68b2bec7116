"""
services/submission_store.py

Supabase Auth 사용자 확인 + submissions 테이블 쓰기.
라이브러리 예외는 Unauthenticated / Conflict / PersistFailed로 변환된다.
"""

import logging
from typing import Optional

import httpx
from postgrest.exceptions import APIError
from pydantic import ValidationError
from supabase import AuthError, AuthRetryableError, AuthUnknownError, Client

from exam_portal.models.session_state import SubmissionRecord
from exam_portal.services.errors import Conflict, PersistFailed, Unauthenticated

logger = logging.getLogger(__name__)

# Postgres unique_violation
_UNIQUE_VIOLATION = "23505"


class SupabaseIdentity:
    """
    현재 사용자 확인.

    access_token이 주어지면 해당 JWT로 사용자를 조회하고,
    없으면 클라이언트에 로그인된 세션의 사용자를 사용한다.
    """

    def __init__(self, client: Client, access_token: Optional[str] = None):
        self.client = client
        self.access_token = access_token

    def current_user_id(self) -> str:
        try:
            response = self.client.auth.get_user(self.access_token)
        except (AuthRetryableError, AuthUnknownError, httpx.HTTPError) as e:
            # 일시 오류 → 재시도 가능
            logger.error(f"사용자 확인 중 네트워크 오류: {e}")
            raise PersistFailed("네트워크 오류로 사용자를 확인하지 못했습니다") from e
        except AuthError as e:
            logger.warning(f"사용자 확인 실패: {e}")
            raise Unauthenticated("로그인 세션이 없습니다") from e

        user = getattr(response, "user", None) if response else None
        if user is None or not getattr(user, "id", None):
            raise Unauthenticated("로그인 세션이 없습니다")
        return str(user.id)


class SupabaseSubmissionStore:
    """submissions 테이블. (exam_id, user_id) 유일 제약을 전제로 한다."""

    def __init__(self, client: Client):
        self.client = client

    def create_submission(
        self,
        exam_id: int,
        user_id: str,
        score: int,
        solve_duration_minutes: int,
    ) -> SubmissionRecord:
        row = {
            "exam_id": exam_id,
            "user_id": user_id,
            "score": score,
            "solve_duration_minutes": solve_duration_minutes,
        }
        try:
            response = self.client.table("submissions").insert(row).execute()
        except APIError as e:
            if e.code == _UNIQUE_VIOLATION:
                raise Conflict(f"이미 제출된 시험입니다 (exam_id={exam_id})") from e
            logger.error(f"제출 저장 실패 (exam_id={exam_id}): {e}")
            raise PersistFailed(f"제출을 저장하지 못했습니다: {e.message}") from e
        except httpx.HTTPError as e:
            logger.error(f"제출 저장 중 네트워크 오류 (exam_id={exam_id}): {e}")
            raise PersistFailed("네트워크 오류로 제출을 저장하지 못했습니다") from e

        saved = (response.data or [row])[0]
        try:
            return SubmissionRecord.model_validate({**row, **saved})
        except ValidationError:
            logger.warning(f"제출 응답 형식이 예상과 다름 (exam_id={exam_id})")
            return SubmissionRecord(**row)
