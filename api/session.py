"""
api/session.py — 멀티유저 인메모리 시험 세션 저장소 (쿠키 기반)

각 사용자에게 UUID 세션 ID를 발급하고, 세션 ID별로 진행 중인 ExamSession 하나를 보관.
TTL(기본 3시간) 경과 시 자동 만료. 앱 생성 시 만들어지고 종료 시 정리된다.
"""

import threading
import time
import uuid
from typing import Callable, Dict, Optional

from config import SESSION_TTL
from exam_portal.services.session_controller import ExamSession


class SessionRegistry:
    def __init__(self, ttl: int = SESSION_TTL, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Optional[ExamSession]] = {}
        self._timestamps: Dict[str, float] = {}

    def create(self) -> str:
        """새 세션 ID를 발급하고 반환."""
        sid = uuid.uuid4().hex
        with self._lock:
            self._sessions[sid] = None
            self._timestamps[sid] = self._clock()
        return sid

    def exists(self, sid: str) -> bool:
        with self._lock:
            return sid in self._sessions and not self._expired(sid)

    def _expired(self, sid: str) -> bool:
        return self._clock() - self._timestamps[sid] > self.ttl

    def _drop(self, sid: str) -> None:
        exam_session = self._sessions.pop(sid, None)
        self._timestamps.pop(sid, None)
        if exam_session is not None:
            exam_session.close()

    def get(self, sid: str) -> Optional[ExamSession]:
        """세션 ID로 진행 중인 시험을 가져옴. 만료되었거나 없으면 None."""
        with self._lock:
            if sid not in self._sessions:
                return None
            if self._expired(sid):
                self._drop(sid)
                return None
            self._timestamps[sid] = self._clock()  # 접근 시 갱신
            return self._sessions[sid]

    def put(self, sid: str, exam_session: ExamSession) -> None:
        """시험 세션 등록. 이전 시험 세션은 폐기한다."""
        with self._lock:
            previous = self._sessions.get(sid)
            if previous is not None and previous is not exam_session:
                previous.close()
            self._sessions[sid] = exam_session
            self._timestamps[sid] = self._clock()

    def discard(self, sid: str) -> None:
        """시험 세션만 폐기 (세션 ID는 유지)."""
        with self._lock:
            exam_session = self._sessions.get(sid)
            if exam_session is not None:
                exam_session.close()
            if sid in self._sessions:
                self._sessions[sid] = None
                self._timestamps[sid] = self._clock()

    def cleanup_expired(self) -> int:
        """만료된 세션을 정리. 제거된 수 반환."""
        removed = 0
        with self._lock:
            expired = [sid for sid in self._timestamps if self._expired(sid)]
            for sid in expired:
                self._drop(sid)
                removed += 1
        return removed

    def close(self) -> None:
        """앱 종료 시 모든 세션 정리."""
        with self._lock:
            for sid in list(self._sessions):
                self._drop(sid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
