import sys
import threading
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from exam_portal.models.question_model import ExamSpec, Option, Question
from exam_portal.models.session_state import SubmissionRecord
from exam_portal.services.errors import Conflict, DataUnavailable, PersistFailed, Unauthenticated


def make_question(qid, correct=1, n_options=3, correct_flags=None):
    """보기 id는 qid*10 + (1..n). correct는 정답 보기의 순번 (1-based)."""
    flags = correct_flags or [i == correct for i in range(1, n_options + 1)]
    return Question(
        id=qid,
        question_text=f"Q{qid}",
        options=[
            Option(id=qid * 10 + i, option_text=f"opt {i}", is_correct=flag)
            for i, flag in enumerate(flags, start=1)
        ],
    )


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeQuestionStore:
    def __init__(self, questions=None, exams=None, submitted=None, error=None):
        self.questions = questions or []
        self.exams = {e.id: e for e in (exams or [])}
        self.submitted = set(submitted or [])
        self.error = error
        self.load_calls = 0

    def load_questions(self, exam_id):
        self.load_calls += 1
        if self.error:
            raise self.error
        return list(self.questions)

    def load_exam(self, exam_id):
        if exam_id not in self.exams:
            raise DataUnavailable(f"시험을 찾을 수 없습니다 (exam_id={exam_id})")
        return self.exams[exam_id]

    def list_exams(self):
        return list(self.exams.values())

    def submitted_exam_ids(self, user_id):
        return set(self.submitted)


class FakeIdentity:
    """failures: 앞에서부터 순서대로 발생시킬 예외 리스트."""

    def __init__(self, user_id="user-1", failures=None):
        self.user_id = user_id
        self.failures = list(failures or [])

    def current_user_id(self):
        if self.failures:
            raise self.failures.pop(0)
        if self.user_id is None:
            raise Unauthenticated("로그인 세션이 없습니다")
        return self.user_id


class FakeSubmissionStore:
    """
    failures: 앞에서부터 순서대로 발생시킬 예외 리스트.
    gate:     설정되면 저장 호출이 gate.set() 될 때까지 블록된다.
    """

    def __init__(self, failures=None, gate=None):
        self.failures = list(failures or [])
        self.gate = gate
        self.calls = []
        self._lock = threading.Lock()

    def create_submission(self, exam_id, user_id, score, solve_duration_minutes):
        with self._lock:
            self.calls.append((exam_id, user_id, score, solve_duration_minutes))
            failure = self.failures.pop(0) if self.failures else None
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if failure is not None:
            raise failure
        return SubmissionRecord(
            exam_id=exam_id,
            user_id=user_id,
            score=score,
            solve_duration_minutes=solve_duration_minutes,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def exam():
    return ExamSpec(id=7, name="Unit 3 Quiz", total_grade=100, duration_minutes=1)


@pytest.fixture
def untimed_exam():
    return ExamSpec(id=8, name="Practice", total_grade=10)


@pytest.fixture
def four_questions():
    return [make_question(qid) for qid in (4, 1, 3, 2)]


@pytest.fixture
def persist_failed():
    return PersistFailed("네트워크 오류로 제출을 저장하지 못했습니다")


@pytest.fixture
def conflict():
    return Conflict("이미 제출된 시험입니다")
