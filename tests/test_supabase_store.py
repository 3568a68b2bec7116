from types import SimpleNamespace

import httpx
import pytest
from postgrest.exceptions import APIError
from supabase import AuthApiError, AuthRetryableError, AuthSessionMissingError

from exam_portal.services.errors import Conflict, DataUnavailable, PersistFailed, Unauthenticated
from exam_portal.services.question_loader import QuestionSetLoader, parse_question_rows
from exam_portal.services.submission_store import SupabaseIdentity, SupabaseSubmissionStore


class FakeQuery:
    """supabase-py 쿼리 빌더 흉내. 호출된 체인을 기록한다."""

    def __init__(self, table, data=None, error=None):
        self.table = table
        self.data = data
        self.error = error
        self.chain = []

    def __getattr__(self, name):
        def step(*args, **kwargs):
            self.chain.append((name, args, kwargs))
            return self
        return step

    def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.data)


class FakeClient:
    def __init__(self, responses=None, user=None, auth_error=None):
        self.responses = responses or {}
        self.queries = []
        self.auth = SimpleNamespace(get_user=self._get_user)
        self._user = user
        self._auth_error = auth_error
        self.tokens = []

    def table(self, name):
        data, error = self.responses.get(name, ([], None))
        query = FakeQuery(name, data, error)
        self.queries.append(query)
        return query

    def _get_user(self, jwt=None):
        self.tokens.append(jwt)
        if self._auth_error:
            raise self._auth_error
        if self._user is None:
            return None
        return SimpleNamespace(user=self._user)


def _api_error(code, message="boom"):
    return APIError({"message": message, "code": code, "details": None, "hint": None})


QUESTION_ROWS = [
    {
        "id": 5,
        "exam_id": 1,
        "question_text": "five",
        "question_image_url": None,
        "options": [
            {"id": 52, "option_text": "b", "is_correct": False},
            {"id": 51, "option_text": "a", "is_correct": True},
        ],
    },
    {"id": 2, "exam_id": 1, "question_text": "two", "question_image_url": "https://img/2.png", "options": None},
]


def test_parse_question_rows_orders_by_id():
    questions = parse_question_rows(QUESTION_ROWS)
    assert [q.id for q in questions] == [2, 5]
    assert questions[0].options == []
    assert [o.id for o in questions[1].options] == [51, 52]


def test_parse_question_rows_rejects_malformed_rows():
    with pytest.raises(DataUnavailable):
        parse_question_rows([{"question_text": "no id"}])


def test_load_questions_queries_nested_options():
    client = FakeClient({"questions": (QUESTION_ROWS, None)})
    questions = QuestionSetLoader(client).load_questions(1)

    assert [q.id for q in questions] == [2, 5]
    chain = client.queries[0].chain
    assert ("select", ("*, options (*)",), {}) in chain
    assert ("eq", ("exam_id", 1), {}) in chain


@pytest.mark.parametrize("error", [_api_error("42501"), httpx.ConnectError("offline")])
def test_load_questions_failure_is_data_unavailable(error):
    client = FakeClient({"questions": (None, error)})
    with pytest.raises(DataUnavailable):
        QuestionSetLoader(client).load_questions(1)


def test_load_exam():
    row = {"id": 3, "name": "Midterm", "total_grade": 40, "duration_minutes": 30,
           "start_date": "2026-01-01T09:00:00+00:00", "end_date": None}
    exam = QuestionSetLoader(FakeClient({"exams": ([row], None)})).load_exam(3)
    assert exam.name == "Midterm"
    assert exam.duration_seconds == 1800

    with pytest.raises(DataUnavailable):
        QuestionSetLoader(FakeClient({"exams": ([], None)})).load_exam(3)


def test_submitted_exam_ids():
    client = FakeClient({"submissions": ([{"exam_id": 1}, {"exam_id": 4}], None)})
    assert QuestionSetLoader(client).submitted_exam_ids("u") == {1, 4}


def test_identity_returns_user_id():
    client = FakeClient(user=SimpleNamespace(id="abc"))
    assert SupabaseIdentity(client, "jwt").current_user_id() == "abc"
    assert client.tokens == ["jwt"]


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"auth_error": AuthApiError("invalid JWT", 401, None)},
        {"auth_error": AuthSessionMissingError()},
    ],
)
def test_identity_missing_user_is_unauthenticated(kwargs):
    with pytest.raises(Unauthenticated):
        SupabaseIdentity(FakeClient(**kwargs)).current_user_id()


@pytest.mark.parametrize(
    "error",
    [httpx.ConnectError("network down"), httpx.ReadTimeout("slow"), AuthRetryableError("timeout", 0)],
)
def test_identity_network_error_is_retryable(error):
    with pytest.raises(PersistFailed):
        SupabaseIdentity(FakeClient(auth_error=error), "jwt").current_user_id()


def test_identity_unexpected_error_propagates():
    with pytest.raises(RuntimeError):
        SupabaseIdentity(FakeClient(auth_error=RuntimeError("bug"))).current_user_id()


def test_create_submission_returns_record():
    saved = [{"id": 10, "exam_id": 1, "user_id": "u", "score": 8,
              "solve_duration_minutes": 12, "created_at": "2026-02-01T10:00:00+00:00"}]
    client = FakeClient({"submissions": (saved, None)})

    record = SupabaseSubmissionStore(client).create_submission(1, "u", 8, 12)

    assert record.score == 8
    assert record.created_at.year == 2026
    assert client.queries[0].chain[0][0] == "insert"


def test_duplicate_submission_is_conflict():
    client = FakeClient({"submissions": (None, _api_error("23505", "duplicate key"))})
    with pytest.raises(Conflict):
        SupabaseSubmissionStore(client).create_submission(1, "u", 8, 12)


@pytest.mark.parametrize("error", [_api_error("42501"), httpx.ReadTimeout("slow")])
def test_store_errors_are_persist_failed(error):
    client = FakeClient({"submissions": (None, error)})
    with pytest.raises(PersistFailed):
        SupabaseSubmissionStore(client).create_submission(1, "u", 8, 12)
