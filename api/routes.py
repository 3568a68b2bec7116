"""
api/routes.py — FastAPI 엔드포인트
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from exam_portal.models.session_state import ExamAvailability, SessionState
from exam_portal.services.errors import DataUnavailable, PersistFailed, Unauthenticated
from exam_portal.services.exam_service import exam_availability
from exam_portal.services.session_controller import ExamSession

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class AnswerBody(BaseModel):
    question_id: int
    option_id: int

class NavigateBody(BaseModel):
    index: int = 0


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _access_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _identity(request: Request):
    return request.app.state.identity_factory(_access_token(request))


async def _current_user_id(identity) -> str:
    try:
        return await asyncio.to_thread(identity.current_user_id)
    except Unauthenticated as e:
        raise HTTPException(status_code=401, detail=str(e))
    except PersistFailed as e:
        raise HTTPException(status_code=503, detail=str(e))


def _exam_session(request: Request) -> ExamSession:
    exam_session = request.app.state.registry.get(request.state.session_id)
    if exam_session is None:
        raise HTTPException(status_code=404, detail="진행 중인 시험이 없습니다.")
    return exam_session


# ── 엔드포인트 ───────────────────────────────────────────────────────────────

@router.get("/api/exams")
async def list_exams(request: Request):
    store = request.app.state.question_store
    user_id = await _current_user_id(_identity(request))
    try:
        exams = await asyncio.to_thread(store.list_exams)
        submitted = await asyncio.to_thread(store.submitted_exam_ids, user_id)
    except DataUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return [
        {**exam.model_dump(mode="json"), "status": exam_availability(exam, submitted).value}
        for exam in exams
    ]


@router.post("/api/exams/{exam_id}/start")
async def start_exam(exam_id: int, request: Request):
    store = request.app.state.question_store
    identity = _identity(request)
    user_id = await _current_user_id(identity)

    try:
        exam = await asyncio.to_thread(store.load_exam, exam_id)
    except DataUnavailable as e:
        raise HTTPException(status_code=404, detail=str(e))
    try:
        submitted = await asyncio.to_thread(store.submitted_exam_ids, user_id)
    except DataUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    status = exam_availability(exam, submitted)
    if status is not ExamAvailability.AVAILABLE:
        raise HTTPException(status_code=409, detail=f"응시할 수 없는 시험입니다 ({status.value}).")

    exam_session = ExamSession(
        exam,
        question_store=store,
        identity=identity,
        submissions=request.app.state.submission_store,
    )
    request.app.state.registry.put(request.state.session_id, exam_session)
    try:
        await exam_session.load()
    except DataUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return exam_session.view()


@router.get("/api/session")
async def get_session(request: Request):
    return _exam_session(request).view()


@router.post("/api/session/answer")
async def answer(body: AnswerBody, request: Request):
    exam_session = _exam_session(request)
    try:
        accepted = exam_session.answer(body.question_id, body.option_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "ok": accepted,
        "state": exam_session.state.value,
        "answered_count": len(exam_session.ledger),
    }


@router.post("/api/session/navigate")
async def navigate(body: NavigateBody, request: Request):
    exam_session = _exam_session(request)
    idx = exam_session.go_to(body.index)
    return {"index": idx, "ok": True}


@router.post("/api/session/finish")
async def finish(request: Request):
    exam_session = _exam_session(request)
    await exam_session.finish()
    return exam_session.view()


@router.post("/api/session/retry")
async def retry(request: Request):
    exam_session = _exam_session(request)
    if exam_session.state is not SessionState.FAILED or not exam_session.retryable:
        raise HTTPException(status_code=409, detail="재시도할 수 없는 상태입니다.")
    await exam_session.retry()
    return exam_session.view()


@router.get("/api/session/result")
async def get_result(request: Request):
    exam_session = _exam_session(request)
    if exam_session.state is not SessionState.COMPLETED:
        raise HTTPException(status_code=409, detail="시험이 아직 제출되지 않았습니다.")
    return exam_session.result


@router.delete("/api/session")
async def discard_session(request: Request):
    request.app.state.registry.discard(request.state.session_id)
    return {"ok": True}
