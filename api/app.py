"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + 세션 저장소 수명 관리
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from api.session import SessionRegistry
from config import SESSION_CLEANUP_INTERVAL, SESSION_COOKIE

logger = logging.getLogger(__name__)


def create_app(
    question_store=None,
    submission_store=None,
    identity_factory: Optional[Callable] = None,
    registry: Optional[SessionRegistry] = None,
    cleanup_interval: int = SESSION_CLEANUP_INTERVAL,
) -> FastAPI:
    """
    Args:
        question_store:   QuestionSetLoader 호환 객체. 기본값은 Supabase.
        submission_store: create_submission() 제공자. 기본값은 Supabase.
        identity_factory: access_token → current_user_id() 제공자를 만드는 함수.
        registry:         시험 세션 저장소. 기본값은 새 SessionRegistry.
    """
    if question_store is None or submission_store is None or identity_factory is None:
        from exam_portal.services.question_loader import QuestionSetLoader
        from exam_portal.services.submission_store import SupabaseIdentity, SupabaseSubmissionStore
        from exam_portal.services.supabase_client import get_supabase

        client = get_supabase()
        question_store = question_store or QuestionSetLoader(client)
        submission_store = submission_store or SupabaseSubmissionStore(client)
        identity_factory = identity_factory or (lambda token: SupabaseIdentity(client, token))

    registry = registry or SessionRegistry()

    # 만료 세션 주기적 정리
    async def _cleanup_loop():
        while True:
            await asyncio.sleep(cleanup_interval)
            removed = registry.cleanup_expired()
            if removed:
                logger.info(f"만료 세션 {removed}개 정리")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cleanup = asyncio.create_task(_cleanup_loop())
        try:
            yield
        finally:
            cleanup.cancel()
            registry.close()
            logger.info("세션 저장소 종료")

    app = FastAPI(title="Exam Portal", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.question_store = question_store
    app.state.submission_store = submission_store
    app.state.identity_factory = identity_factory
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or not registry.exists(sid):
            sid = registry.create()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=registry.ttl,
        )
        return response

    app.include_router(router)
    return app
