"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the quiz builder backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses.

Endpoints implemented:
- GET /health
- GET /categories, GET /categories/popular, GET /categories/{id}/quizzes
- GET /quizzes, GET /quizzes/{id}
- POST /quizzes/{id}/attempts
- GET /quizzes/{id}/attempts/{attempt_id}
- GET /me/attempts
- GET|POST /builder/quizzes, GET|PUT|DELETE /builder/quizzes/{id}
- POST /builder/quizzes/{id}/questions/reorder
- POST /builder/questions/{id}/answers/reorder
- GET /builder/quizzes/{id}/stats
- POST /builder/previews, GET|DELETE /builder/previews/{id}
"""

from typing import Optional
from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services
from .auth import SessionContext, get_current_session, get_optional_session
from .schemas import AnswerReorderIn, AttemptIn, QuizIn, ReorderIn
from .utils.rate_limit import InMemoryRateLimiter
from .config import settings

app = FastAPI(title="Quiz Builder API")
logger = logging.getLogger("quizbuilder.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_attempt_rate_limiter = InMemoryRateLimiter()

# Wide-open CORS keeps a locally served frontend working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _log_request(event: str, request: Request, started: float, **extra):
    payload = {
        "request_id": getattr(request.state, "request_id", ""),
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "client": request.client.host if request.client else "unknown",
        **extra,
    }
    return f"{event} {json.dumps(payload, ensure_ascii=True)}"


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(_log_request("request_failed", request, started))
        raise
    response.headers["X-Request-ID"] = req_id
    if request.url.path != "/health":
        logger.info(_log_request("request_done", request, started, status_code=response.status_code))
    return response


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError):
    """Storage failures are reported as a retryable error; nothing is retried here."""
    req_id = getattr(request.state, "request_id", "")
    logger.error("persistence_failed request_id=%s error=%s", req_id, exc.__class__.__name__, exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "storage temporarily unavailable, please retry", "request_id": req_id},
        headers={"X-Request-ID": req_id} if req_id else None,
    )


def _enforce_attempt_rate_limit(request: Request) -> None:
    key = f"{request.client.host if request.client else 'unknown'}:attempts"
    allowed, retry_after = _attempt_rate_limiter.allow(
        key, settings.ATTEMPT_RATE_LIMIT_PER_MIN, settings.ATTEMPT_RATE_LIMIT_WINDOW_SECONDS
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


def _not_found(e: services.NotFoundError):
    return HTTPException(status_code=404, detail=str(e))


def _invalid_quiz(e: services.AuthoringValidationError):
    return HTTPException(status_code=422, detail={'message': 'quiz is not valid', 'errors': e.errors})


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


@app.get('/categories')
def list_categories(db: Session = Depends(get_session)):
    """List all quiz categories ordered by name."""
    return services.CategoryService(db).list_categories()


@app.get('/categories/popular')
def popular_categories(db: Session = Depends(get_session)):
    """Up to four categories with their most attempted published quizzes."""
    return services.CategoryService(db).popular()


@app.get('/categories/{category_id}/quizzes')
def category_quizzes(category_id: int, db: Session = Depends(get_session)):
    """Published, active quizzes of one category."""
    try:
        return services.CategoryService(db).quizzes_for_category(category_id)
    except services.NotFoundError as e:
        raise _not_found(e)


@app.get('/quizzes')
def list_quizzes(search: Optional[str] = None, category_id: Optional[int] = None, db: Session = Depends(get_session)):
    """Browse published quizzes, optionally filtered by text or category."""
    quizzes = services.QuizService(db).list_published(search=search, category_id=category_id)
    return [services.quiz_summary(q) for q in quizzes]


@app.get('/quizzes/{quiz_id}')
def get_quiz(quiz_id: int, db: Session = Depends(get_session)):
    """Return a published quiz for taking.

    Correct flags and reference answers are never part of this payload.
    """
    try:
        quiz = services.QuizService(db).get_published(quiz_id)
    except services.NotFoundError as e:
        raise _not_found(e)
    return services.quiz_detail(quiz, include_solutions=False)


@app.post('/quizzes/{quiz_id}/attempts', status_code=201)
def submit_attempt(
    quiz_id: int,
    payload: AttemptIn,
    request: Request,
    db: Session = Depends(get_session),
    session_ctx: Optional[SessionContext] = Depends(get_optional_session),
):
    """Grade a submitted attempt and store it.

    Anonymous respondents are allowed; with a bearer token the attempt
    is linked to the caller. Returns the new attempt id and score.
    """
    _enforce_attempt_rate_limit(request)
    svc = services.AttemptService(db)
    try:
        return svc.submit(quiz_id, payload, session_ctx)
    except services.NotFoundError as e:
        raise _not_found(e)
    except services.SubmissionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get('/quizzes/{quiz_id}/attempts/{attempt_id}')
def get_attempt(quiz_id: int, attempt_id: int, db: Session = Depends(get_session),
                session_ctx: Optional[SessionContext] = Depends(get_optional_session)):
    """Per-question review of a stored attempt with its stored score."""
    try:
        return services.AttemptService(db).review(quiz_id, attempt_id, session_ctx)
    except services.NotFoundError as e:
        raise _not_found(e)


@app.get('/me/attempts')
def my_attempts(limit: int = 3, db: Session = Depends(get_session),
                session_ctx: SessionContext = Depends(get_current_session)):
    """Most recent completed attempts of the authenticated user."""
    limit = max(1, min(limit, 50))
    return services.AttemptService(db).recent_for_user(session_ctx, limit=limit)


@app.get('/builder/quizzes')
def builder_list(db: Session = Depends(get_session), session_ctx: SessionContext = Depends(get_current_session)):
    """Quizzes created by the caller, newest first."""
    quizzes = services.QuizService(db).list_owned(session_ctx)
    return [services.quiz_summary(q) for q in quizzes]


@app.post('/builder/quizzes', status_code=201)
def builder_create(payload: QuizIn, db: Session = Depends(get_session),
                   session_ctx: SessionContext = Depends(get_current_session)):
    """Create a quiz as draft or published.

    Validation problems come back as a 422 with one entry per field.
    """
    try:
        quiz = services.QuizService(db).create(session_ctx, payload)
    except services.AuthoringValidationError as e:
        raise _invalid_quiz(e)
    return services.quiz_detail(quiz, include_solutions=True)


@app.get('/builder/quizzes/{quiz_id}')
def builder_get(quiz_id: int, db: Session = Depends(get_session),
                session_ctx: SessionContext = Depends(get_current_session)):
    """Full definition of an owned quiz, including correct answers."""
    try:
        quiz = services.QuizService(db).get_owned(session_ctx, quiz_id)
    except services.NotFoundError as e:
        raise _not_found(e)
    return services.quiz_detail(quiz, include_solutions=True)


@app.put('/builder/quizzes/{quiz_id}')
def builder_update(quiz_id: int, payload: QuizIn, db: Session = Depends(get_session),
                   session_ctx: SessionContext = Depends(get_current_session)):
    """Replace an owned quiz definition (save draft or publish)."""
    try:
        quiz = services.QuizService(db).update(session_ctx, quiz_id, payload)
    except services.NotFoundError as e:
        raise _not_found(e)
    except services.AuthoringValidationError as e:
        raise _invalid_quiz(e)
    return services.quiz_detail(quiz, include_solutions=True)


@app.delete('/builder/quizzes/{quiz_id}', status_code=204)
def builder_delete(quiz_id: int, db: Session = Depends(get_session),
                   session_ctx: SessionContext = Depends(get_current_session)):
    """Delete an owned quiz with everything attached to it."""
    try:
        services.QuizService(db).delete(session_ctx, quiz_id)
    except services.NotFoundError as e:
        raise _not_found(e)
    return Response(status_code=204)


@app.post('/builder/quizzes/{quiz_id}/questions/reorder')
def builder_reorder_questions(quiz_id: int, payload: ReorderIn, db: Session = Depends(get_session),
                              session_ctx: SessionContext = Depends(get_current_session)):
    """Persist a new question order; numbers are rewritten as 1..n."""
    try:
        quiz = services.QuizService(db).reorder_questions(session_ctx, quiz_id, payload.question_ids)
    except services.NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return services.quiz_detail(quiz, include_solutions=True)


@app.post('/builder/questions/{question_id}/answers/reorder')
def builder_reorder_answers(question_id: int, payload: AnswerReorderIn, db: Session = Depends(get_session),
                            session_ctx: SessionContext = Depends(get_current_session)):
    """Persist a new answer order within a question."""
    svc = services.QuizService(db)
    try:
        question = svc.reorder_answers(session_ctx, question_id, payload.answer_ids)
    except services.NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [
        {'id': a.id, 'answer_text': a.answer_text, 'order_number': a.order_number, 'is_correct': a.is_correct}
        for a in sorted(question.answers, key=lambda a: a.order_number)
    ]


@app.get('/builder/quizzes/{quiz_id}/stats')
def builder_stats(quiz_id: int, db: Session = Depends(get_session),
                  session_ctx: SessionContext = Depends(get_current_session)):
    """Attempt list, average score and per-question correct rates for an owned quiz."""
    try:
        return services.StatsService(db).quiz_stats(session_ctx, quiz_id)
    except services.NotFoundError as e:
        raise _not_found(e)


@app.post('/builder/previews', status_code=201)
def store_preview(payload: QuizIn, db: Session = Depends(get_session),
                  session_ctx: SessionContext = Depends(get_current_session)):
    """Store the current (possibly incomplete) builder form for preview."""
    preview = services.PreviewService(db).store(session_ctx, payload)
    return {'preview_id': preview.id}


@app.get('/builder/previews/{preview_id}')
def load_preview(preview_id: int, db: Session = Depends(get_session),
                 session_ctx: SessionContext = Depends(get_current_session)):
    """Return a stored preview snapshot owned by the caller."""
    try:
        return services.PreviewService(db).load(session_ctx, preview_id)
    except services.NotFoundError as e:
        raise _not_found(e)


@app.delete('/builder/previews/{preview_id}', status_code=204)
def discard_preview(preview_id: int, db: Session = Depends(get_session),
                    session_ctx: SessionContext = Depends(get_current_session)):
    """Drop a preview snapshot once the quiz is saved or abandoned."""
    try:
        services.PreviewService(db).discard(session_ctx, preview_id)
    except services.NotFoundError as e:
        raise _not_found(e)
    return Response(status_code=204)
