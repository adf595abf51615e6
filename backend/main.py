"""
FastAPI Backend for the AI Study Tutor

Provides REST API endpoints for:
- Study sessions and their workflow stage
- AI question generation and model answers
- Two-phase answer submission (fast acknowledgement or deferred)
- Batch and full-test evaluation
- Teaching chat, study notes and study break recommendations
- Knowledge area tracking

Every service is built once in create_app() and hung off app.state.
"""

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Optional, List
import os
import sys
import time
import logging

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

# Add the ai_study_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'ai_study_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from ai_study_tutor import __version__
from ai_study_tutor.ai_gateway import AIGateway, OpenAIChatModel
from ai_study_tutor.answer_submission import AnswerSubmissionController
from ai_study_tutor.batch_evaluation import BatchEvaluationController
from ai_study_tutor.config import Settings, load_settings
from ai_study_tutor.errors import (
    AIGatewayError,
    NoAnswersError,
    NotFoundError,
    ParseError,
    StudyTutorError,
    ValidationError,
)
from ai_study_tutor.knowledge_areas import derive_knowledge_areas
from ai_study_tutor.models import STAGES, TEMPORARY_ANSWER_ID
from ai_study_tutor.repository import StudyRepository
from ai_study_tutor.response_cache import ResponseCache
from ai_study_tutor.tutor_service import TutorService


# ==================== Pydantic Models ====================

class CreateSessionRequest(BaseModel):
    userId: int
    topic: str
    stage: str = "analysis"


class UpdateStageRequest(BaseModel):
    stage: str


class GenerateQuestionsRequest(BaseModel):
    topic: str
    sessionId: int


class SubmitAnswerRequest(BaseModel):
    questionId: int
    userAnswer: str
    deferEvaluation: bool = False


class TeachingRequest(BaseModel):
    topic: str
    question: str


class NotesRequest(BaseModel):
    topic: str
    weakAreas: Optional[List[str]] = None


class CreateKnowledgeAreaRequest(BaseModel):
    sessionId: int
    name: str
    proficiency: int = Field(ge=0, le=100)


class UpdateProficiencyRequest(BaseModel):
    proficiency: int = Field(ge=0, le=100)


class StudyBreakRequest(BaseModel):
    sessionTime: int = Field(ge=0, description="Seconds studied so far")
    topic: str
    lastBreakType: Optional[str] = None


# ==================== Helper Functions ====================

def _require_text(value: str, field: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _require_stage(stage: str) -> str:
    if stage not in STAGES:
        raise ValidationError(f"Invalid stage: {stage}. Expected one of {', '.join(STAGES)}")
    return stage


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


# ==================== API Endpoints ====================

router = APIRouter(prefix="/api")


@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "AI Study Tutor API",
        "version": __version__,
        "cache": request.app.state.cache.get_stats(),
        "aiCalls": request.app.state.gateway.calls,
        "pendingEvaluations": request.app.state.submissions.pending_count,
    }


@router.post("/sessions", status_code=201)
async def create_session(body: CreateSessionRequest, request: Request):
    repository = request.app.state.repository
    session = await repository.create_session(
        body.userId, _require_text(body.topic, "topic"), _require_stage(body.stage)
    )
    return session.to_dict()


@router.get("/sessions")
async def list_sessions(request: Request, userId: int = Query(...)):
    sessions = await request.app.state.repository.get_user_sessions(userId)
    return {"sessions": [s.to_dict() for s in sessions]}


@router.get("/sessions/{session_id}")
async def get_session(session_id: int, request: Request):
    """Session plus its knowledge areas and stored batch evaluation (if any)."""
    repository = request.app.state.repository
    session = await repository.require_session(session_id)
    areas = await repository.get_session_knowledge_areas(session_id)
    evaluation = await repository.get_session_evaluation(session_id)

    data = session.to_dict()
    data["knowledgeAreas"] = [a.to_dict() for a in areas]
    data["evaluation"] = evaluation.to_dict() if evaluation else None
    return data


@router.patch("/sessions/{session_id}/stage")
async def update_session_stage(session_id: int, body: UpdateStageRequest, request: Request):
    session = await request.app.state.repository.update_session_stage(session_id, _require_stage(body.stage))
    logger.info(f"Session {session_id} moved to stage '{session.stage}'")
    return session.to_dict()


@router.post("/questions/generate")
async def generate_questions(body: GenerateQuestionsRequest, request: Request):
    questions = await request.app.state.tutor.generate_questions(
        body.sessionId, _require_text(body.topic, "topic")
    )
    return {"questions": [q.to_dict() for q in questions]}


@router.get("/sessions/{session_id}/questions")
async def get_session_questions(session_id: int, request: Request):
    repository = request.app.state.repository
    await repository.require_session(session_id)
    questions = await repository.get_session_questions(session_id)
    return {"questions": [q.to_dict() for q in questions]}


@router.get("/sessions/{session_id}/questions-with-answers")
async def get_questions_with_answers(session_id: int, request: Request):
    repository = request.app.state.repository
    await repository.require_session(session_id)
    rows = await repository.get_session_questions_with_answers(session_id)
    return {"questionsWithAnswers": [row.to_dict() for row in rows]}


@router.get("/sessions/{session_id}/correct-answers")
async def get_correct_answers(session_id: int, request: Request):
    answers = await request.app.state.tutor.get_correct_answers(session_id)
    return {"success": True, "answers": answers}


@router.post("/answers")
async def submit_answer(body: SubmitAnswerRequest, request: Request):
    """
    Submit an answer.

    202 with a temporary answer while evaluation runs in the background,
    or 200 with the stored placeholder when evaluation is deferred.
    """
    answer = request.app.state.submissions.submit(body.questionId, body.userAnswer, body.deferEvaluation)
    status = 202 if answer.id == TEMPORARY_ANSWER_ID else 200
    return JSONResponse(status_code=status, content=answer.to_dict())


@router.post("/sessions/{session_id}/evaluate-all-answers")
async def evaluate_all_answers(session_id: int, request: Request):
    outcome = await request.app.state.batch.evaluate_all(session_id)
    return outcome.to_dict()


@router.post("/sessions/{session_id}/evaluate")
async def evaluate_test(session_id: int, request: Request):
    result = await request.app.state.batch.evaluate_test(session_id)
    return result.to_dict()


@router.post("/teaching")
async def teaching(body: TeachingRequest, request: Request):
    content = await request.app.state.tutor.get_teaching_content(
        _require_text(body.topic, "topic"), _require_text(body.question, "question")
    )
    return content.to_dict()


@router.post("/notes/generate")
async def generate_notes(body: NotesRequest, request: Request):
    notes = await request.app.state.tutor.generate_notes(_require_text(body.topic, "topic"), body.weakAreas)
    return {"notes": notes}


@router.post("/knowledge-areas", status_code=201)
async def create_knowledge_area(body: CreateKnowledgeAreaRequest, request: Request):
    repository = request.app.state.repository
    await repository.require_session(body.sessionId)
    area = await repository.create_knowledge_area(body.sessionId, _require_text(body.name, "name"), body.proficiency)
    return area.to_dict()


@router.patch("/knowledge-areas/{area_id}")
async def update_knowledge_area(area_id: int, body: UpdateProficiencyRequest, request: Request):
    area = await request.app.state.repository.update_knowledge_area(area_id, body.proficiency)
    return area.to_dict()


@router.get("/sessions/{session_id}/knowledge-areas")
async def get_knowledge_areas(session_id: int, request: Request):
    repository = request.app.state.repository
    await repository.require_session(session_id)
    areas = await repository.get_session_knowledge_areas(session_id)
    return {"areas": [a.to_dict() for a in areas]}


@router.post("/sessions/{session_id}/knowledge-areas/derive")
async def derive_session_knowledge_areas(session_id: int, request: Request):
    repository = request.app.state.repository
    session = await repository.require_session(session_id)
    areas = await derive_knowledge_areas(repository, session, request.app.state.area_extractor)
    return {"areas": [a.to_dict() for a in areas]}


@router.post("/study-break")
async def study_break(body: StudyBreakRequest, request: Request):
    recommendation = await request.app.state.tutor.recommend_study_break(
        body.sessionTime, _require_text(body.topic, "topic"), body.lastBreakType
    )
    return {"success": True, "recommendation": recommendation.to_dict()}


# ==================== Application Factory ====================

def create_app(settings: Optional[Settings] = None, model=None, area_extractor=None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Runtime settings (read from the environment when omitted)
        model: Chat model with `async generate(prompt)`; an OpenAI model is
            created from settings when omitted, which requires OPENAI_API_KEY
        area_extractor: Optional knowledge-area extractor override
    """
    settings = settings or load_settings()
    setup_logging(level=settings.log_level, use_colors=True)
    if model is None:
        model = OpenAIChatModel.from_settings(settings)

    repository = StudyRepository()
    cache = ResponseCache(ttl_minutes=settings.cache_ttl_minutes)
    gateway = AIGateway(model, cache, timeout_seconds=settings.ai_timeout_seconds)
    submissions = AnswerSubmissionController(repository, gateway)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.section("SERVER STARTUP", {
            "model": getattr(model, "model", type(model).__name__),
            "ai_timeout_seconds": settings.ai_timeout_seconds,
            "cache_ttl_minutes": settings.cache_ttl_minutes,
            "questions_per_test": settings.questions_per_test,
        })
        yield
        if submissions.pending_count:
            logger.info(f"Waiting for {submissions.pending_count} in-flight evaluations")
        await submissions.drain()
        logger.success("In-flight evaluations drained")
        logger.section("SERVER SHUTDOWN", {"cache": cache.get_stats()})

    app = FastAPI(
        title="AI Study Tutor API",
        description="REST API for AI-generated quizzes, evaluation, teaching and study notes",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.repository = repository
    app.state.cache = cache
    app.state.gateway = gateway
    app.state.submissions = submissions
    app.state.area_extractor = area_extractor
    app.state.batch = BatchEvaluationController(repository, gateway, area_extractor)
    app.state.tutor = TutorService(repository, gateway, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        logger.request(request.method, request.url.path)
        response = await call_next(request)
        logger.response(response.status_code, request.url.path, duration=time.time() - start_time)
        return response

    @app.exception_handler(NoAnswersError)
    async def handle_no_answers(request: Request, exc: NoAnswersError):
        return JSONResponse(status_code=400, content={"success": False, "message": exc.message})

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"message": exc.message})

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"message": exc.message})

    @app.exception_handler(AIGatewayError)
    async def handle_gateway_error(request: Request, exc: AIGatewayError):
        logger.warning(f"AI backend unavailable: {exc.message}")
        return JSONResponse(status_code=502, content={"message": exc.message})

    @app.exception_handler(ParseError)
    async def handle_parse_error(request: Request, exc: ParseError):
        logger.warning(f"Unusable AI reply: {exc.message}", data={"raw": exc.raw_text[:200]})
        return JSONResponse(status_code=502, content={"message": exc.message})

    @app.exception_handler(StudyTutorError)
    async def handle_tutor_error(request: Request, exc: StudyTutorError):
        return JSONResponse(status_code=500, content={"message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": _validation_message(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", error=exc)
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
