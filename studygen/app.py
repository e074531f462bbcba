# ============================================================
# studygen FastAPI App
# ------------------------------------------------------------
# HTTP surface over the generation pipeline:
#   - question sets, free text, courses, enhancement, vision
#   - OpenAI client when a key is configured, Echo client otherwise
#   - PipelineFailure -> 400 (fix your input) / 503 (try again)
# ============================================================

import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

# --- Local imports ---
from studygen.errors import PipelineFailure
from studygen.generate import (
    CourseSections,
    EchoDevClient,
    FreeText,
    GenerationConstraints,
    GenerationRequest,
    GenerationService,
    QuestionSet,
    RecoveryService,
)
from studygen.generate.clients.openai_client import OpenAIClient
from studygen.keys import ApiKeyManager
from studygen.settings import settings
from studygen.storage import build_store

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s: %(message)s",
)
logger = logging.getLogger("studygen")


# ------------------------------------------------------------
# 🔧 Service wiring + model client selection
# ------------------------------------------------------------
@lru_cache(maxsize=1)
def get_service() -> GenerationService:
    store = build_store(settings.RECOVERY_STORE, settings.RECOVERY_DB_PATH)
    keys = ApiKeyManager(store)
    if settings.OPENAI_API_KEY:
        keys.set(settings.OPENAI_API_KEY)

    if keys.has_key():
        model_client = OpenAIClient(
            keys,
            base_url=settings.OPENAI_BASE_URL,
            timeout_s=settings.REQUEST_TIMEOUT_S,
        )
    else:
        logger.warning("No OpenAI API key configured, using EchoDevClient")
        model_client = EchoDevClient()

    recovery = RecoveryService(
        store,
        key_manager=keys,
        max_attempts=settings.MAX_ATTEMPTS,
        ttl_s=settings.RECOVERY_TTL_S,
        max_records=settings.RECOVERY_MAX_RECORDS,
    )
    return GenerationService(
        model_client,
        recovery,
        config_path=settings.GENERATION_CONFIG,
        enable_fallback=settings.ENABLE_FALLBACK,
    )


def _http_error(e: PipelineFailure) -> HTTPException:
    status = 503 if e.details.recoverable else 400
    logger.error("Request failed: %s (%s)", e.details.code.value, e.details.context)
    return HTTPException(status_code=status, detail=e.details.user_message)


# ------------------------------------------------------------
# 🚀 FastAPI init
# ------------------------------------------------------------
app = FastAPI(title="studygen API", version="0.1")


# ------------------------------------------------------------
# 📦 Pydantic models
# ------------------------------------------------------------
class QuestionsRequest(BaseModel):
    prompt: str = ""
    count: int = 5
    difficulty: str = "medium"
    source_text: Optional[str] = None
    set_index: int = 1
    total_sets: int = 1
    language: str = "en"


class QuestionOut(BaseModel):
    question: str
    options: List[str]
    correct_answer: int
    explanation: str
    fallback: bool = False


class QuestionsResponse(BaseModel):
    questions: List[QuestionOut]
    count: int


class ContentRequest(BaseModel):
    prompt: str
    source_text: Optional[str] = None


class TextResponse(BaseModel):
    text: str
    fallback: bool = False


class CourseRequest(BaseModel):
    prompt: str = ""
    source_text: str


class SectionOut(BaseModel):
    title: str
    content: str
    order: int


class CourseResponse(BaseModel):
    title: str
    summary: str
    sections: List[SectionOut]
    fallback: bool = False


class EnhanceRequest(BaseModel):
    text: str
    prompt: str = ""


class VisionRequest(BaseModel):
    image_base64: str = Field(..., description="Base64 image data, with or without a data: prefix")
    prompt: str


# ------------------------------------------------------------
# 🧠 Generation routes
# ------------------------------------------------------------
@app.post("/questions", response_model=QuestionsResponse)
async def questions(req: QuestionsRequest, service: GenerationService = Depends(get_service)):
    request = GenerationRequest(
        kind="questions",
        prompt=req.prompt,
        source_content=req.source_text,
        constraints=GenerationConstraints(
            count=req.count,
            difficulty=req.difficulty,
            language=req.language,
            set_index=req.set_index,
            total_sets=req.total_sets,
        ),
    )
    try:
        out: QuestionSet = await service.generate(request)
    except PipelineFailure as e:
        raise _http_error(e) from e
    items = [QuestionOut(**q.to_dict()) for q in out.questions]
    return QuestionsResponse(questions=items, count=len(items))


@app.post("/content", response_model=TextResponse)
async def content(req: ContentRequest, service: GenerationService = Depends(get_service)):
    request = GenerationRequest(kind="free-text", prompt=req.prompt, source_content=req.source_text)
    try:
        out: FreeText = await service.generate(request)
    except PipelineFailure as e:
        raise _http_error(e) from e
    return TextResponse(text=out.text, fallback=out.fallback)


@app.post("/course", response_model=CourseResponse)
async def course(req: CourseRequest, service: GenerationService = Depends(get_service)):
    request = GenerationRequest(kind="course", prompt=req.prompt, source_content=req.source_text)
    try:
        out: CourseSections = await service.generate(request)
    except PipelineFailure as e:
        raise _http_error(e) from e
    return CourseResponse(
        title=out.title,
        summary=out.summary,
        sections=[SectionOut(title=s.title, content=s.content, order=s.order) for s in out.sections],
        fallback=out.fallback,
    )


@app.post("/enhance", response_model=TextResponse)
async def enhance(req: EnhanceRequest, service: GenerationService = Depends(get_service)):
    text = await service.enhance_text(req.text, req.prompt)
    return TextResponse(text=text)


@app.post("/vision", response_model=TextResponse)
async def vision(req: VisionRequest, service: GenerationService = Depends(get_service)):
    request = GenerationRequest(kind="vision", prompt=req.prompt, source_content=req.image_base64)
    try:
        out: FreeText = await service.generate(request)
    except PipelineFailure as e:
        raise _http_error(e) from e
    return TextResponse(text=out.text)


# ------------------------------------------------------------
# 🧭 Health checks
# ------------------------------------------------------------
@app.get("/health")
def health(service: GenerationService = Depends(get_service)):
    report = service.recovery.health_check()
    return {
        "status": "ok" if report.is_healthy else "degraded",
        "env": settings.ENV,
        "issues": report.issues,
    }


@app.get("/healthz")
def healthz():
    return {
        "ok": True,
        "env": settings.ENV,
        "debug": settings.DEBUG,
        "app": settings.app_name,
    }


@app.get("/")
def hello():
    return {"message": "studygen service running."}
