# =============================================================
# generator.py
# -------------------------------------------------------------
# GenerationService: the only entry point the rest of the app uses.
# Each task composes the same steps:
#   sanitize -> messages -> build_payload ->
#   execute_with_recovery(call -> parse -> integrity) -> result
# and surfaces every failure as PipelineFailure.
# =============================================================

from __future__ import annotations

import copy
import logging
import os
import random
from typing import Any, Dict, List, Optional

import yaml

from ..errors import (
    GenerationError,
    GenerationFailedError,
    InsufficientSourceContentError,
    InvalidRequestError,
    PipelineFailure,
    TokenLimitExceededError,
    classify_error,
)
from ..ingest.sanitize import (
    image_mime_type,
    sanitize_base64_image,
    sanitize_difficulty,
    sanitize_file_content,
    sanitize_language,
    sanitize_number,
    sanitize_text,
)
from . import prompts
from .fallback import fallback_content, fallback_course, fallback_questions
from .integrity import (
    check_content_integrity,
    check_generated_content,
    check_source_quality,
    filter_grounded,
)
from .interpreter import parse_course_sections, parse_questions, parse_text
from .payload import (
    build_payload,
    extract_file_ref,
    merge_prompt_and_source,
    require_payload,
    validate_word_count,
)
from .recovery import RecoveryService
from .types import (
    CourseSections,
    FreeText,
    GeneratedContent,
    GenerationRequest,
    ImagePart,
    Message,
    PayloadResult,
    Question,
    QuestionSet,
    TextPart,
)

logger = logging.getLogger(__name__)

QUESTION_CONTEXT = "QUESTION_GENERATION"
CONTENT_CONTEXT = "CONTENT_GENERATION"
COURSE_CONTEXT = "COURSE_GENERATION"
ENHANCE_CONTEXT = "CONTENT_ENHANCEMENT"
VISION_CONTEXT = "IMAGE_ANALYSIS"

JSON_MODE = {"type": "json_object"}

DEFAULT_CONFIG: Dict[str, Any] = {
    "model": "gpt-4.1-2025-04-14",
    "questions": {
        "temperature": 0.3,
        "default_count": 5,
        "max_count": 50,
        "tokens_per_question": 300,
        "min_max_tokens": 2000,
        "max_max_tokens": 16000,
        "strict_grounding": False,
    },
    "content": {"temperature": 0.2, "max_tokens": 2000, "max_words": 2000},
    "course": {
        "temperature": 0.1,
        "max_tokens": 6000,
        "max_words": 15000,
        "min_source_chars": 200,
        "min_output_chars": 500,
        "min_output_words": 200,
    },
    "enhance": {"temperature": 0.1, "max_tokens": 2000},
    "vision": {"model": "gpt-4o", "temperature": 0.7, "max_tokens": 1500, "max_words": 1000},
}

_OMITTED = "<omitted>"


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k].update(v)
        else:
            out[k] = v
    return out


def _snapshot(result: PayloadResult) -> Dict[str, Any]:
    """Payload shape for the recovery record, without inline image/file data."""
    if result.payload is None:
        return {"error": result.error}
    body = result.payload.to_request()
    for msg in body["messages"]:
        if isinstance(msg["content"], list):
            for part in msg["content"]:
                if part["type"] == "image_url":
                    part["image_url"]["url"] = _OMITTED
                elif part["type"] == "file":
                    part["file"]["file_data"] = _OMITTED
    return body


def _preflight_failure(exc: Exception, context: str) -> PipelineFailure:
    if isinstance(exc, ValueError):
        exc = InvalidRequestError(str(exc), user_message=str(exc))
    details = classify_error(exc, context)
    logger.error("%s rejected before generation: %s (%s)", context, details.code.value, details.message)
    return PipelineFailure(details)


class GenerationService:
    def __init__(
        self,
        client,
        recovery: RecoveryService,
        *,
        config: Optional[Dict[str, Any]] = None,
        config_path: Optional[str] = None,
        rng: Optional[random.Random] = None,
        enable_fallback: bool = True,
    ):
        self.client = client
        self.recovery = recovery
        self.config_path = config_path
        self.cfg = _merge(_merge(DEFAULT_CONFIG, self._load_config()), config or {})
        self.rng = rng or random.Random()
        self.enable_fallback = enable_fallback

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path or not os.path.exists(self.config_path):
            return {}
        with open(self.config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _task(self, name: str) -> Dict[str, Any]:
        return self.cfg.get(name, {})

    def _model(self, task: str, override: Optional[str] = None) -> str:
        return override or self._task(task).get("model") or self.cfg["model"]

    def _setting(self, task: str, key: str, override: Any = None) -> Any:
        return self._task(task).get(key) if override is None else override

    def _fallback(self, fn, *args):
        if not self.enable_fallback:
            return None
        return lambda: fn(*args)

    # ---------- dispatch

    async def generate(self, request: GenerationRequest) -> GeneratedContent:
        """Run one GenerationRequest and wrap the result in its content variant."""
        c = request.constraints
        overrides = dict(model=c.model, temperature=c.temperature, max_words=c.max_words)
        if request.kind == "questions":
            questions = await self.generate_questions(
                request.prompt,
                c.count,
                c.difficulty,
                source_text=request.source_content,
                set_index=c.set_index,
                total_sets=c.total_sets,
                language=c.language,
                **overrides,
            )
            return QuestionSet(questions)
        if request.kind == "free-text":
            return await self._content(request.prompt, request.source_content, **overrides)
        if request.kind == "course":
            return await self.generate_course(request.prompt, request.source_content or "", **overrides)
        if request.kind == "vision":
            return FreeText(await self.analyze_image(request.source_content or "", request.prompt, **overrides))
        raise _preflight_failure(InvalidRequestError(f"Unknown generation kind: {request.kind!r}"), "Unknown")

    # ---------- questions

    async def generate_questions(
        self,
        prompt: str,
        count: Any,
        difficulty: Any,
        source_text: Optional[str] = None,
        set_index: int = 1,
        total_sets: int = 1,
        language: str = "en",
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_words: Optional[int] = None,
    ) -> List[Question]:
        """
        Generate up to ``count`` multiple-choice questions, shuffled.

        With source text, the material must pass the quality gate first
        and every question must be lexically grounded in it. An empty
        batch counts as a failed attempt.

        Source text holding an ``=== File: ... ===`` block with base64 data
        is sent to the model as the file itself. Neither the quality gate
        nor the grounding filter applies to it, since no text is available.
        """
        cfg = self._task("questions")
        try:
            clean_prompt = sanitize_text(prompt, required=False)
            file_ref = extract_file_ref(source_text) if source_text else None
            source = sanitize_file_content(source_text) if source_text and not file_ref else ""
            if not clean_prompt and not source and not file_ref:
                raise InvalidRequestError(
                    "A prompt or source text is required",
                    user_message="Please enter a prompt or upload a file to generate questions from.",
                )
            n = int(sanitize_number(count, 1, cfg["max_count"], cfg["default_count"]).value)
            level = sanitize_difficulty(difficulty)
            lang = sanitize_language(language)

            word_limit = self._setting("questions", "max_words", max_words)
            if word_limit is not None:
                words = validate_word_count(merge_prompt_and_source(clean_prompt, source), word_limit)
                if not words.is_valid:
                    raise TokenLimitExceededError(words.error)
            if source:
                quality = check_source_quality(source)
                if not quality.passed:
                    raise InsufficientSourceContentError(
                        f"Insufficient content for question generation: {'; '.join(quality.reasons)}"
                    )
        except (ValueError, GenerationError) as e:
            raise _preflight_failure(e, QUESTION_CONTEXT) from e

        logger.info(
            "Generating questions: count=%d difficulty=%s source_chars=%d file=%s set=%d/%d language=%s",
            n, level, len(source), file_ref.filename if file_ref else None, set_index, total_sets, lang,
        )
        if file_ref:
            user = Message(
                "user",
                [file_ref, TextPart(prompts.question_file_prompt(clean_prompt, n, level, set_index, total_sets, lang))],
            )
        else:
            user = Message(
                "user",
                prompts.question_user_prompt(clean_prompt, n, level, source or None, set_index, total_sets, lang),
            )
        messages = [Message("system", prompts.question_system_prompt()), user]
        max_tokens = min(cfg["max_max_tokens"], max(cfg["min_max_tokens"], n * cfg["tokens_per_question"]))
        result = build_payload(
            self._model("questions", model),
            messages,
            max_tokens,
            self._setting("questions", "temperature", temperature),
            JSON_MODE,
        )

        async def attempt() -> List[Question]:
            payload = require_payload(result)
            raw = await self.client.call(payload, QUESTION_CONTEXT)
            questions = parse_questions(raw)
            if source:
                questions = filter_grounded(questions, source, strict=cfg["strict_grounding"])
            if not questions:
                raise GenerationFailedError("No valid questions could be generated from the response")
            return questions[:n]

        questions = await self.recovery.execute_with_recovery(
            attempt,
            QUESTION_CONTEXT,
            self._fallback(fallback_questions, n, clean_prompt or getattr(file_ref, "filename", "the provided content")),
            _snapshot(result),
        )
        questions = list(questions)
        self.rng.shuffle(questions)
        return questions

    # ---------- free text

    async def _content(
        self,
        prompt: str,
        source_text: Optional[str],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_words: Optional[int] = None,
    ) -> FreeText:
        cfg = self._task("content")
        try:
            clean_prompt = sanitize_text(prompt)
            source = sanitize_file_content(source_text) if source_text else ""
            words = validate_word_count(
                merge_prompt_and_source(clean_prompt, source), self._setting("content", "max_words", max_words)
            )
            if not words.is_valid:
                raise TokenLimitExceededError(words.error)
        except (ValueError, GenerationError) as e:
            raise _preflight_failure(e, CONTENT_CONTEXT) from e

        messages = [
            Message("system", prompts.CONTENT_SYSTEM),
            Message("user", prompts.content_user_prompt(clean_prompt, source or None)),
        ]
        result = build_payload(
            self._model("content", model),
            messages,
            cfg["max_tokens"],
            self._setting("content", "temperature", temperature),
        )

        async def attempt() -> FreeText:
            raw = await self.client.call(require_payload(result), CONTENT_CONTEXT)
            text = parse_text(raw)
            verdict = check_generated_content(text, source or clean_prompt)
            if not verdict.passed:
                raise GenerationFailedError(f"Generated content failed integrity check: {'; '.join(verdict.reasons)}")
            return FreeText(text)

        return await self.recovery.execute_with_recovery(
            attempt,
            CONTENT_CONTEXT,
            self._fallback(lambda: FreeText(fallback_content(clean_prompt, source), fallback=True)),
            _snapshot(result),
        )

    async def generate_content(self, prompt: str, source_text: Optional[str] = None, **overrides) -> str:
        return (await self._content(prompt, source_text, **overrides)).text

    # ---------- course

    async def _course(
        self,
        prompt: str,
        source_text: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_words: Optional[int] = None,
    ) -> FreeText:
        cfg = self._task("course")
        try:
            clean_prompt = sanitize_text(prompt, required=False)
            source = sanitize_file_content(source_text)
            if len(source) < cfg["min_source_chars"]:
                raise InsufficientSourceContentError(
                    f"Course generation requires substantial file content "
                    f"(minimum {cfg['min_source_chars']} characters)"
                )
            words = validate_word_count(source, self._setting("course", "max_words", max_words))
            if not words.is_valid:
                raise TokenLimitExceededError(words.error)
        except (ValueError, GenerationError) as e:
            raise _preflight_failure(e, COURSE_CONTEXT) from e

        messages = [
            Message("system", prompts.course_system_prompt()),
            Message("user", prompts.course_user_prompt(clean_prompt, source)),
        ]
        result = build_payload(
            self._model("course", model),
            messages,
            cfg["max_tokens"],
            self._setting("course", "temperature", temperature),
        )

        async def attempt() -> FreeText:
            raw = await self.client.call(require_payload(result), COURSE_CONTEXT)
            text = parse_text(raw)
            n_words = len(text.split())
            if len(text) < cfg["min_output_chars"]:
                raise GenerationFailedError(f"Generated course content is insufficient ({len(text)} characters)")
            if n_words < cfg["min_output_words"]:
                raise GenerationFailedError(f"Generated course content has insufficient detail ({n_words} words)")
            verdict = check_generated_content(text, source)
            if not verdict.passed:
                raise GenerationFailedError(f"Generated course failed integrity check: {'; '.join(verdict.reasons)}")
            logger.info(
                "Course generated: chars=%d words=%d expansion=%.2f",
                len(text), n_words, n_words / max(1, len(source.split())),
            )
            return FreeText(text)

        return await self.recovery.execute_with_recovery(
            attempt,
            COURSE_CONTEXT,
            self._fallback(lambda: FreeText(fallback_course(clean_prompt, source), fallback=True)),
            _snapshot(result),
        )

    async def generate_course_content(self, prompt: str, source_text: str, **overrides) -> str:
        """Markdown course built from the source text."""
        return (await self._course(prompt, source_text, **overrides)).text

    async def generate_course(self, prompt: str, source_text: str, **overrides) -> CourseSections:
        course = await self._course(prompt, source_text, **overrides)
        return parse_course_sections(course.text, fallback=course.fallback)

    # ---------- enhancement

    async def enhance_text(self, text: str, prompt: str = "") -> str:
        """Reorganize text without adding to it; any failure returns the original."""
        cfg = self._task("enhance")
        clean = sanitize_file_content(text)
        if not clean:
            return text
        clean_prompt = sanitize_text(prompt, required=False)

        messages = [
            Message("system", prompts.ENHANCE_SYSTEM),
            Message("user", prompts.enhance_user_prompt(clean, clean_prompt)),
        ]
        result = build_payload(self._model("enhance"), messages, cfg["max_tokens"], cfg["temperature"])

        async def attempt() -> str:
            return parse_text(await self.client.call(require_payload(result), ENHANCE_CONTEXT))

        try:
            enhanced = await self.recovery.execute_with_recovery(attempt, ENHANCE_CONTEXT, snapshot=_snapshot(result))
        except PipelineFailure as e:
            logger.warning("Enhancement failed, returning original text: %s", e.details.message)
            return text

        verdict = check_content_integrity(clean, enhanced)
        if not verdict.passed:
            logger.warning("Enhanced content failed integrity check, returning original: %s", verdict.reasons)
            return text
        return enhanced

    # ---------- vision

    async def analyze_image(
        self,
        base64_image: str,
        prompt: str,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_words: Optional[int] = None,
    ) -> str:
        cfg = self._task("vision")
        try:
            data = sanitize_base64_image(base64_image)
            mime = image_mime_type(base64_image)
            clean_prompt = sanitize_text(prompt)
            words = validate_word_count(clean_prompt, self._setting("vision", "max_words", max_words))
            if not words.is_valid:
                raise TokenLimitExceededError(words.error)
        except (ValueError, GenerationError) as e:
            raise _preflight_failure(e, VISION_CONTEXT) from e

        messages = [
            Message("user", [TextPart(clean_prompt), ImagePart(f"data:{mime};base64,{data}")]),
        ]
        result = build_payload(
            self._model("vision", model),
            messages,
            cfg["max_tokens"],
            self._setting("vision", "temperature", temperature),
        )

        async def attempt() -> str:
            return parse_text(await self.client.call(require_payload(result), VISION_CONTEXT))

        return await self.recovery.execute_with_recovery(attempt, VISION_CONTEXT, snapshot=_snapshot(result))
