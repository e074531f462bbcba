# Typed dataclasses shared across the generation modules.

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

T = TypeVar("T")


# ---------- message content parts

@dataclass
class TextPart:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ImagePart:
    """Image reference; the url is expected to be a data:image/... URL."""
    url: str
    detail: str = "auto"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url, "detail": self.detail}}


@dataclass
class FileRefPart:
    filename: str
    file_data: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "file", "file": {"filename": self.filename, "file_data": self.file_data}}


ContentPart = Union[TextPart, ImagePart, FileRefPart]


@dataclass
class Message:
    """Single chat turn: system, user, or assistant."""
    role: str
    content: Union[str, List[ContentPart]]
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [p.to_dict() for p in self.content]}


@dataclass
class Payload:
    """One chat-completions request."""
    model: str
    messages: List[Message]
    max_tokens: int
    temperature: float = 0.7
    response_format: Optional[Dict[str, str]] = None

    @property
    def truncated(self) -> bool:
        return any(m.truncated for m in self.messages)

    def to_request(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if self.response_format:
            body["response_format"] = self.response_format
        return body


@dataclass
class PayloadResult:
    is_valid: bool
    payload: Optional[Payload] = None
    messages: List[Message] = field(default_factory=list)
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    truncated: bool = False
    over_budget: bool = False
    estimated_tokens: int = 0
    model_limit: int = 0


# ---------- requests

@dataclass(frozen=True)
class GenerationConstraints:
    count: Optional[int] = None
    difficulty: str = "medium"
    max_words: Optional[int] = None
    language: str = "en"
    model: Optional[str] = None
    temperature: Optional[float] = None
    set_index: int = 1
    total_sets: int = 1


@dataclass(frozen=True)
class GenerationRequest:
    kind: str  # questions | free-text | course | vision
    prompt: str = ""
    source_content: Optional[str] = None
    constraints: GenerationConstraints = field(default_factory=GenerationConstraints)


# ---------- generated content

@dataclass
class Question:
    text: str
    options: List[str]
    correct_answer_index: int
    explanation: str = ""
    fallback: bool = False

    def __post_init__(self):
        if len(self.options) != 4:
            raise ValueError(f"Question needs exactly 4 options, got {len(self.options)}")
        if not 0 <= self.correct_answer_index <= 3:
            raise ValueError(f"correct_answer_index out of range: {self.correct_answer_index}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.text,
            "options": list(self.options),
            "correct_answer": self.correct_answer_index,
            "explanation": self.explanation,
            "fallback": self.fallback,
        }


@dataclass
class QuestionSet:
    questions: List[Question]


@dataclass
class FreeText:
    text: str
    fallback: bool = False


@dataclass
class CourseSection:
    title: str
    content: str
    order: int


@dataclass
class CourseSections:
    title: str
    summary: str
    sections: List[CourseSection]
    fallback: bool = False


GeneratedContent = Union[QuestionSet, FreeText, CourseSections]


@dataclass
class IntegrityVerdict:
    passed: bool
    reasons: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.passed


# ---------- recovery

@dataclass
class RecoveryRecord:
    key: str
    payload_snapshot: Optional[Dict[str, Any]]
    context: str
    timestamp: float

    def to_json(self) -> str:
        return json.dumps(
            {
                "key": self.key,
                "payload": self.payload_snapshot,
                "context": self.context,
                "timestamp": self.timestamp,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "RecoveryRecord":
        data = json.loads(raw)
        return cls(
            key=data["key"],
            payload_snapshot=data.get("payload"),
            context=data.get("context", ""),
            timestamp=float(data["timestamp"]),
        )


@dataclass
class ParseOutcome(Generic[T]):
    """Result of one parsing step: a value, or the reason there is none."""
    value: Optional[T] = None
    error: Optional[str] = None
    strategy: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None
