# Generator package

# Makes generate/ importable and exposes key interfaces.

from .generator import GenerationService
from .recovery import HealthReport, RecoveryService
from .types import (
    CourseSection,
    CourseSections,
    FreeText,
    GenerationConstraints,
    GenerationRequest,
    Message,
    Payload,
    Question,
    QuestionSet,
)
from .clients.echo_dev_client import EchoDevClient

__all__ = [
    "GenerationService",
    "RecoveryService",
    "HealthReport",
    "CourseSection",
    "CourseSections",
    "FreeText",
    "GenerationConstraints",
    "GenerationRequest",
    "Message",
    "Payload",
    "Question",
    "QuestionSet",
    "EchoDevClient",
]
