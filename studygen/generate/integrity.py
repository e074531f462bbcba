# =============================================================
# integrity.py
# -------------------------------------------------------------
# Heuristic gates that keep generated output tied to its source:
#   - length ratio + term preservation for rewritten content
#   - banned "educational filler" phrases absent from the source
#   - per-question lexical grounding and option overlap
#   - generic template question rejection
#   - minimum quality bar for the source material itself
# Each check_* returns an IntegrityVerdict; validate_* wrap them
# as plain booleans.
# =============================================================

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Sequence, Set

from .types import IntegrityVerdict, Question

logger = logging.getLogger(__name__)

MIN_LENGTH_RATIO = 0.4
MAX_LENGTH_RATIO = 3.0
SALIENT_TERMS = 20
MIN_TERM_PRESERVATION = 0.4
LENIENT_GROUNDING = 0.15
STRICT_GROUNDING = 0.40

MIN_SOURCE_CHARS = 300
MIN_SOURCE_WORDS = 50
MIN_SOURCE_SENTENCES = 5
MIN_READABLE_RATIO = 0.75
MAX_GARBAGE_MARKERS = 10
MIN_TOPIC_INDICATORS = 10

BANNED_TERMS = (
    "assessment preparation",
    "assessment readiness",
    "educational structure",
    "learning structure",
    "educational goals",
    "learning objectives",
    "academic confidence",
    "confidence-building",
    "professional methodologies",
    "best practices",
    "industry standards",
    "professional development",
    "strategic approaches",
    "theoretical frameworks",
    "advanced techniques",
    "comprehensive analysis",
    "systematic evaluation",
    "key learning areas",
    "skill development",
    "competency building",
    "knowledge assessment",
    "performance evaluation",
    "progression from basic to advanced",
    "purpose of learning",
    "educational outcomes",
)

STOP_WORDS = frozenset(
    """
    what which when where does have been will would could should might must shall this that these those
    from with they them their there here more most some many much very also only just even still both
    each every such same other another through during before after above below between among within
    without around about under over into onto upon down back away again once then than like well good
    best better great large small long short high first last next right left full part whole half true
    false real main sure clear open close free easy hard young early late near little several
    important different following according
    """.split()
)

_WORD = re.compile(r"[a-z]+")
_GENERIC_TEMPLATE = re.compile(
    r"^(what is|which of|how do|when did|where is|why does).{0,20}(the|a|an)\s+"
    r"(concept|principle|method|approach|strategy|framework|system|process|technique|application|"
    r"implementation|development|management|organization|analysis|evaluation|assessment|measurement|"
    r"planning|design|structure|function|operation|procedure|improvement|enhancement|innovation|"
    r"technology|business|service|performance|quality|standard|practice|guideline|recommendation)"
    r"(\s|$|\?)"
)
_READABLE = re.compile(r"[a-zA-Z0-9\s.,!?;:()\-'\"]")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_GARBAGE = (
    re.compile(r"PDF-[\d.]+"),
    re.compile(r"%%EOF"),
    re.compile(r"/Type\s*/\w+"),
    re.compile(r"stream.*?endstream", re.DOTALL),
    re.compile(r"\d+\s+\d+\s+obj"),
    re.compile(r"endobj"),
)
_TOPIC_INDICATORS = re.compile(
    r"\b(?:learn|understand|study|knowledge|concept|principle|method|process|analysis|example|practice|"
    r"skill|development|information|education|training|course|lesson|objective|goal|content|material|"
    r"guide|instruction|explanation|description|definition|theory|application|implementation|strategy|"
    r"approach|technique|system|framework|model|research|data|result|conclusion|summary|overview|"
    r"introduction|chapter|section|topic|subject|important|significant|key|main|primary|essential|"
    r"fundamental|basic|advanced|professional|academic|industry|standard|best|quality|effective|"
    r"efficient|successful|problem|solution|question|answer|issue|challenge|opportunity|benefit|"
    r"advantage|requirement|criteria|guideline|recommendation|consideration|factor|element|aspect|"
    r"feature|characteristic|property|function|operation|procedure|step|stage|phase|level|degree|"
    r"structure|organization|management|administration|planning|design|improvement|enhancement|"
    r"innovation|technology|business|service|customer|user|market|value|performance|measurement|"
    r"evaluation|assessment|monitoring|control|documentation|report|document|file|record|archive|"
    r"reference|source|resource|tool|equipment|facility|environment|condition|situation|context|"
    r"background|history|current|present|future|trend|pattern|relationship|connection|interaction|"
    r"collaboration|coordination|integration|communication|presentation|demonstration|illustration|"
    r"comparison|contrast|discussion|debate|argument|position|perspective|viewpoint|opinion|"
    r"interpretation|reasoning)\b",
    re.IGNORECASE,
)


# ---------- helpers

def _tokens(text: str) -> List[str]:
    return _WORD.findall((text or "").lower())


def _in_vocab(word: str, vocab: Set[str]) -> bool:
    return (
        word in vocab
        or word + "s" in vocab
        or (len(word) > 4 and word.endswith("s") and word[:-1] in vocab)
        or word + "ed" in vocab
        or word + "ing" in vocab
    )


def content_words(text: str) -> List[str]:
    return [w for w in _tokens(text) if len(w) > 3 and w not in STOP_WORDS]


def salient_terms(text: str, limit: int = SALIENT_TERMS) -> List[str]:
    seen: List[str] = []
    for w in _tokens(text):
        if len(w) > 4 and w not in seen:
            seen.append(w)
            if len(seen) >= limit:
                break
    return seen


def find_fabricated_terms(generated: str, source: Optional[str]) -> List[str]:
    """Banned filler phrases present in ``generated`` but absent from ``source``."""
    gen = (generated or "").lower()
    src = (source or "").lower()
    return [t for t in BANNED_TERMS if t in gen and t not in src]


# ---------- rewritten content

def check_content_integrity(original: str, enhanced: str) -> IntegrityVerdict:
    if not original or not enhanced:
        return IntegrityVerdict(False, ["missing content"])

    reasons: List[str] = []
    ratio = len(enhanced) / len(original)
    if ratio < MIN_LENGTH_RATIO:
        reasons.append(f"too short relative to source (ratio {ratio:.2f})")
    elif ratio > MAX_LENGTH_RATIO:
        reasons.append(f"too long relative to source (ratio {ratio:.2f})")

    for term in find_fabricated_terms(enhanced, original):
        reasons.append(f"fabricated term: {term}")

    terms = salient_terms(original)
    if terms:
        enhanced_lower = enhanced.lower()
        kept = sum(1 for t in terms if t in enhanced_lower)
        preservation = kept / len(terms)
        if preservation < MIN_TERM_PRESERVATION:
            reasons.append(f"key terms not preserved ({kept}/{len(terms)})")

    verdict = IntegrityVerdict(not reasons, reasons)
    logger.info("Content integrity: ratio=%.2f passed=%s reasons=%s", ratio, verdict.passed, reasons)
    return verdict


def check_generated_content(generated: str, source: Optional[str] = None) -> IntegrityVerdict:
    """Free-text gate: no banned filler unless the source already uses it."""
    if not generated or not generated.strip():
        return IntegrityVerdict(False, ["empty content"])
    reasons = [f"fabricated term: {t}" for t in find_fabricated_terms(generated, source)]
    return IntegrityVerdict(not reasons, reasons)


def validate_content_integrity(original: str, enhanced: str) -> bool:
    return check_content_integrity(original, enhanced).passed


# ---------- questions

def _question_parts(question: Any) -> tuple:
    if isinstance(question, Question):
        return question.text, list(question.options)
    if isinstance(question, dict):
        text = question.get("question") or question.get("text") or ""
        options = question.get("options") or []
        return str(text), [str(o) for o in options] if isinstance(options, (list, tuple)) else []
    return "", []


def check_question_grounding(question: Any, source: str, strict: bool = False) -> IntegrityVerdict:
    text, options = _question_parts(question)
    if not text or not source:
        return IntegrityVerdict(False, ["missing question or source"])

    reasons: List[str] = []
    for term in find_fabricated_terms(text, source):
        reasons.append(f"fabricated term: {term}")

    vocab = set(_tokens(source))
    words = content_words(text)
    matched = sum(1 for w in words if _in_vocab(w, vocab))
    ratio = matched / len(words) if words else 0.0
    threshold = STRICT_GROUNDING if strict else LENIENT_GROUNDING
    if ratio < threshold:
        reasons.append(f"weak grounding ({matched}/{len(words)} terms, need {threshold:.0%})")

    option_hits = sum(
        1 for opt in options if any(len(w) > 3 and _in_vocab(w, vocab) for w in _tokens(opt))
    )
    if option_hits < 1:
        reasons.append("no option shares a word with the source")

    if _GENERIC_TEMPLATE.match(text.lower().strip()):
        reasons.append("generic template question")

    verdict = IntegrityVerdict(not reasons, reasons)
    if not verdict.passed:
        logger.info("Rejected question %r: %s", text[:60], reasons)
    return verdict


def validate_question_against_source(question: Any, source: str, strict: bool = False) -> bool:
    return check_question_grounding(question, source, strict=strict).passed


def filter_grounded(questions: Sequence[Question], source: str, strict: bool = False) -> List[Question]:
    """Keep only the questions that pass the grounding check."""
    kept = [q for q in questions if validate_question_against_source(q, source, strict=strict)]
    logger.info("Grounding filter kept %d/%d questions", len(kept), len(questions))
    return kept


# ---------- source material

def check_source_quality(source: str) -> IntegrityVerdict:
    if not source or len(source) < MIN_SOURCE_CHARS:
        return IntegrityVerdict(False, [f"source shorter than {MIN_SOURCE_CHARS} characters"])

    reasons: List[str] = []
    words = [w for w in source.split() if len(w) > 2 and w[0].isascii() and w[0].isalpha()]
    if len(words) < MIN_SOURCE_WORDS:
        reasons.append(f"only {len(words)} meaningful words (need {MIN_SOURCE_WORDS})")

    sentences = [s for s in _SENTENCE_SPLIT.split(source) if len(s.strip()) > 15]
    if len(sentences) < MIN_SOURCE_SENTENCES:
        reasons.append(f"only {len(sentences)} sentences (need {MIN_SOURCE_SENTENCES})")

    readable = len(_READABLE.findall(source)) / len(source)
    if readable <= MIN_READABLE_RATIO:
        reasons.append(f"readable ratio {readable:.2f} too low")

    garbage = sum(len(p.findall(source)) for p in _GARBAGE)
    if garbage >= MAX_GARBAGE_MARKERS:
        reasons.append(f"{garbage} PDF artifacts found")

    indicators = len(_TOPIC_INDICATORS.findall(source))
    if indicators < MIN_TOPIC_INDICATORS:
        reasons.append(f"only {indicators} topic indicators (need {MIN_TOPIC_INDICATORS})")

    verdict = IntegrityVerdict(not reasons, reasons)
    logger.info(
        "Source quality: chars=%d words=%d sentences=%d readable=%.2f garbage=%d indicators=%d passed=%s",
        len(source), len(words), len(sentences), readable, garbage, indicators, verdict.passed,
    )
    return verdict


def validate_source_quality(source: str) -> bool:
    return check_source_quality(source).passed
