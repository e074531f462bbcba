# =============================================================
# interpreter.py
# -------------------------------------------------------------
# Turns raw model text into structured content.
# Questions, in order of preference:
#   strict JSON -> repaired outermost {...}/[...] span -> free-text
#   "Question N: / A. / B. / Correct Answer: X" blocks
# Every question leaves here with exactly 4 options and a
# correct_answer_index in [0, 3].
# =============================================================

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterator, List, Optional, Tuple

import json_repair

from ..errors import ResponseParseError
from .types import CourseSection, CourseSections, ParseOutcome, Question

logger = logging.getLogger(__name__)

OPTION_COUNT = 4
DEFAULT_EXPLANATION = "Based on the provided content."
PLACEHOLDER_OPTIONS = (
    "None of the above",
    "Not stated in the material",
    "Cannot be determined",
    "All of the above",
)

_TEXT_KEYS = ("question", "text", "prompt")
_OPTION_KEYS = ("options", "choices", "answers")
_CORRECT_KEYS = ("correctAnswer", "correct_answer", "correctAnswerIndex", "correct_answer_index", "answer")
_ENVELOPE_KEYS = ("questions", "data", "items")

_FENCE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)
_OPTION_LABEL = re.compile(r"^\s*(?:option\s+)?([A-Da-d])\s*[.):\-]\s+")
_LETTER = re.compile(r"^\s*(?:option\s+)?([A-Da-d])\s*[.)]?\s*$", re.IGNORECASE)
_QUESTION_MARKER = re.compile(r"^\s*(?:\*\*)?(?:question\s*\d+\s*[:.)\-]|\d+\s*[.)])\s*(?:\*\*)?\s*(.*)$", re.IGNORECASE | re.MULTILINE)
_OPTION_LINE = re.compile(r"^\s*([A-Da-d])\s*[.)]\s*(.+?)\s*$")
_CORRECT_LINE = re.compile(r"correct\s*answer\s*[:\-]?\s*\(?([A-Da-d])\b", re.IGNORECASE)
_EXPLANATION_LINE = re.compile(r"^\s*explanation\s*[:\-]\s*(.+)$", re.IGNORECASE)
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*)$", re.MULTILINE)


# ---------- JSON recovery

def strip_code_fences(raw: str) -> str:
    m = _FENCE.match(raw or "")
    return m.group(1).strip() if m else (raw or "").strip()


def _strict(text: str) -> ParseOutcome[Any]:
    try:
        return ParseOutcome(value=json.loads(text), strategy="strict")
    except json.JSONDecodeError as e:
        return ParseOutcome(error=f"strict: {e}", strategy="strict")


def _lenient(text: str) -> ParseOutcome[Any]:
    spans: List[Tuple[int, int]] = []
    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start, end = text.find(open_ch), text.rfind(close_ch)
        if start != -1 and end > start:
            spans.append((start, end))
    if not spans:
        return ParseOutcome(error="lenient: no JSON span found", strategy="lenient")

    # json_repair fixes trailing commas, single quotes and raw newlines
    for start, end in sorted(spans):
        value = json_repair.loads(text[start:end + 1])
        if isinstance(value, dict) or (isinstance(value, list) and any(isinstance(v, dict) for v in value)):
            return ParseOutcome(value=value, strategy="lenient")
    return ParseOutcome(error="lenient: no repairable JSON object found", strategy="lenient")


def parse_json(raw: str) -> ParseOutcome[Any]:
    """Strict parse of the whole text, then of its outermost bracketed span."""
    text = strip_code_fences(raw)
    if not text:
        return ParseOutcome(error="empty response", strategy="strict")
    outcome = _strict(text)
    if outcome.ok:
        return outcome
    lenient = _lenient(text)
    if lenient.ok:
        logger.info("Recovered JSON from surrounding prose")
        return lenient
    return ParseOutcome(error=f"{outcome.error}; {lenient.error}", strategy="lenient")


# ---------- question normalization

def _looks_like_question(item: Any) -> bool:
    return isinstance(item, dict) and any(isinstance(item.get(k), str) for k in _TEXT_KEYS)


def find_question_list(data: Any) -> Optional[List[Any]]:
    """Locate the list of question objects inside a parsed response."""
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return None
    for key in _ENVELOPE_KEYS:
        if isinstance(data.get(key), list):
            return data[key]
    for value in data.values():
        if isinstance(value, list) and value and _looks_like_question(value[0]):
            return value
    if _looks_like_question(data):
        return [data]
    return None


def _first(item: dict, keys: Tuple[str, ...]) -> Any:
    for k in keys:
        if item.get(k) is not None:
            return item[k]
    return None


def _option_text(opt: Any) -> str:
    if isinstance(opt, dict):
        opt = _first(opt, ("text", "option", "value", "label")) or ""
    return _OPTION_LABEL.sub("", str(opt)).strip()


def _options(raw: Any) -> List[str]:
    if isinstance(raw, dict):
        raw = [raw[k] for k in sorted(raw)]
    if not isinstance(raw, (list, tuple)):
        return []
    return [t for t in (_option_text(o) for o in raw) if t]


def _correct_index(raw: Any, options: List[str]) -> int:
    idx = 0
    if isinstance(raw, bool):
        idx = 0
    elif isinstance(raw, int):
        idx = raw
    elif isinstance(raw, float) and raw.is_integer():
        idx = int(raw)
    elif isinstance(raw, str):
        s = raw.strip()
        letter = _LETTER.match(s)
        if s.lstrip("-").isdigit():
            idx = int(s)
        elif letter:
            idx = ord(letter.group(1).upper()) - ord("A")
        else:
            wanted = _option_text(s).lower()
            idx = next((i for i, o in enumerate(options) if o.lower() == wanted), 0)
    if not 0 <= idx < len(options):
        logger.warning("Correct answer %r out of range, using 0", raw)
        idx = 0
    return idx


def _fit_options(options: List[str], idx: int) -> Tuple[List[str], int]:
    if len(options) > OPTION_COUNT:
        if idx < OPTION_COUNT:
            options = options[:OPTION_COUNT]
        else:
            options = options[: OPTION_COUNT - 1] + [options[idx]]
            idx = OPTION_COUNT - 1
    for filler in PLACEHOLDER_OPTIONS:
        if len(options) >= OPTION_COUNT:
            break
        if filler not in options:
            options = options + [filler]
    return options, idx


def normalize_question(item: Any) -> Optional[Question]:
    """Coerce one loosely-shaped question object. None if it has no text or no options."""
    if not isinstance(item, dict):
        return None
    text = _first(item, _TEXT_KEYS)
    text = text.strip() if isinstance(text, str) else ""
    options = _options(_first(item, _OPTION_KEYS))
    if not text or not options:
        logger.warning("Dropping question without text or options: %r", text[:60])
        return None

    idx = _correct_index(_first(item, _CORRECT_KEYS), options)
    options, idx = _fit_options(options, idx)
    explanation = item.get("explanation")
    explanation = explanation.strip() if isinstance(explanation, str) and explanation.strip() else DEFAULT_EXPLANATION
    return Question(text=text, options=options, correct_answer_index=idx, explanation=explanation)


# ---------- free-text recovery

def _question_blocks(text: str) -> List[str]:
    markers = list(_QUESTION_MARKER.finditer(text))
    if markers:
        return [
            text[m.start(): markers[i + 1].start() if i + 1 < len(markers) else len(text)]
            for i, m in enumerate(markers)
        ]
    return [b for b in re.split(r"\n\s*\n", text) if b.strip()]


def extract_questions_from_text(text: str) -> ParseOutcome[List[Question]]:
    """Last resort: numbered blocks with A./B./C./D. option lines."""
    found: List[Question] = []
    for block in _question_blocks(text):
        stem: List[str] = []
        options: List[str] = []
        letters: List[str] = []
        explanation = ""
        for line in block.splitlines():
            marker = _QUESTION_MARKER.match(line)
            opt = _OPTION_LINE.match(line)
            expl = _EXPLANATION_LINE.match(line)
            if _CORRECT_LINE.search(line):
                continue
            if expl:
                explanation = expl.group(1).strip()
            elif opt and not marker:
                letters.append(opt.group(1).upper())
                options.append(opt.group(2))
            elif not options:
                part = marker.group(1) if marker else line
                if part.strip():
                    stem.append(part.strip())

        correct = _CORRECT_LINE.search(block)
        answer = correct.group(1).upper() if correct else None
        item = {
            "question": " ".join(stem),
            "options": options,
            "answer": letters.index(answer) if answer in letters else 0,
            "explanation": explanation,
        }
        q = normalize_question(item)
        if q is not None:
            found.append(q)

    if not found:
        return ParseOutcome(error="heuristic: no question blocks found", strategy="heuristic")
    return ParseOutcome(value=found, strategy="heuristic")


# ---------- public API

def parse_questions(raw: str) -> List[Question]:
    """
    Parse a question-set response.

    Returns the normalized questions, possibly an empty list when the JSON
    was readable but held nothing usable. Raises ResponseParseError only
    when no strategy yields a question list at all.
    """
    outcome = parse_json(raw)
    if outcome.ok:
        items = find_question_list(outcome.value)
        if items is not None:
            questions = [q for q in (normalize_question(i) for i in items) if q is not None]
            logger.info("Parsed %d/%d questions (%s)", len(questions), len(items), outcome.strategy)
            return questions
        logger.warning("JSON response holds no question list, trying text extraction")

    heuristic = extract_questions_from_text(strip_code_fences(raw))
    if heuristic.ok:
        logger.info("Recovered %d questions from free text", len(heuristic.value))
        return heuristic.value

    raise ResponseParseError(f"Failed to parse questions from response: {outcome.error or heuristic.error}")


def parse_text(raw: str) -> str:
    text = strip_code_fences(raw)
    if text.startswith("{"):
        outcome = _strict(text)
        if outcome.ok and isinstance(outcome.value, dict):
            inner = _first(outcome.value, ("content", "text"))
            if isinstance(inner, str):
                text = inner.strip()
    if not text:
        raise ResponseParseError("Empty response content")
    return text


def iter_heading_blocks(md: str) -> Iterator[Tuple[List[str], str]]:
    """
    Yields (heading_path, section_text) for each Markdown heading.
    If no headings exist, yield one block with empty path.
    """
    matches = list(_HEADING_RE.finditer(md))
    if not matches:
        yield ([], md.strip())
        return

    headings: List[Tuple[int, str]] = []
    for i, m in enumerate(matches):
        level = len(m.group(1))
        title = m.group(2).strip()
        end = matches[i + 1].start() if i + 1 < len(matches) else len(md)

        while headings and headings[-1][0] >= level:
            headings.pop()
        headings.append((level, title))

        yield ([t for _, t in headings], md[m.end():end].strip())


def parse_course_sections(markdown: str, fallback: bool = False) -> CourseSections:
    """Split Markdown course content into ordered sections on its headings."""
    text = strip_code_fences(markdown)
    first = _HEADING_RE.search(text)
    preamble = text[: first.start()].strip() if first else ""
    opens_with_h1 = bool(first) and first.group(1) == "#"

    title = ""
    sections: List[CourseSection] = []
    for i, (path, body) in enumerate(iter_heading_blocks(text)):
        if not path:
            if body:
                sections.append(CourseSection(title="Content Overview", content=body, order=1))
            continue
        if i == 0 and opens_with_h1:
            title = path[0]
            if not body:
                continue
        if body:
            sections.append(CourseSection(title=path[-1], content=body, order=len(sections) + 1))

    summary_src = preamble or (sections[0].content if sections else "")
    summary = summary_src.split("\n\n", 1)[0].strip()[:300]
    return CourseSections(title=title or "Course", summary=summary, sections=sections, fallback=fallback)
