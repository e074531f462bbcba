# Prompt fragments and templates for each generation task.

from typing import Optional

SOURCE_GUARDRAILS = """\
Use ONLY the information in the provided document content.
Do NOT add educational frameworks, methodologies, or terminology that the document does not use.
Do NOT write phrases like "learning objectives", "assessment preparation" or "educational structure" unless they appear in the source.
"""

QUESTION_SYSTEM = """\
You generate multiple-choice questions for learners.
Every question must be traceable to the supplied material; if something cannot be traced to it, do not ask about it.
Do not repeat or reword a question within one set. Each question targets a distinct topic or step.
Each question has exactly 4 options: 1 correct answer and 3 plausible but incorrect distractors.
If fewer questions are possible than requested, return as many valid ones as you can.

{guardrails}
Respond with a JSON object of this exact shape:
{{
  "questions": [
    {{
      "question": "Question text",
      "options": ["Option 1", "Option 2", "Option 3", "Option 4"],
      "correct_answer": 0,
      "explanation": "Brief explanation"
    }}
  ]
}}
"""

CONTENT_SYSTEM = (
    "You generate content that respects user intent and source material boundaries. "
    "When provided with source content, you use ONLY that content. You never fabricate educational "
    "frameworks, methodologies, or terminology not present in the source or explicitly requested by the user."
)

COURSE_SYSTEM = """\
You generate a clear, structured course based entirely on an uploaded document.
Format it as Markdown:
# <Course title>
A short introductory paragraph about what the course covers.
## <Section heading>   (4 to 7 sections, each 150-300 words, using real information from the document)
Include checklists, procedures and examples from the document as bullet points or numbered steps.
## Conclusion
A concise paragraph summarizing the key themes.

{guardrails}
Do not write "This section explains..." or "The document covers...". Start each section directly with its topic.
"""

ENHANCE_SYSTEM = (
    "You organize content while preserving source integrity. You NEVER add information, frameworks, "
    "or educational terminology not present in the source. You follow user structural requests while "
    "staying within source boundaries."
)

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "ar": "Arabic",
}


def question_system_prompt() -> str:
    return QUESTION_SYSTEM.format(guardrails=SOURCE_GUARDRAILS)


def question_user_prompt(
    prompt: str,
    count: int,
    difficulty: str,
    source: Optional[str] = None,
    set_index: int = 1,
    total_sets: int = 1,
    language: str = "en",
) -> str:
    lang = LANGUAGE_NAMES.get(language.split("-")[0], language)
    lines = [f"Generate exactly {count} {difficulty} multiple-choice questions in {lang}."]
    if total_sets > 1:
        lines.append(
            f"This is set {set_index} of {total_sets}; cover different details than the other sets."
        )
    if prompt:
        lines.append(f'USER REQUEST: "{prompt}"')
    if source:
        lines.append(f'DOCUMENT CONTENT:\n"""\n{source}\n"""')
    return "\n\n".join(lines)


def question_file_prompt(
    prompt: str,
    count: int,
    difficulty: str,
    set_index: int = 1,
    total_sets: int = 1,
    language: str = "en",
) -> str:
    lines = [
        question_user_prompt(prompt, count, difficulty, None, set_index, total_sets, language),
        "Base every question on the content of the uploaded file and nothing else.",
    ]
    return "\n\n".join(lines)


def content_user_prompt(prompt: str, source: Optional[str] = None) -> str:
    if source:
        return (
            f'USER REQUEST: "{prompt}"\n\n'
            f'DOCUMENT CONTENT:\n"""\n{source}\n"""\n\n'
            f"STRICT GENERATION RULES:\n{SOURCE_GUARDRAILS}\n"
            "Generate response now:"
        )
    return (
        f'USER REQUEST: "{prompt}"\n\n'
        "Generate focused content based strictly on this request. "
        "Do not add generic educational frameworks or methodologies unless specifically requested."
    )


def course_system_prompt() -> str:
    return COURSE_SYSTEM.format(guardrails=SOURCE_GUARDRAILS)


def course_user_prompt(prompt: str, source: str) -> str:
    request = f'USER REQUEST: "{prompt}"\n\n' if prompt else ""
    return (
        f"{request}UPLOADED FILE CONTENT:\n\"\"\"\n{source}\n\"\"\"\n\n"
        "Generate a comprehensive course that extracts and expands on ALL of this content. "
        "Do not summarize it away."
    )


def enhance_user_prompt(text: str, prompt: str = "") -> str:
    if prompt:
        return (
            f'USER REQUEST: "{prompt}"\n\n'
            f"DOCUMENT CONTENT:\n{text}\n\n"
            "Organize the document content according to the user's request.\n"
            f"{SOURCE_GUARDRAILS}\n"
            "Organize the content now:"
        )
    return (
        "Clean and organize this text content for educational use. Preserve ALL original information. "
        "Do NOT add frameworks, methodologies, or educational concepts not present in the source:\n\n"
        f"{text}"
    )
