# Input cleaning for prompts and extracted file text.

from .sanitize import (
    SanitizedNumber,
    remove_dangerous_content,
    sanitize_base64_image,
    sanitize_difficulty,
    sanitize_file_content,
    sanitize_language,
    sanitize_number,
    sanitize_text,
)

__all__ = [
    "SanitizedNumber",
    "remove_dangerous_content",
    "sanitize_base64_image",
    "sanitize_difficulty",
    "sanitize_file_content",
    "sanitize_language",
    "sanitize_number",
    "sanitize_text",
]
