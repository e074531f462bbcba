import math

import pytest

from studygen.errors import InvalidRequestError, TokenLimitExceededError
from studygen.generate.payload import (
    DEFAULT_FILE_MIME,
    MESSAGE_OVERHEAD_TOKENS,
    PLACEHOLDER_EMPTY,
    PLACEHOLDER_INVALID,
    PLACEHOLDER_INVALID_ITEMS,
    TRUNCATION_MARKER,
    build_payload,
    estimate_message_tokens,
    estimate_tokens,
    extract_file_ref,
    merge_prompt_and_source,
    model_token_limit,
    normalize_message,
    require_payload,
    truncate_messages,
    validate_complete_payload,
    validate_token_limits,
    validate_word_count,
)
from studygen.generate.types import FileRefPart, ImagePart, Message, TextPart

PNG_URL = "data:image/png;base64,iVBORw0KGgo="
FILE_BLOCK = "=== File: water-cycle.pdf ===\nType: application/pdf\nSize: 18 bytes\nbase64:JVBERi0xLjQK\nJVBERi0xLjQK\n"


def test_normalize_coerces_role_and_placeholders():
    assert normalize_message({"role": "wizard", "content": "hi"}) == Message("user", "hi")
    assert normalize_message({"role": "system", "content": "   "}).content == PLACEHOLDER_EMPTY
    assert normalize_message({"role": "user"}).content == PLACEHOLDER_EMPTY
    assert normalize_message(42).content == PLACEHOLDER_INVALID


def test_normalize_filters_content_parts():
    msg = normalize_message(
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "  "},
                {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
                {"type": "image_url", "image_url": {"url": PNG_URL}},
                {"type": "text", "text": "Describe this"},
            ],
        }
    )
    assert msg.content == [ImagePart(PNG_URL), TextPart("Describe this")]

    bad = normalize_message({"role": "user", "content": [{"type": "video"}, {"type": "text"}]})
    assert bad.content == PLACEHOLDER_INVALID_ITEMS


def test_validate_complete_payload_rules():
    report = validate_complete_payload(
        {
            "model": "my-custom-model",
            "messages": [{"role": "user", "content": "hello"}],
            "max_tokens": 5000,
            "temperature": 0.5,
        }
    )
    assert report.is_valid
    assert any("Unusual model" in w for w in report.warnings)
    assert any("max_tokens is very high" in w for w in report.warnings)

    report = validate_complete_payload(
        {
            "model": "gpt-4o",
            "messages": [],
            "max_tokens": 0,
            "temperature": 3,
            "response_format": {"type": "text"},
        }
    )
    assert not report.is_valid
    assert "Messages array cannot be empty" in report.errors
    assert "max_tokens must be a positive number" in report.errors
    assert "temperature must be a number between 0 and 2" in report.errors
    assert any("json_object" in e for e in report.errors)


def test_estimate_tokens_is_conservative():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcdefgh") == 2
    # many short words: the word-based estimate wins
    assert estimate_tokens("a b c d e f") == 8
    msgs = [Message("user", [TextPart("abcdefgh"), ImagePart(PNG_URL)])]
    assert estimate_message_tokens(msgs) == 2 + 1000 + 10


def test_model_limits():
    assert model_token_limit("gpt-4.1-2025-04-14") == 120000
    assert model_token_limit("gpt-4-turbo") == 120000
    assert model_token_limit("gpt-3.5-turbo") == 15000
    assert model_token_limit("mystery") == 15000


def test_build_payload_happy_path():
    result = build_payload(
        "gpt-4o",
        [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Summarize the water cycle."}],
        500,
        0.3,
        {"type": "json_object"},
    )
    assert result.is_valid
    assert not result.truncated
    body = result.payload.to_request()
    assert body["model"] == "gpt-4o"
    assert body["max_tokens"] == 500
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][1] == {"role": "user", "content": "Summarize the water cycle."}


def test_build_payload_rejects_structural_errors():
    result = build_payload("gpt-4o", [Message("user", "hi")], 100, temperature=5)
    assert not result.is_valid
    assert "temperature" in result.error
    with pytest.raises(InvalidRequestError):
        require_payload(result)

    assert not build_payload("gpt-4o", [], 100).is_valid


def test_over_budget_payload_is_truncated_and_flagged():
    system = "You write study notes."
    long_text = "water cycle " * 7000
    result = build_payload(
        "gpt-3.5-turbo",
        [Message("system", system), Message("user", long_text)],
        1000,
    )
    assert result.is_valid
    assert result.truncated
    assert result.payload.truncated
    assert result.messages[0].content == system
    assert not result.messages[0].truncated
    user = result.messages[1]
    assert user.truncated
    assert user.content.endswith(TRUNCATION_MARKER)
    assert user.content.count(TRUNCATION_MARKER) == 1
    assert estimate_message_tokens(result.messages) + 1000 <= 15000
    assert "Content was truncated to fit model limits" in result.warnings


def test_impossible_budget_fails_naming_estimate_and_limit():
    result = build_payload("gpt-3.5-turbo", [Message("user", "short question")], 15000)
    assert not result.is_valid
    assert result.over_budget
    assert "Model limit: 15000" in result.error
    assert "Estimated tokens:" in result.error
    with pytest.raises(TokenLimitExceededError):
        require_payload(result)


def test_truncate_never_touches_system_or_goes_below_floor():
    msgs = [Message("system", "s" * 4000), Message("user", "u" * 400)]
    out = truncate_messages(msgs, 10)
    assert out[0].content == "s" * 4000
    assert len(out[1].content) == 100 + len(TRUNCATION_MARKER)
    assert msgs[1].content == "u" * 400


def test_validate_token_limits_counts_response():
    msgs = [Message("user", "x" * 400)]
    assert validate_token_limits(msgs, "gpt-3.5-turbo", 14000).is_valid
    budget = validate_token_limits(msgs, "gpt-3.5-turbo", 14900)
    assert not budget.is_valid
    assert budget.estimated_tokens == 110


def test_merge_prompt_and_source():
    assert merge_prompt_and_source("Quiz me", "") == "Quiz me"
    assert merge_prompt_and_source("", "Doc text") == "Doc text"
    assert merge_prompt_and_source("", "") == "No prompt provided"
    assert merge_prompt_and_source(" Quiz me ", "Doc\x00 text") == "USER REQUEST: Quiz me\n\nDOCUMENT CONTENT:\nDoc text"


def test_validate_word_count():
    assert validate_word_count("one two three", 5).count == 3
    over = validate_word_count("w " * 12, 10)
    assert not over.is_valid
    assert "10-word limit" in over.error
    assert not validate_word_count("", 10).is_valid


def test_extract_file_ref_from_file_block():
    ref = extract_file_ref(FILE_BLOCK)
    assert ref == FileRefPart("water-cycle.pdf", "data:application/pdf;base64,JVBERi0xLjQKJVBERi0xLjQK")
    assert ref.to_dict() == {
        "type": "file",
        "file": {"filename": "water-cycle.pdf", "file_data": "data:application/pdf;base64,JVBERi0xLjQKJVBERi0xLjQK"},
    }


def test_extract_file_ref_defaults_type_and_ignores_plain_text():
    ref = extract_file_ref("=== File: notes ===\nType: document\nbase64:SGVsbG8=")
    assert ref.file_data == f"data:{DEFAULT_FILE_MIME};base64,SGVsbG8="
    assert extract_file_ref("Evaporation lifts water into the air.") is None
    assert extract_file_ref("Notes on base64 encoding, no file header.") is None
    assert extract_file_ref("=== File: empty.pdf ===\nType: application/pdf\nbase64:") is None


def test_file_parts_are_costed_and_validated():
    ref = extract_file_ref(FILE_BLOCK)
    msgs = [Message("user", [ref, TextPart("Quiz me")])]
    expected = math.ceil(len(ref.file_data) / 4) + estimate_tokens("Quiz me") + MESSAGE_OVERHEAD_TOKENS
    assert estimate_message_tokens(msgs) == expected

    result = build_payload("gpt-4.1-2025-04-14", msgs, 2000, 0.3, {"type": "json_object"})
    assert result.is_valid
    assert result.payload.to_request()["messages"][0]["content"][0]["type"] == "file"

    broken = {
        "model": "gpt-4o",
        "messages": [{"role": "user", "content": [{"type": "file", "file": {"filename": "a.pdf"}}]}],
    }
    assert any("missing file_data" in e for e in validate_complete_payload(broken).errors)
