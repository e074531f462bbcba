import json
import random

import pytest
from fastapi.testclient import TestClient

from studygen.app import app, get_service
from studygen.errors import ApiKeyInvalidError, ApiTimeoutError
from studygen.generate import GenerationService

client = TestClient(app)

QUIZ = json.dumps(
    {
        "questions": [
            {
                "question": "Which process turns liquid water into water vapor?",
                "options": ["Evaporation", "Condensation", "Precipitation", "Infiltration"],
                "correct_answer": 0,
            },
            {
                "question": "In which layers is groundwater stored?",
                "options": ["Clouds", "Aquifers", "Glaciers", "Stomata"],
                "correct_answer": 1,
            },
        ]
    }
)


@pytest.fixture
def use_stub(stub, recovery):
    """Serve requests from a GenerationService backed by a scripted client."""

    def install(*responses, **kwargs):
        model_client = stub(*responses)
        service = GenerationService(model_client, recovery, rng=random.Random(0), **kwargs)
        app.dependency_overrides[get_service] = lambda: service
        return model_client

    yield install
    app.dependency_overrides.clear()


def test_root_ok():
    r = client.get("/")
    assert r.status_code == 200
    assert "message" in r.json()


def test_healthz_ok():
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_health_reports_missing_key():
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "degraded"
    assert "OpenAI API key not configured" in data["issues"]


def test_content_with_echo_client():
    r = client.post("/content", json={"prompt": "Explain rain"})
    assert r.status_code == 200
    data = r.json()
    assert data["text"].startswith("[ECHO RESPONSE]")
    assert data["fallback"] is False


def test_questions_ok(use_stub):
    use_stub(QUIZ)
    r = client.post("/questions", json={"prompt": "Water cycle", "count": 2, "difficulty": "easy"})
    assert r.status_code == 200
    data = r.json()
    assert data["count"] == 2
    for q in data["questions"]:
        assert len(q["options"]) == 4
        assert 0 <= q["correct_answer"] <= 3
        assert q["fallback"] is False


def test_questions_bad_key_is_400(use_stub):
    model_client = use_stub(ApiKeyInvalidError("401"))
    r = client.post("/questions", json={"prompt": "Water cycle"})
    assert r.status_code == 400
    assert r.json()["detail"] == ApiKeyInvalidError.user_message
    assert len(model_client.calls) == 1


def test_questions_thin_source_is_400(use_stub):
    model_client = use_stub(QUIZ)
    r = client.post("/questions", json={"prompt": "Quiz", "source_text": "Not much here."})
    assert r.status_code == 400
    assert model_client.calls == []


def test_questions_timeout_without_fallback_is_503(use_stub):
    use_stub(ApiTimeoutError("slow"), enable_fallback=False)
    r = client.post("/questions", json={"prompt": "Water cycle", "count": 3})
    assert r.status_code == 503
    assert r.json()["detail"] == ApiTimeoutError.user_message


def test_questions_timeout_with_fallback(use_stub):
    use_stub(ApiTimeoutError("slow"))
    r = client.post("/questions", json={"prompt": "Water cycle", "count": 3})
    assert r.status_code == 200
    data = r.json()
    assert data["count"] == 3
    assert all(q["fallback"] for q in data["questions"])


def test_course_ok(use_stub, water_cycle):
    md = (
        "# The Water Cycle\n\nWater moves between oceans, air and land.\n\n## Evaporation\n\n"
        + "Heat from the sun turns surface water into vapor that rises into the air. " * 20
    )
    use_stub(md)
    r = client.post("/course", json={"prompt": "Water cycle", "source_text": water_cycle})
    assert r.status_code == 200
    data = r.json()
    assert data["title"] == "The Water Cycle"
    assert [s["order"] for s in data["sections"]] == [1, 2]


def test_enhance_returns_original_on_failure(use_stub):
    use_stub(ApiKeyInvalidError("401"))
    r = client.post("/enhance", json={"text": "Rain falls from clouds when droplets merge."})
    assert r.status_code == 200
    assert r.json()["text"] == "Rain falls from clouds when droplets merge."


def test_vision_rejects_bad_image(use_stub):
    use_stub("unused")
    r = client.post("/vision", json={"image_base64": "not*an*image", "prompt": "Describe"})
    assert r.status_code == 400


def test_vision_ok(use_stub):
    use_stub("A water cycle diagram.")
    r = client.post("/vision", json={"image_base64": "data:image/png;base64,iVBORw0KGgo=", "prompt": "Describe"})
    assert r.status_code == 200
    assert r.json()["text"] == "A water cycle diagram."
