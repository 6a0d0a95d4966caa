from __future__ import annotations

import pytest

from iconix_workflow.generation.llm import OpenAIChatCompletionsAdapter
from iconix_workflow.generation.writers import IssueList


def test_extract_content_from_string_message() -> None:
    content = OpenAIChatCompletionsAdapter._extract_content(
        {"choices": [{"message": {"content": "@startuml\n@enduml"}}]}
    )

    assert content == "@startuml\n@enduml"


def test_extract_content_merges_text_segments() -> None:
    content = OpenAIChatCompletionsAdapter._extract_content(
        {"choices": [{"message": {"content": [{"text": "Basic "}, {"text": "course"}, {"x": 1}]}}]}
    )

    assert content == "Basic course"


def test_extract_content_without_choices_raises() -> None:
    with pytest.raises(ValueError, match="did not contain choices"):
        OpenAIChatCompletionsAdapter._extract_content({"choices": []})


def test_generate_structured_validates_response(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = OpenAIChatCompletionsAdapter(api_key="sk-test", max_retries=0)
    sent: list[dict] = []

    def fake_request(payload: dict, timeout_s: float) -> dict:
        sent.append(payload)
        return {
            "choices": [
                {"message": {"content": '{"issues": [{"id": "DM-1", "title": "Missing class"}]}'}}
            ]
        }

    monkeypatch.setattr(adapter, "_request", fake_request)

    result = adapter.generate_structured(
        system_prompt="s", user_prompt="u", response_model=IssueList, timeout_s=1.0
    )

    assert result.issues[0].title == "Missing class"
    assert result.issues[0].severity == "MEDIUM"
    assert sent[0]["response_format"]["json_schema"]["name"] == "issuelist"


def test_request_is_retried_then_reraised(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = OpenAIChatCompletionsAdapter(api_key="sk-test", max_retries=2, backoff_s=0.0)
    attempts: list[int] = []

    def failing_request(payload: dict, timeout_s: float) -> dict:
        attempts.append(1)
        raise TimeoutError("slow")

    monkeypatch.setattr(adapter, "_request", failing_request)

    with pytest.raises(TimeoutError):
        adapter.generate_text(system_prompt="s", user_prompt="u", timeout_s=1.0)

    assert len(attempts) == 3
