"""Tests for prompt building and reply handling in the LLM service."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from wellbeing.llm import (
    LLMService,
    RECOMMENDATION_FALLBACK,
    SYMPTOM_FALLBACK,
    build_recommendation_prompt,
    build_symptom_prompt,
    extract_reply,
    is_diagnosis,
    llm_service,
)


def completion(content=None, reasoning=None):
    message = SimpleNamespace(content=content, reasoning=reasoning)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class TestPrompts:
    """Tests for prompt text."""

    def test_symptom_prompt_without_answers(self):
        prompt = build_symptom_prompt("headache")
        assert prompt.startswith("Patient reports: headache.")
        assert "Previous answers" not in prompt
        assert "suggest a specialist" in prompt

    def test_symptom_prompt_with_answers(self):
        prompt = build_symptom_prompt("cough", ["3 days", "no fever"])
        assert "Previous answers: 3 days no fever." in prompt

    def test_recommendation_prompt_is_compact_json(self):
        prompt = build_recommendation_prompt({"age": 40}, {"reason": "checkup"})
        assert 'Patient profile: {"age":40}.' in prompt
        assert 'Recent appointment: {"reason":"checkup"}.' in prompt

    def test_recommendation_prompt_handles_missing(self):
        prompt = build_recommendation_prompt(None, {"reason": "checkup"})
        assert "Patient profile: null." in prompt


class TestReplyHandling:
    """Tests for diagnosis detection and reply extraction."""

    def test_is_diagnosis(self):
        assert is_diagnosis("The most likely Condition is migraine.")
        assert is_diagnosis("Please see a specialist.")
        assert not is_diagnosis("How long has the pain lasted?")

    def test_extract_content(self):
        assert extract_reply(completion("  Any nausea?  "), SYMPTOM_FALLBACK) == "Any nausea?"

    def test_extract_falls_back_to_reasoning(self):
        assert extract_reply(completion("", "Thinking it is flu"), SYMPTOM_FALLBACK) == "Thinking it is flu"

    def test_extract_fallback(self):
        assert extract_reply(completion(None, None), SYMPTOM_FALLBACK) == SYMPTOM_FALLBACK
        assert extract_reply(SimpleNamespace(choices=[]), RECOMMENDATION_FALLBACK) == RECOMMENDATION_FALLBACK


class TestLLMService:
    """Tests for LLMService with the Groq call mocked."""

    def test_symptom_check_question(self):
        with patch.object(llm_service, "_chat_completion", AsyncMock(return_value=completion("Where does it hurt?"))):
            result = asyncio.run(llm_service.symptom_check("pain", []))
        assert result == {"nextQuestion": "Where does it hurt?"}

    def test_symptom_check_prediction(self):
        reply = "Likely condition: migraine. See a neurologist specialist."
        with patch.object(llm_service, "_chat_completion", AsyncMock(return_value=completion(reply))) as mock_call:
            result = asyncio.run(llm_service.symptom_check("headache", ["yes"]))
        assert result == {"prediction": reply}

        kwargs = mock_call.call_args.kwargs
        assert kwargs["model"] == llm_service.model
        assert kwargs["messages"][0] == {"role": "system", "content": "You are a helpful medical assistant."}
        assert kwargs["messages"][1]["content"].startswith("Patient reports: headache.")

    def test_recommendations(self):
        with patch.object(llm_service, "_chat_completion", AsyncMock(return_value=completion("- Walk daily"))):
            text = asyncio.run(llm_service.generate_recommendations({"age": 40}, None))
        assert text == "- Walk daily"

    def test_missing_key_fails_only_on_use(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        service = LLMService()
        assert service.client is None

        with pytest.raises(RuntimeError, match="GROQ_API_KEY"):
            asyncio.run(service.symptom_check("headache"))

    def test_client_created_once(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "another-key")
        service = LLMService()
        assert service.get_client() is service.get_client()
