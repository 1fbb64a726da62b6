import os
import json
import logging
import asyncio
from typing import List, Optional
from dotenv import load_dotenv
from groq import Groq

load_dotenv()
logger = logging.getLogger(__name__)

SYMPTOM_SYSTEM_PROMPT = "You are a helpful medical assistant."
RECOMMENDATION_SYSTEM_PROMPT = (
    "You are a helpful medical assistant that gives personalized, actionable "
    "health recommendations after each appointment."
)

SYMPTOM_FALLBACK = "Sorry, I couldn't understand. Please try again."
RECOMMENDATION_FALLBACK = "Sorry, I couldn't generate recommendations. Please try again."

# A reply mentioning either word is surfaced as a prediction, not a question
DIAGNOSIS_MARKERS = ("condition", "specialist")


def build_symptom_prompt(symptoms: str, answers: Optional[List[str]] = None) -> str:
    prompt = f"Patient reports: {symptoms}."
    if answers:
        prompt += f" Previous answers: {' '.join(answers)}."
    prompt += (
        "\nAsk the next most relevant medical question to clarify the diagnosis. "
        "\nIf enough information is provided, predict the most likely condition and suggest a specialist. "
        "\nIf not, just ask the next question."
    )
    return prompt


def build_recommendation_prompt(profile: Optional[dict], appointment: Optional[dict]) -> str:
    profile_json = json.dumps(profile, separators=(",", ":"), default=str)
    appointment_json = json.dumps(appointment, separators=(",", ":"), default=str)
    return (
        f"Patient profile: {profile_json}.\n"
        f"Recent appointment: {appointment_json}.\n"
        "Based on this information and standard health guidelines, suggest personalized "
        "lifestyle changes, reminders, and diet tips for the patient. "
        "Format as a short, actionable list."
    )


def is_diagnosis(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in DIAGNOSIS_MARKERS)


def extract_reply(completion, fallback: str) -> str:
    """
    Pull the reply text out of a chat completion.

    Reasoning models sometimes return an empty `content` and put everything in
    `reasoning`; fall back to that, then to the canned message.
    """
    choices = getattr(completion, "choices", None) or []
    message = choices[0].message if choices else None

    text = ((getattr(message, "content", None) or "") if message else "").strip()
    if not text and message is not None:
        text = (getattr(message, "reasoning", None) or "").strip()
    return text or fallback


class LLMService:
    """
    LLM service using Groq.
    Backs the symptom checker and post-appointment recommendations.
    """

    def __init__(self):
        self.api_key = os.getenv("GROQ_API_KEY")
        self.client = None
        self.model = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
        self.max_tokens = 512
        self.temperature = 0.7

        if not self.api_key:
            logger.warning("⚠️ GROQ_API_KEY not set: AI endpoints will fail until it is added to .env")

    def get_client(self) -> Groq:
        """Create the Groq client on first use so the rest of the API runs without a key"""
        if self.client is None:
            if not self.api_key:
                raise RuntimeError(
                    "GROQ_API_KEY not found in environment. "
                    "Please add it to your .env file."
                )
            self.client = Groq(api_key=self.api_key)
            logger.info(f"✓ LLM Service initialized with Groq ({self.model})")
        return self.client

    async def _chat_completion(self, **kwargs):
        """
        Thread-safe async wrapper for Groq API calls.
        Groq client is blocking, so we run it in a thread pool.
        """
        client = self.get_client()

        def _call():
            return client.chat.completions.create(**kwargs)

        return await asyncio.to_thread(_call)

    async def _ask(self, system_prompt: str, prompt: str):
        return await self._chat_completion(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt}
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

    async def symptom_check(self, symptoms: str, answers: Optional[List[str]] = None) -> dict:
        """
        Ask the model for the next clarifying question or a likely condition.

        Returns:
            {"prediction": text} when the reply reads like a diagnosis,
            otherwise {"nextQuestion": text}. API errors propagate.
        """
        prompt = build_symptom_prompt(symptoms, answers)
        completion = await self._ask(SYMPTOM_SYSTEM_PROMPT, prompt)

        text = extract_reply(completion, SYMPTOM_FALLBACK)
        logger.info(f"Symptom check reply ({len(text)} chars): {text[:80]}")

        if is_diagnosis(text):
            return {"prediction": text}
        return {"nextQuestion": text}

    async def generate_recommendations(self, profile: Optional[dict], appointment: Optional[dict]) -> str:
        prompt = build_recommendation_prompt(profile, appointment)
        completion = await self._ask(RECOMMENDATION_SYSTEM_PROMPT, prompt)

        text = extract_reply(completion, RECOMMENDATION_FALLBACK)
        logger.info(f"Generated recommendations ({len(text)} chars)")
        return text


# Singleton instance
llm_service = LLMService()
