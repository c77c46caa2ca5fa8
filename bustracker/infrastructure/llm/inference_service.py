"""
Inference Service - LLM Sentiment, Delay Reasons and Chat
=========================================================

ARCHITECTURAL DECISION:
- Uses OpenRouter (OpenAI-compatible chat completions) over plain requests
- Sentiment uses schema-constrained JSON output
- Every public capability degrades to a fixed fallback value and never raises

FALLBACKS:
- analyze_sentiment: Neutral / 0.5
- predict_delay:     "Traffic data unavailable."
- chat:              "I'm having trouble connecting to the bus network right now. Please try again."

EXTENSIBILITY:
- To use a different model: change LLM_MODEL
- To use OpenAI directly: change LLM_API_URL and key
"""

import json
import math
import logging
from datetime import datetime
from typing import List, Optional, Sequence

import requests

from ..config import LLMSettings, get_settings
from ...domain.models import ChatMessage, Sentiment, SentimentResult

logger = logging.getLogger(__name__)

SENTIMENT_FALLBACK = SentimentResult(Sentiment.NEUTRAL, 0.5)
DELAY_FALLBACK = "Traffic data unavailable."
DELAY_EMPTY = "Status updated."
CHAT_FALLBACK = "I'm having trouble connecting to the bus network right now. Please try again."
CHAT_EMPTY = "I am currently unable to process your request."

SENTIMENT_SCHEMA = {
    "name": "review_sentiment",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "sentiment": {"type": "string", "enum": [s.value for s in Sentiment]},
            "score": {
                "type": "number",
                "description": "A score between 0 and 1, where 1 is very positive.",
            },
        },
        "required": ["sentiment", "score"],
        "additionalProperties": False,
    },
}


class InferenceError(Exception):
    """Raised when the model cannot be reached or returns garbage."""
    pass


class InferenceService:
    """
    Client for the external text/audio model.

    USAGE:
        service = InferenceService()
        result = service.analyze_sentiment("Bus was late again")
        print(result.sentiment, result.score)
    """

    SENTIMENT_PROMPT = 'Analyze the sentiment of this bus service review: "{text}"'

    DELAY_PROMPT = (
        "The bus on route {route} is currently marked as {status}.\n"
        "Based on typical urban traffic patterns in a busy city, generate a realistic, "
        "short (1 sentence) prediction/reason for the status.\n"
        'Examples: "Heavy traffic on Nana Sita Street.", "Signal failure at Hatfield.", '
        '"Running smoothly on schedule."'
    )

    CHAT_POLICY = (
        "You are the official AI Assistant for Areyeng, the Bus Rapid Transit (BRT) system in Tshwane.\n"
        "\n"
        "RULES:\n"
        "1. You may ONLY answer questions related to Areyeng buses, schedules, routes (T1, T2, T3), "
        "ticket prices, stations, and delays.\n"
        "2. If the user asks about ANYTHING else, politely decline.\n"
        "3. Be helpful, concise, and professional.\n"
        "4. If the user provides AUDIO input, your response MUST start with a transcription of what "
        'they said in brackets, like this: "[User asked: ...question...] Sure, here is the answer..."\n'
        "5. Current time: {now}."
    )

    def __init__(self, settings: Optional[LLMSettings] = None, session: Optional[requests.Session] = None):
        """Initialize inference service with settings."""
        settings = settings or get_settings().llm
        self._api_key = settings.api_key
        self._api_url = settings.api_url
        self._model = settings.model
        self._settings = settings
        self._timeout = settings.timeout_seconds
        self._session = session or requests.Session()

        if not self._api_key:
            logger.warning(
                "No OPENROUTER_API_KEY set. "
                "Inference calls will return fallback values."
            )

    # ── Sentiment ──────────────────────────────────────────────────

    def classify_sentiment(self, text: str) -> SentimentResult:
        """
        Classify review text. Raises InferenceError on any failure.

        Use analyze_sentiment() unless the caller needs to tell a real
        Neutral apart from a failed call.
        """
        content = self._complete(
            [{"role": "user", "content": self.SENTIMENT_PROMPT.format(text=text)}],
            temperature=self._settings.sentiment_temperature,
            response_format={"type": "json_schema", "json_schema": SENTIMENT_SCHEMA},
        )
        return self._parse_sentiment_payload(content)

    def analyze_sentiment(self, text: str) -> SentimentResult:
        """Classify review text, Neutral/0.5 on any failure."""
        try:
            result = self.classify_sentiment(text)
            logger.debug(f"LLM classified as: {result.sentiment.value} ({result.score})")
            return result
        except InferenceError as e:
            logger.warning(f"Sentiment analysis failed: {e}, defaulting to Neutral")
        except Exception as e:
            logger.exception(f"Unexpected error in sentiment analysis: {e}")
        return SENTIMENT_FALLBACK

    # ── Delay prediction ───────────────────────────────────────────

    def predict_delay(self, route_name: str, current_status: str) -> str:
        """One-sentence guess at why a bus has its current status."""
        try:
            content = self._complete(
                [{"role": "user", "content": self.DELAY_PROMPT.format(route=route_name, status=current_status)}],
                temperature=self._settings.delay_temperature,
                max_tokens=self._settings.delay_max_tokens,
            )
        except InferenceError as e:
            logger.warning(f"Delay prediction failed: {e}")
            return DELAY_FALLBACK
        except Exception as e:
            logger.exception(f"Unexpected error in delay prediction: {e}")
            return DELAY_FALLBACK
        return content or DELAY_EMPTY

    # ── Chat ───────────────────────────────────────────────────────

    def chat(
        self,
        history: Sequence[ChatMessage],
        new_message: str,
        audio_base64: Optional[str] = None,
    ) -> str:
        """Answer the next turn of a conversation (text or wav audio)."""
        system = self.CHAT_POLICY.format(now=datetime.now().strftime("%H:%M:%S"))
        transcript = self._render_history(history)

        if audio_base64:
            user_content = [
                {
                    "type": "text",
                    "text": (
                        f"Here is the previous conversation for context:\n{transcript}\n\n"
                        "Please listen to the following audio query from the User, "
                        "transcribe it in brackets [User said: ...], and then answer it:"
                    ),
                },
                {"type": "input_audio", "input_audio": {"data": audio_base64, "format": "wav"}},
            ]
        else:
            prefix = f"{transcript}\n" if transcript else ""
            user_content = f"{prefix}User: {new_message}\nAssistant:"

        try:
            content = self._complete(
                [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user_content},
                ],
                temperature=self._settings.chat_temperature,
            )
        except InferenceError as e:
            logger.warning(f"Chat request failed: {e}")
            return CHAT_FALLBACK
        except Exception as e:
            logger.exception(f"Unexpected error in chat: {e}")
            return CHAT_FALLBACK
        return content or CHAT_EMPTY

    @staticmethod
    def _render_history(history: Sequence[ChatMessage]) -> str:
        return "\n".join(
            f"{'User' if m.role == 'user' else 'Assistant'}: {m.text}" for m in history
        )

    # ── Transport ──────────────────────────────────────────────────

    def _complete(
        self,
        messages: List[dict],
        temperature: float,
        max_tokens: Optional[int] = None,
        response_format: Optional[dict] = None,
    ) -> str:
        """POST a chat completion and return the text content."""
        if not self._api_key:
            raise InferenceError("API key not configured")

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://github.com/bustracker",  # Required by OpenRouter
        }

        payload = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if response_format:
            payload["response_format"] = response_format

        try:
            response = self._session.post(
                self._api_url,
                headers=headers,
                json=payload,
                timeout=self._timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise InferenceError("LLM API timeout") from e
        except requests.RequestException as e:
            raise InferenceError(f"LLM API error: {e}") from e
        except ValueError as e:
            raise InferenceError("LLM API returned non-JSON body") from e

        return self._extract_response_content(data)

    def _extract_response_content(self, data: dict) -> str:
        """Extract text content from API response."""
        try:
            choices = data.get("choices", [])
            if choices:
                message = choices[0].get("message", {})
                return (message.get("content") or "").strip()
        except (KeyError, IndexError, TypeError, AttributeError):
            pass
        return ""

    @staticmethod
    def _strip_code_fence(text: str) -> str:
        text = text.strip()
        if text.startswith("```"):
            text = text[3:]
            if text.startswith("json"):
                text = text[4:]
            if text.endswith("```"):
                text = text[:-3]
        return text.strip()

    def _parse_sentiment_payload(self, content: str) -> SentimentResult:
        """Parse the model's JSON into a SentimentResult."""
        if not content:
            raise InferenceError("No valid response text")

        try:
            payload = json.loads(self._strip_code_fence(content))
            label = payload["sentiment"]
            score = float(payload["score"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise InferenceError(f"Failed to parse sentiment JSON: {content[:100]}") from e

        if math.isnan(score):
            raise InferenceError("Sentiment score is NaN")

        valid = {s.value for s in Sentiment}
        if str(label).strip().capitalize() not in valid:
            logger.warning(f"Unexpected LLM label: {label}, defaulting to Neutral")

        return SentimentResult(Sentiment.parse(label), min(1.0, max(0.0, score)))
