from .inference_service import (
    InferenceService,
    InferenceError,
    SENTIMENT_FALLBACK,
    DELAY_FALLBACK,
    CHAT_FALLBACK,
)

__all__ = [
    "InferenceService",
    "InferenceError",
    "SENTIMENT_FALLBACK",
    "DELAY_FALLBACK",
    "CHAT_FALLBACK",
]
