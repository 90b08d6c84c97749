import logging
from pathlib import Path
from typing import Any, Dict, Optional

import openai
from openai import OpenAI

from .config import Settings
from .errors import ConfigurationError, ProviderCallError, ProviderTimeoutError

logger = logging.getLogger(__name__)


# Model configuration profiles
MODEL_CONFIGS = {
    "gpt-5": {
        "token_param": "max_completion_tokens",
        "supports_temperature": False,
        "supports_json_mode": True,
        "description": "Frontier reasoning model"
    },
    "gpt-4.1": {
        "token_param": "max_tokens",
        "supports_temperature": True,
        "supports_json_mode": True,
        "description": "Long-context GPT-4.1 family"
    },
    "gpt-4o": {
        "token_param": "max_tokens",
        "supports_temperature": True,
        "supports_json_mode": True,
        "description": "Standard GPT-4o model"
    },
    "o1": {
        "token_param": "max_completion_tokens",
        "supports_temperature": False,
        "supports_json_mode": False,
        "description": "Reasoning model without JSON mode"
    },
}


def get_model_config(model: str) -> Dict[str, Any]:
    """Get configuration for a model, matching variants by prefix"""
    if model in MODEL_CONFIGS:
        return MODEL_CONFIGS[model]

    # Longest prefix wins so gpt-4o-mini does not match a shorter family first
    for config_model in sorted(MODEL_CONFIGS, key=len, reverse=True):
        if model.startswith(config_model):
            return MODEL_CONFIGS[config_model]

    return {
        "token_param": "max_tokens",
        "supports_temperature": True,
        "supports_json_mode": True,
        "description": f"Unknown model: {model}"
    }


class LLMProvider:
    """Interface the analyzer and transcriber talk to.

    Implementations raise ProviderCallError / ProviderTimeoutError for failed
    calls and ConfigurationError when they cannot be used at all.
    """

    name = "provider"

    def complete_json(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw text of a completion that should contain a JSON object"""
        raise NotImplementedError

    def transcribe(self, file_path: Path, language: str, prompt: str) -> Dict[str, Any]:
        """Return {text, language, duration, segments[{start, end, text}]} for an audio file"""
        raise NotImplementedError


class OpenAIProvider(LLMProvider):
    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        transcription_model: str = "whisper-1",
        temperature: float = 0.1,
        max_tokens: int = 4000,
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.model = model
        self.transcription_model = transcription_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.model_config = get_model_config(model)
        self._client = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIProvider":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            transcription_model=settings.transcription_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.provider_timeout,
        )

    @property
    def client(self) -> OpenAI:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY environment variable not set")
        if self._client is None:
            # Retries are owned by RetryPolicy, not the SDK
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the current model"""
        return {
            "model": self.model,
            "transcription_model": self.transcription_model,
            "config": dict(self.model_config),
            "temperature": self.temperature if self.model_config.get("supports_temperature", True) else 1.0,
            "max_tokens": self.max_tokens,
        }

    def complete_json(self, system_prompt: str, user_prompt: str) -> str:
        client = self.client

        request_params = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ]
        }

        # Set token parameter based on model config
        token_param = self.model_config.get("token_param", "max_tokens")
        request_params[token_param] = self.max_tokens

        if self.model_config.get("supports_temperature", True):
            request_params["temperature"] = self.temperature
        if self.model_config.get("supports_json_mode", True):
            request_params["response_format"] = {"type": "json_object"}

        response = self._call(lambda: client.chat.completions.create(**request_params))
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def transcribe(self, file_path: Path, language: str, prompt: str) -> Dict[str, Any]:
        client = self.client

        with open(file_path, 'rb') as audio_file:
            response = self._call(lambda: client.audio.transcriptions.create(
                model=self.transcription_model,
                file=audio_file,
                language=language,
                prompt=prompt,
                response_format="verbose_json",
                timestamp_granularities=["segment"],
                temperature=0,
            ))

        data = response.model_dump() if hasattr(response, "model_dump") else dict(response)
        segments = []
        for segment in data.get("segments") or []:
            segments.append({
                "start": segment.get("start"),
                "end": segment.get("end"),
                "text": (segment.get("text") or "").strip(),
            })

        return {
            "text": (data.get("text") or "").strip(),
            "language": data.get("language") or language,
            "duration": data.get("duration"),
            "segments": segments,
        }

    def _call(self, request):
        """Run an SDK request, translating SDK errors into provider call errors"""
        try:
            return request()
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(f"OpenAI request timed out: {e}") from e
        except openai.APIConnectionError as e:
            raise ProviderCallError(f"OpenAI connection error: {e}", retryable=True) from e
        except openai.APIStatusError as e:
            raise ProviderCallError(f"OpenAI API error: {e.message}", status_code=e.status_code) from e
