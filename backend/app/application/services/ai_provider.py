import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from jsonschema import ValidationError as JsonSchemaValidationError
from jsonschema import validate

from app.application.services.template_renderer import render_prompt_template
from app.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an editorial assistant that writes content for branded digital magazines. "
    "Return ONLY strict JSON and never include markdown fences."
)


class AIProviderError(Exception):
    pass


class AIProviderValidationError(AIProviderError):
    def __init__(self, message: str, *, raw_content: str | None = None) -> None:
        super().__init__(message)
        self.raw_content = raw_content


@dataclass(frozen=True)
class AICompletionRequest:
    template: str
    output_schema: dict[str, Any]
    variables: dict[str, Any] = field(default_factory=dict)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float | None = None
    max_retries: int | None = None


class BaseAIProvider:
    async def complete_json(self, request: AICompletionRequest) -> dict[str, Any]:
        raise NotImplementedError


class OpenAIProvider(BaseAIProvider):
    def __init__(self) -> None:
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.base_url = settings.openai_base_url.rstrip("/")
        self.timeout_seconds = settings.openai_timeout_seconds
        self.temperature = settings.openai_temperature
        self.max_retries = settings.openai_max_retries

    async def complete_json(self, request: AICompletionRequest) -> dict[str, Any]:
        if not self.api_key:
            raise AIProviderError("OPENAI_API_KEY is not configured")

        rendered_prompt = render_prompt_template(request.template, request.variables)
        schema_json = json.dumps(request.output_schema, ensure_ascii=False)
        user_prompt = (
            f"{rendered_prompt}\n\n"
            f"Output JSON schema:\n{schema_json}\n\n"
            "Return only a JSON object matching the schema."
        )
        temperature = self.temperature if request.temperature is None else request.temperature
        max_retries = self.max_retries if request.max_retries is None else request.max_retries

        last_error: AIProviderError | None = None
        correction_prompt = ""
        for attempt in range(max_retries + 1):
            messages = [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": f"{user_prompt}\n{correction_prompt}"},
            ]
            try:
                content = await self._call_openai(messages, temperature=temperature)
                payload = self._parse_content(content)
                self._validate_response_payload(payload=payload, output_schema=request.output_schema, content=content)
                return payload
            except AIProviderValidationError as exc:
                logger.warning("ai_completion_invalid attempt=%s error=%s", attempt + 1, exc)
                last_error = exc
                correction_prompt = (
                    f"\nPrevious output was invalid: {exc}. "
                    "Regenerate valid JSON strictly matching the schema."
                )

        if isinstance(last_error, AIProviderValidationError):
            raise last_error
        raise AIProviderError(f"AI generation failed after retries: {last_error}")

    async def _call_openai(self, messages: list[dict[str, str]], *, temperature: float) -> str:
        request_body = {
            "model": self.model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": messages,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=request_body,
                )
        except httpx.HTTPError as exc:
            raise AIProviderError(f"OpenAI request failed: {exc}") from exc
        if response.status_code >= 400:
            raise AIProviderError(f"OpenAI API error {response.status_code}: {response.text[:500]}")

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise AIProviderError("OpenAI API returned no choices")
        content = choices[0].get("message", {}).get("content")
        if not isinstance(content, str) or not content.strip():
            raise AIProviderError("OpenAI response content is empty")
        return content

    @staticmethod
    def _parse_content(content: str) -> dict[str, Any]:
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise AIProviderValidationError(f"Invalid JSON returned: {exc}", raw_content=content) from exc
        if not isinstance(parsed, dict):
            raise AIProviderValidationError("Output must be JSON object", raw_content=content)
        return parsed

    @staticmethod
    def _validate_response_payload(*, payload: dict[str, Any], output_schema: dict[str, Any], content: str) -> None:
        try:
            validate(instance=payload, schema=output_schema)
        except JsonSchemaValidationError as exc:
            raise AIProviderValidationError(
                f"Schema validation failed: {exc.message}",
                raw_content=content,
            ) from exc


def get_ai_provider() -> BaseAIProvider:
    provider = settings.ai_provider.strip().lower()
    if provider == "openai":
        return OpenAIProvider()
    raise AIProviderError(f"Unsupported AI provider: {settings.ai_provider}")
