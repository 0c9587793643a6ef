"""
AI provider integration — OpenAI chat completions in JSON mode.
"""
import json
import logging
import re

from django.conf import settings

logger = logging.getLogger(__name__)

TEMPERATURE = 0.3
MAX_TOKENS = 4000


class CompletionError(Exception):
    """The completion call failed, timed out, or did not return a JSON object."""


def _clean_json(text: str) -> dict:
    """Strip markdown fences and parse JSON."""
    cleaned = re.sub(r'```(?:json)?\s*', '', text).strip()
    cleaned = cleaned.rstrip('`').strip()
    return json.loads(cleaned)


def build_user_message(context_payload: dict, task: str) -> str:
    return (
        f"<context>\n{json.dumps(context_payload, indent=2, default=str)}\n</context>\n\n"
        f"{task}"
    )


class OpenAICompletionService:
    """
    Completion service backed by OpenAI. Each call carries a bounded timeout
    and never retries, so a slow provider costs at most one timeout per run stage.
    """

    def __init__(self, api_key: str = None, model: str = None, timeout: float = None):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.SEO_AI_MODEL
        self.timeout = timeout or settings.OPTIMIZER_COMPLETION_TIMEOUT

    def complete(self, system_prompt: str, user_prompt: str) -> dict:
        if not self.api_key:
            raise CompletionError("No AI provider configured. Set OPENAI_API_KEY.")

        import openai
        client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        try:
            response = client.chat.completions.create(
                model=self.model,
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except openai.APITimeoutError as e:
            logger.error(f"OpenAI call timed out after {self.timeout}s")
            raise CompletionError(f"Completion timed out after {self.timeout}s") from e
        except openai.OpenAIError as e:
            logger.error(f"OpenAI call failed: {e}")
            raise CompletionError(str(e)) from e

        text = response.choices[0].message.content or ''
        try:
            parsed = _clean_json(text)
        except ValueError as e:
            raise CompletionError(f"Completion was not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise CompletionError("Completion JSON must be an object")
        return parsed
