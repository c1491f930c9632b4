"""
AI provider integration: OpenAI chat completions returning a JSON object.

Every failure is reported as an AIProviderError carrying a stable code so
callers can fall back without inspecting SDK exception types.
"""
import json
import logging
import re
import time

import openai
from django.conf import settings

logger = logging.getLogger(__name__)

MAX_TOKENS = 1200


class AIProviderError(Exception):
    """Generation call failed; code is one of the openai_* reasons."""

    def __init__(self, code, message='', status=None):
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.status = status

    def as_dict(self):
        data = {'code': self.code, 'message': self.message}
        if self.status is not None:
            data['status'] = self.status
        return data


def _clean_json(text: str) -> dict:
    """Strip markdown fences and parse JSON."""
    cleaned = re.sub(r'```(?:json)?\s*', '', text or '').strip()
    cleaned = cleaned.rstrip('`').strip()
    return json.loads(cleaned)


def call_openai_json(system_prompt: str, user_message: str, temperature: float = 0.3,
                     timeout: float = None) -> dict:
    """
    Call OpenAI and return {'output': parsed_json, 'model': ..., 'timing_ms': ...}.

    The request runs under a hard timeout with SDK retries disabled; on expiry
    the underlying HTTP request is cancelled and openai_timeout is raised.
    """
    api_key = settings.OPENAI_API_KEY
    if not api_key:
        raise AIProviderError('openai_missing_key', 'OPENAI_API_KEY not set')

    model = settings.OPENAI_MODEL
    if timeout is None:
        timeout = settings.OPENAI_TIMEOUT_SECONDS

    started = time.monotonic()
    client = openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
    try:
        response = client.chat.completions.create(
            model=model,
            temperature=temperature,
            max_tokens=MAX_TOKENS,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        )
    except openai.APITimeoutError as e:
        raise AIProviderError('openai_timeout', f'OpenAI call exceeded {timeout}s') from e
    except openai.APIStatusError as e:
        raise AIProviderError('openai_http_error', str(e)[:500], status=e.status_code) from e
    except openai.OpenAIError as e:
        raise AIProviderError('openai_call_failed', str(e)[:500]) from e

    text = response.choices[0].message.content if response.choices else ''
    try:
        parsed = _clean_json(text)
    except (TypeError, ValueError) as e:
        raise AIProviderError('openai_bad_json', str(e)) from e
    if not isinstance(parsed, dict):
        raise AIProviderError('openai_bad_json', 'response is not a JSON object')

    return {
        'output': parsed,
        'model': model,
        'timing_ms': int((time.monotonic() - started) * 1000),
    }
