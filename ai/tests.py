"""
Tests for ai app - OpenAI completion service.
"""
from types import SimpleNamespace

import httpx
import openai
import pytest

from ai.providers import CompletionError, OpenAICompletionService, _clean_json, build_user_message


def fake_openai(content=None, error=None, calls=None):
    def create(**kwargs):
        if calls is not None:
            calls.append(kwargs)
        if error is not None:
            raise error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    class FakeClient:
        def __init__(self, **kwargs):
            if calls is not None:
                calls.append(kwargs)
            self.chat = SimpleNamespace(completions=SimpleNamespace(create=create))

    return FakeClient


class TestCleanJson:

    def test_strips_markdown_fences(self):
        assert _clean_json('```json\n{"a": 1}\n```') == {'a': 1}

    def test_plain_json(self):
        assert _clean_json('{"recommendations": []}') == {'recommendations': []}


class TestOpenAICompletionService:

    def test_missing_key(self):
        with pytest.raises(CompletionError, match='OPENAI_API_KEY'):
            OpenAICompletionService(api_key='').complete('system', 'user')

    def test_returns_parsed_object(self, monkeypatch):
        calls = []
        monkeypatch.setattr(openai, 'OpenAI', fake_openai('{"summary": "ok"}', calls=calls))

        service = OpenAICompletionService(api_key='sk-test', model='gpt-4o-mini', timeout=12)
        result = service.complete('system', 'user')

        assert result == {'summary': 'ok'}
        assert calls[0] == {'api_key': 'sk-test', 'timeout': 12, 'max_retries': 0}
        assert calls[1]['model'] == 'gpt-4o-mini'
        assert calls[1]['response_format'] == {'type': 'json_object'}

    def test_timeout_is_completion_error(self, monkeypatch):
        request = httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')
        monkeypatch.setattr(openai, 'OpenAI', fake_openai(error=openai.APITimeoutError(request=request)))

        with pytest.raises(CompletionError, match='timed out after 5'):
            OpenAICompletionService(api_key='sk-test', timeout=5).complete('system', 'user')

    def test_invalid_json_is_completion_error(self, monkeypatch):
        monkeypatch.setattr(openai, 'OpenAI', fake_openai('Sure! Here are some ideas.'))

        with pytest.raises(CompletionError, match='not valid JSON'):
            OpenAICompletionService(api_key='sk-test').complete('system', 'user')

    def test_non_object_json_is_completion_error(self, monkeypatch):
        monkeypatch.setattr(openai, 'OpenAI', fake_openai('[1, 2, 3]'))

        with pytest.raises(CompletionError):
            OpenAICompletionService(api_key='sk-test').complete('system', 'user')

    def test_user_message_wraps_context(self):
        message = build_user_message({'site': 'example.com'}, 'Do the task.')
        assert message.startswith('<context>')
        assert '"site": "example.com"' in message
        assert message.endswith('Do the task.')
