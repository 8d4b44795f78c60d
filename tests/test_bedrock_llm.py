"""
Tests for the Bedrock completion client.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from socialcore.utils.bedrock_llm import BedrockLLM, BedrockLLMError


def _throttled():
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'Rate exceeded'}}, 'Converse')


def _reply(*texts):
    return {'output': {'message': {'role': 'assistant', 'content': [{'text': t} for t in texts]}}}


@pytest.fixture
def runtime():
    return MagicMock()


@pytest.fixture
def llm(app_config, runtime, monkeypatch):
    monkeypatch.setattr('socialcore.utils.bedrock_llm.time.sleep', lambda seconds: None)
    return BedrockLLM(app_config.bedrock_llm, client=runtime)


class TestComplete:
    """Converse requests and response handling."""

    def test_request_shape(self, llm, runtime):
        runtime.converse.return_value = _reply('Two new ', 'launches.')
        text = llm.complete([{'role': 'user', 'content': 'Summarize'}], system_prompt='You are Ledger.')

        assert text == 'Two new launches.'
        request = runtime.converse.call_args.kwargs
        assert request['modelId'] == 'test-model'
        assert request['messages'] == [{'role': 'user', 'content': [{'text': 'Summarize'}]}]
        assert request['system'] == [{'text': 'You are Ledger.'}]
        assert request['inferenceConfig'] == {'maxTokens': 100, 'temperature': 0.0}

    def test_overrides_and_no_system_prompt(self, llm, runtime):
        runtime.converse.return_value = _reply('ok')
        llm.complete([{'role': 'user', 'content': 'Hi'}], max_tokens=5, temperature=0.5)
        request = runtime.converse.call_args.kwargs
        assert 'system' not in request
        assert request['inferenceConfig'] == {'maxTokens': 5, 'temperature': 0.5}

    def test_block_content_passes_through(self):
        blocks = [{'text': 'already converted'}]
        assert BedrockLLM.to_bedrock_messages([{'role': 'assistant', 'content': blocks}]) == [{
            'role': 'assistant',
            'content': blocks
        }]

    def test_retries_then_succeeds(self, llm, runtime):
        runtime.converse.side_effect = [_throttled(), _reply('ok')]
        assert llm.complete([{'role': 'user', 'content': 'Hi'}]) == 'ok'
        assert runtime.converse.call_count == 2

    def test_retries_exhausted(self, llm, runtime):
        runtime.converse.side_effect = _throttled()
        with pytest.raises(BedrockLLMError):
            llm.complete([{'role': 'user', 'content': 'Hi'}])
        assert runtime.converse.call_count == 2

    def test_unexpected_error_not_retried(self, llm, runtime):
        runtime.converse.side_effect = KeyError('output')
        with pytest.raises(BedrockLLMError):
            llm.complete([{'role': 'user', 'content': 'Hi'}])
        assert runtime.converse.call_count == 1

    def test_health_check(self, llm, runtime):
        runtime.converse.return_value = _reply('OK')
        assert llm.health_check() is True
        runtime.converse.side_effect = _throttled()
        assert llm.health_check() is False
