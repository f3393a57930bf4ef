"""
Generation oracle: Amazon Bedrock Converse streaming with bounded timeouts and retries.
"""

import random
import time
from typing import Any, Dict, Iterable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Raised when the oracle cannot produce a response."""
    pass


def _collect_text(stream: Optional[Iterable[Dict[str, Any]]]) -> str:
    parts = []
    for event in stream or ():
        delta = event.get('contentBlockDelta', {}).get('delta', {})
        if 'text' in delta:
            parts.append(delta['text'])
        if 'metadata' in event:
            logger.debug(f"Bedrock usage: {event['metadata'].get('usage')}")
    return ''.join(parts)


class BedrockLLM:
    """Single-turn text generation against a Bedrock model."""

    def __init__(self, config: BedrockLLMConfig, runtime_client: Optional[Any] = None):
        """
        Initialize the oracle client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            runtime_client: Pre-built bedrock-runtime client (tests)
        """
        self.config = config
        self.model_id = config.model_id

        # A timeout surfaces as BotoCoreError and counts as a failed attempt
        self.bedrock_runtime = runtime_client or boto3.client('bedrock-runtime',
                                                              region_name=config.region,
                                                              config=BotoConfig(connect_timeout=config.connect_timeout,
                                                                                read_timeout=config.read_timeout,
                                                                                retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate(self,
                 prompt: str,
                 system_prompt: str,
                 model_id: Optional[str] = None,
                 max_tokens: Optional[int] = None,
                 temperature: Optional[float] = None) -> str:
        """
        Send one user turn under a system instruction and return the reply text.

        Throttling, service errors and timeouts are retried with exponential
        backoff; anything else fails at once.

        Args:
            prompt: User content
            system_prompt: Instruction for the model
            model_id: Model hint (the configured model if None)
            max_tokens: Maximum tokens to generate (config default if None)
            temperature: Sampling temperature (config default if None)

        Returns:
            Response text

        Raises:
            BedrockLLMError: If every attempt fails
        """
        model_id = model_id or self.model_id
        request = {
            'modelId': model_id,
            'messages': [{
                'role': 'user',
                'content': [{
                    'text': prompt
                }]
            }],
            'system': [{
                'text': system_prompt
            }],
            'inferenceConfig': {
                'maxTokens': max_tokens or self.config.max_tokens,
                'temperature': self.config.temperature if temperature is None else temperature,
            },
        }

        attempts = self.config.retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                response = self.bedrock_runtime.converse_stream(**request)
                text = _collect_text(response.get('stream'))
                logger.debug(f'{model_id} answered in attempt {attempt} ({len(text)} chars)')
                return text
            except (ClientError, BotoCoreError) as e:
                if attempt == attempts:
                    raise BedrockLLMError(f'{model_id} failed after {attempts} attempts: {e}') from e
                delay = self.config.retry_delay * (2**(attempt - 1)) + random.uniform(0, 1)
                logger.warning(f'{model_id} attempt {attempt}/{attempts} failed, retrying in {delay:.1f}s: {e}')
                time.sleep(delay)
            except Exception as e:
                logger.error(f'Unexpected error from {model_id}: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}') from e

        raise BedrockLLMError(f'{model_id} was never called (retry_attempts={attempts})')

    def health_check(self) -> bool:
        """True if the configured model answers a trivial prompt."""
        try:
            return bool(self.generate('Hi', "Respond with just 'OK'.", max_tokens=10, temperature=0.0).strip())
        except BedrockLLMError as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
