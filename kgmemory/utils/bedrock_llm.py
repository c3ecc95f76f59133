"""
Amazon Bedrock LLM client wrapper with retry logic, model fallback and error handling.
"""

import json
import random
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)

THROTTLING_ERROR_CODES = {'ThrottlingException', 'TooManyRequestsException', 'ServiceQuotaExceededException'}


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def _is_throttling(error: Exception) -> bool:
    if not isinstance(error, ClientError):
        return False
    return error.response.get('Error', {}).get('Code') in THROTTLING_ERROR_CODES


class BedrockLLM:
    """Amazon Bedrock LLM client with retry logic and a prioritized list of models.

    A throttled model is swapped for the next one in the list, and the higher
    priority model is tried again after the cooldown. When every model has been
    throttled, the client is disabled for the cooldown.
    """

    def __init__(self,
                 config: BedrockLLMConfig,
                 runtime_client: Optional[Any] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            runtime_client: Pre-built bedrock-runtime client; one is created if None
            clock: Monotonic clock in seconds, used for cooldowns
        """
        if not config.model_ids:
            raise BedrockLLMError('At least one Bedrock model id is required')

        self.config = config
        self.model_ids = list(config.model_ids)
        self._clock = clock
        self._model_index = 0
        self._upgrade_at: Optional[float] = None
        self._disabled_until: Optional[float] = None

        # Create Bedrock runtime client with timeout configuration
        self.bedrock_runtime = runtime_client or boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=600,
                read_timeout=600,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with models: {self.model_ids}')

    @property
    def model_id(self) -> str:
        return self.model_ids[self._model_index]

    def _check_status(self) -> None:
        now = self._clock()

        if self._disabled_until is not None and now >= self._disabled_until:
            self._disabled_until = None
            self._model_index = 0
            self._upgrade_at = None
            logger.info(f'Bedrock LLM re-enabled with primary model {self.model_id}')

        if self._model_index > 0 and self._upgrade_at is not None and now >= self._upgrade_at:
            self._model_index -= 1
            self._upgrade_at = None
            logger.info(f'Attempting to upgrade to model {self.model_id}')

    def is_disabled(self) -> bool:
        self._check_status()
        return self._disabled_until is not None

    def _move_to_next_model(self) -> bool:
        """Fall back to the next model. Returns False when none is left and the client is disabled."""
        if self._model_index < len(self.model_ids) - 1:
            self._model_index += 1
            self._upgrade_at = self._clock() + self.config.cooldown_seconds
            logger.warning(f'Switching to model {self.model_id} for {self.config.cooldown_seconds}s')
            return True

        self._disabled_until = self._clock() + self.config.cooldown_seconds
        logger.warning(f'All models exhausted. Bedrock LLM disabled for {self.config.cooldown_seconds}s')
        return False

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate response using Bedrock LLM with retry logic.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMError: If disabled, every model is throttled, or all retry attempts fail
        """
        if self.is_disabled():
            raise BedrockLLMError('Bedrock LLM temporarily disabled due to throttling')

        max_tokens = max_tokens or self.config.max_tokens
        temperature = temperature if temperature is not None else self.config.temperature
        stop_sequences = stop_sequences or []

        system = [{'text': system_prompt}]
        inf_params = {
            'maxTokens': max_tokens,
            'temperature': temperature,
            'stopSequences': stop_sequences,
        }

        attempt = 0
        while attempt < self.config.retry_attempts:
            try:
                logger.debug(f'Bedrock LLM request to {self.model_id}, attempt {attempt + 1}/{self.config.retry_attempts}')

                stream = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                              messages=messages,
                                                              system=system,
                                                              inferenceConfig=inf_params).get('stream')

                msg = ''
                invoke_metrics = None

                if stream:
                    for event in stream:
                        if 'contentBlockDelta' in event:
                            msg += event['contentBlockDelta']['delta']['text']
                        if 'metadata' in event:
                            invoke_metrics = {**event['metadata']['usage'], **event['metadata']['metrics']}

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
                return msg, invoke_metrics

            except (ClientError, BotoCoreError, json.JSONDecodeError) as e:
                if _is_throttling(e):
                    if self._move_to_next_model():
                        continue
                    raise BedrockLLMError(f'Every Bedrock model is throttled: {e}')

                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')
                attempt += 1

                if attempt < self.config.retry_attempts:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**(attempt - 1)) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_messages = [{'role': 'user', 'content': [{'text': 'Hi'}]}]
            response, _ = self.generate_response(messages=test_messages,
                                                 system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                                 max_tokens=10,
                                                 temperature=0.0)
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
