"""
Relevance Assistant: LLM judgements used to rank search results and zones.
"""

import json
from typing import Any, Dict, List, Optional

from ..models.core import Entity, Relation, ZoneMetadata
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import BedrockLLMConfig
from ..utils.json_utils import parse_json_response
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_RESULT_SCORE = 10.0
MAX_ZONE_USEFULNESS = 2


class RelevanceAssistant:
    """Scores search results, classifies zones and drafts answers with a Bedrock LLM.

    Every method raises BedrockLLMError on failure; callers treat the assistant
    as best-effort and fall back to unranked data.
    """

    def __init__(self, llm: Optional[BedrockLLM] = None):
        """
        Initialize the assistant.

        Args:
            llm: Bedrock LLM client; the assistant is unavailable without one
        """
        self.llm = llm

    @classmethod
    def from_config(cls, config: BedrockLLMConfig) -> 'RelevanceAssistant':
        if not config.enabled:
            logger.info('Relevance assistant disabled by configuration')
            return cls(None)
        return cls(BedrockLLM(config))

    def is_available(self) -> bool:
        return self.llm is not None and not self.llm.is_disabled()

    def _ask(self, system_prompt: str, user_prompt: str, prefill: Optional[str] = None) -> str:
        if self.llm is None:
            raise BedrockLLMError('Relevance assistant is not configured')

        llm_messages = [{'role': 'user', 'content': [{'text': user_prompt}]}]
        stop_sequences = None
        if prefill:
            llm_messages.append({'role': 'assistant', 'content': [{'text': prefill}]})
            stop_sequences = ['```']

        response, _ = self.llm.generate_response(messages=llm_messages,
                                                 system_prompt=system_prompt,
                                                 stop_sequences=stop_sequences)
        return response

    def _ask_json(self, system_prompt: str, user_prompt: str) -> Any:
        response = self._ask(system_prompt, user_prompt, prefill='```json')

        try:
            return parse_json_response(response)
        except json.JSONDecodeError as e:
            raise BedrockLLMError(f'Failed to parse assistant response: {e}')

    def score_results(self,
                      results: List[Entity],
                      information_needed: str,
                      reason: Optional[str] = None) -> Dict[str, float]:
        """
        Rate how useful each search result is for the information needed.

        Args:
            results: Entities returned by a search
            information_needed: What the caller is looking for
            reason: Why the caller is searching

        Returns:
            Mapping of entity name to a score from 0 (useless) to 10 (exactly what is needed).
            Entities the model did not rate are absent.
        """
        if not results:
            return {}

        system_prompt = """
You are an intelligent filter for a knowledge graph search.
Rate how useful each search result is to the user's information needs, from 0 (not useful) to 10 (exactly what is needed).

Return a JSON object mapping each entity name to its score:
```json
{"entity name": 7}
```"""

        user_prompt = f'Information needed: {information_needed}'
        if reason:
            user_prompt += f'\nReason for search: {reason}'

        payload = [{
            'name': entity.name,
            'entityType': entity.entity_type,
            'observations': entity.observations
        } for entity in results]
        user_prompt += f'\n\nSearch results to rate:\n{json.dumps(payload, indent=2)}'

        parsed = self._ask_json(system_prompt, user_prompt)
        if not isinstance(parsed, dict):
            raise BedrockLLMError(f'Expected an object of scores, got {type(parsed).__name__}')

        scores = {}
        for name, score in parsed.items():
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                logger.debug(f'Ignoring non-numeric score for {name}: {score}')
                continue
            scores[str(name)] = max(0.0, min(MAX_RESULT_SCORE, float(score)))
        return scores

    def classify_zone_usefulness(self, zones: List[ZoneMetadata], reason: str) -> Dict[str, int]:
        """
        Rate each zone from 0 (not useful) to 2 (very useful) for the given reason.

        Zones rated outside that range are treated as very useful.
        """
        if not reason or not zones:
            return {}

        system_prompt = """
You are an intelligent zone classifier for a knowledge graph system.
Rate how useful each memory zone is to the user's current needs:
0: not useful
1: a little useful
2: very useful

Return ONLY a JSON object mapping zone names to usefulness scores:
```json
{"zoneName": 2}
```"""

        zone_data = [{'name': zone.name, 'description': zone.description or ''} for zone in zones]
        user_prompt = f'Reason for listing zones: {reason}\n\nZones to classify:\n{json.dumps(zone_data, indent=2)}'

        parsed = self._ask_json(system_prompt, user_prompt)
        if not isinstance(parsed, dict):
            raise BedrockLLMError(f'Expected an object of usefulness ratings, got {type(parsed).__name__}')

        usefulness = {}
        for zone in zones:
            score = parsed.get(zone.name, MAX_ZONE_USEFULNESS)
            if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= MAX_ZONE_USEFULNESS:
                score = MAX_ZONE_USEFULNESS
            usefulness[zone.name] = score
        return usefulness

    def answer(self,
               information_needed: str,
               reason: Optional[str],
               entities: List[Entity],
               relations: List[Relation]) -> str:
        """Draft an answer to the information needed from the given part of the graph."""
        system_prompt = """
You answer questions using only the knowledge graph excerpt you are given.
If the excerpt does not contain the answer, say what is missing.
Answer in a few plain sentences."""

        user_prompt = f'Information needed: {information_needed}'
        if reason:
            user_prompt += f'\nReason: {reason}'

        graph = {
            'entities': [{
                'name': entity.name,
                'entityType': entity.entity_type,
                'zone': entity.zone,
                'observations': entity.observations
            } for entity in entities],
            'relations': [relation.to_document() for relation in relations]
        }
        user_prompt += f'\n\nKnowledge graph excerpt:\n{json.dumps(graph, indent=2)}'

        return self._ask(system_prompt, user_prompt).strip()
