"""
Inspection Service: answer an information need from the knowledge graph.
"""

from typing import List, Optional

from ..models.core import InspectionResult
from ..utils.bedrock_llm import BedrockLLMError
from ..utils.logging_config import get_logger
from .search import SearchService

logger = get_logger(__name__)

INSPECTION_LIMIT = 50
FALLBACK_LIMIT = 10


class InspectionService:
    """Searches the graph for an information need and lets the assistant draft an answer."""

    def __init__(self, search_service: SearchService, assistant=None):
        self.search_service = search_service
        self.assistant = assistant

    def inspect_knowledge_graph(self,
                                information_needed: str,
                                reason: Optional[str] = None,
                                keywords: Optional[List[str]] = None,
                                zone: Optional[str] = None,
                                entity_types: Optional[List[str]] = None) -> InspectionResult:
        """
        Inspect the knowledge graph for the information needed.

        Args:
            information_needed: What the caller wants to know
            reason: Why the caller wants to know it
            keywords: Search keywords, matched with OR; every entity if empty
            zone: Zone to inspect
            entity_types: Restrict the search to these entity types

        Returns:
            InspectionResult with the relevant entities, their relations and a tentative answer
        """
        query = ' OR '.join(keywords) if keywords else '*'
        logger.info(f'Inspecting knowledge graph with query: {query} for information: {information_needed}')

        initial = self.search_service.user_search(query,
                                                  entity_types=entity_types,
                                                  limit=INSPECTION_LIMIT,
                                                  include_observations=False,
                                                  zone=zone)
        if not initial.entities:
            return InspectionResult(entities=[],
                                    relations=[],
                                    tentative_answer='No matching entities found in the knowledge graph')

        if self.assistant is None or not self.assistant.is_available():
            logger.warning('Relevance assistant unavailable, returning matching entities without analysis')
            return InspectionResult(entities=initial.entities,
                                    relations=initial.relations,
                                    tentative_answer='Relevance assistant not available. Returning matching entities '
                                    'without analysis.')

        detailed = self.search_service.user_search(query,
                                                   entity_types=entity_types,
                                                   limit=INSPECTION_LIMIT,
                                                   include_observations=True,
                                                   zone=zone,
                                                   information_needed=information_needed,
                                                   reason=reason)

        if not detailed.entities:
            fallback = self.search_service.user_search(query,
                                                       entity_types=entity_types,
                                                       limit=FALLBACK_LIMIT,
                                                       include_observations=True,
                                                       zone=zone)
            return InspectionResult(entities=fallback.entities,
                                    relations=fallback.relations,
                                    tentative_answer='No entity was judged relevant. Returning top matching entities '
                                    'without filtering.')

        tentative_answer = 'Could not generate an answer based on the entities.'
        try:
            tentative_answer = self.assistant.answer(information_needed, reason, detailed.entities, detailed.relations)
        except BedrockLLMError as e:
            logger.error(f'Error getting a tentative answer: {e}')

        return InspectionResult(entities=detailed.entities,
                                relations=detailed.relations,
                                tentative_answer=tentative_answer)
