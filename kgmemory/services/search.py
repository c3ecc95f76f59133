"""
Search Service: query strategy selection, zone-scoped filters, sort policy and
the assistant-driven second pass of user searches.
"""

import re
from typing import Dict, List, Optional

from ..models.core import Entity, SearchHit, SearchResponse, UserSearchResult
from ..models.query import Bool, MatchAll, MultiMatch, QueryExpr, QueryString, SearchRequest, Sort, Term, Terms
from ..utils.config import SearchConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchError
from .entity_store import EntityStore, zone_entity_filters
from .errors import EntityNotFoundError
from .relation_store import RelationStore

logger = get_logger(__name__)

SEARCH_FIELDS = ['name^3', 'entityType^2', 'observations', 'relationType^2']
HIGHLIGHT_FIELDS = ['name', 'observations', 'entityType']

# Characters that make a token more than a plain name
_QUERY_SYNTAX_CHARS = set('~*?"():^')
_BOOLEAN_OPERATORS = re.compile(r'\b(AND|OR|NOT)\b')
_ADVANCED_SYNTAX = re.compile(r'[~*?"]')

SORT_FIELDS = {'recent': 'lastRead', 'importance': 'relevanceScore'}


def is_plain_token(query: str) -> bool:
    return not any(char.isspace() for char in query) and not (set(query) & _QUERY_SYNTAX_CHARS)


def build_text_query(query: Optional[str]) -> QueryExpr:
    """
    Pick the query strategy for a search string.

    Args:
        query: Raw search string

    Returns:
        match_all for "*" or an empty string, a case-insensitive exact name match for a single plain
        token, query_string for boolean, fuzzy, wildcard or quoted syntax, and a
        fuzzy multi_match otherwise
    """
    query = (query or '').strip()
    if not query or query == '*':
        return MatchAll()

    if is_plain_token(query):
        return Bool(should=[Term('name.keyword', query), Term('name.lower', query.lower())], minimum_should_match=1)

    if _BOOLEAN_OPERATORS.search(query) or _ADVANCED_SYNTAX.search(query):
        return QueryString(query, SEARCH_FIELDS, default_operator='OR', analyze_wildcard=True)

    return MultiMatch(query, SEARCH_FIELDS, fuzziness='AUTO')


def build_search_request(query: Optional[str],
                         zone: str,
                         entity_types: Optional[List[str]] = None,
                         limit: int = 10,
                         offset: int = 0,
                         sort_by: str = 'relevance',
                         include_observations: bool = True) -> SearchRequest:
    """Complete, zone-scoped search body for an entity search."""
    filters = zone_entity_filters(zone)
    if entity_types:
        filters.append(Terms('entityType', list(entity_types)))

    sort_field = SORT_FIELDS.get(sort_by, '_score')

    return SearchRequest(query=Bool(must=[build_text_query(query)], filter=filters),
                         size=limit,
                         from_=offset,
                         sort=[Sort(sort_field, 'desc')],
                         highlight_fields=HIGHLIGHT_FIELDS,
                         source_excludes=[] if include_observations else ['observations'])


class SearchService:
    """Zone-scoped entity search with optional assistant filtering."""

    def __init__(self,
                 entity_store: EntityStore,
                 relation_store: RelationStore,
                 assistant=None,
                 search_config: Optional[SearchConfig] = None):
        """
        Initialize the search service.

        Args:
            entity_store: Entity store, used for relevance feedback
            relation_store: Relation store, used to attach relations to results
            assistant: Optional relevance assistant for the second pass
            search_config: Ranking parameters, the application's if None
        """
        self.entity_store = entity_store
        self.relation_store = relation_store
        self.registry = entity_store.registry
        self.client = entity_store.client
        self.config = entity_store.config
        self.assistant = assistant
        self.search_config = search_config or app_config.search

    def search(self,
               query: Optional[str],
               entity_types: Optional[List[str]] = None,
               limit: int = 10,
               offset: int = 0,
               sort_by: str = 'relevance',
               zone: Optional[str] = None,
               include_observations: bool = True) -> SearchResponse:
        """Run a search restricted to one zone's entities."""
        zone = self.registry.resolve_zone(zone)
        request = build_search_request(query, zone, entity_types, limit, offset, sort_by, include_observations)

        response = self.client.search(self.config.zone_index(zone), request)
        hits = [
            SearchHit(document=Entity.from_document(hit['_source']),
                      score=hit.get('_score'),
                      highlight=hit.get('highlight', {})) for hit in response['hits']['hits']
        ]

        total = response['hits'].get('total', len(hits))
        if isinstance(total, dict):
            total = total.get('value', len(hits))

        logger.debug(f'Search "{query}" in zone {zone} returned {len(hits)} of {total} hits')
        return SearchResponse(hits=hits, total=total)

    def search_entities(self, query: Optional[str], **kwargs) -> List[Entity]:
        return [hit.document for hit in self.search(query, **kwargs).hits]

    def user_search(self,
                    query: Optional[str],
                    entity_types: Optional[List[str]] = None,
                    limit: int = 10,
                    offset: int = 0,
                    sort_by: str = 'relevance',
                    include_observations: bool = True,
                    zone: Optional[str] = None,
                    information_needed: Optional[str] = None,
                    reason: Optional[str] = None) -> UserSearchResult:
        """
        Search on behalf of a user, letting the assistant filter and reorder the hits.

        When information_needed is given, more hits than requested are fetched and the
        assistant rates them. Useful hits get a relevance boost, the others are dampened
        and dropped. Without a working assistant the plain hits are returned.

        Returns:
            Entities plus the relations among them
        """
        zone = self.registry.resolve_zone(zone)
        fetch_limit = limit * self.search_config.overfetch_factor if information_needed else limit

        entities = self.search_entities(query,
                                        entity_types=entity_types,
                                        limit=fetch_limit,
                                        offset=offset,
                                        sort_by=sort_by,
                                        zone=zone,
                                        include_observations=include_observations)

        if information_needed and entities and self.assistant is not None and self.assistant.is_available():
            try:
                entities = self._filter_with_assistant(entities, information_needed, reason, zone)
            except Exception as e:
                logger.warning(f'Assistant filtering failed, returning unfiltered results: {e}')

        entities = entities[:limit]
        relations = self.relation_store.get_relations_for_entities([entity.name for entity in entities], zone)
        return UserSearchResult(entities=entities, relations=relations)

    def _filter_with_assistant(self, entities: List[Entity], information_needed: str, reason: Optional[str],
                               zone: str) -> List[Entity]:
        scores = self.assistant.score_results(entities, information_needed, reason)

        useful: List[Entity] = []
        useful_scores: Dict[str, float] = {}
        for entity in entities:
            score = scores.get(entity.name, 0.0)
            if score >= self.search_config.usefulness_threshold:
                useful.append(entity)
                useful_scores[entity.name] = score
                self._adjust_relevance(entity.name, 1 + score / 10, zone)
            else:
                self._adjust_relevance(entity.name, self.search_config.dampen_ratio, zone)

        # Stable sort keeps the engine order among equal scores
        useful.sort(key=lambda entity: useful_scores[entity.name], reverse=True)
        logger.info(f'Assistant kept {len(useful)} of {len(entities)} results')
        return useful

    def _adjust_relevance(self, name: str, ratio: float, zone: str) -> None:
        try:
            self.entity_store.update_entity_relevance_score(name, ratio, zone)
        except (OpenSearchError, EntityNotFoundError) as e:
            logger.warning(f'Failed to adjust relevance of {name} in zone {zone}: {e}')
