"""
Entity Store: per-zone entity CRUD and the relevance-score lifecycle.
"""

from dataclasses import replace
from typing import List, Optional

from ..models.core import (DEFAULT_RELEVANCE_SCORE, DEFAULT_ZONE, MAX_RELEVANCE_SCORE, MIN_RELEVANCE_SCORE, Entity)
from ..models.query import Bool, MatchAll, QueryExpr, SearchRequest, Sort, Term
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchError
from ..utils.saga import Saga
from ..utils.timestamp_utils import now_iso
from .errors import EntityNotFoundError, ValidationError, ZoneNotFoundError
from .zone_registry import ZoneRegistry

logger = get_logger(__name__)

IMPORTANT_RATIO = 10.0
UNIMPORTANT_RATIO = 0.1


def entity_document_id(name: str) -> str:
    return f'entity:{name}'


def clamp_relevance(score: float, ratio: float) -> float:
    """Scale a relevance score, keeping it within the allowed bounds."""
    if ratio > 1:
        return min(MAX_RELEVANCE_SCORE, score * ratio)
    return max(MIN_RELEVANCE_SCORE, score * ratio)


def zone_entity_filters(zone: str) -> List[QueryExpr]:
    """Filters every entity query of a zone carries."""
    return [Term('zone', zone), Term('type', 'entity')]


class EntityStore:
    """Entity storage scoped to zones."""

    def __init__(self, registry: ZoneRegistry):
        """
        Initialize the entity store.

        Args:
            registry: Zone registry used to resolve and validate zones
        """
        self.registry = registry
        self.client = registry.client
        self.config = registry.config

    def _require_zone(self, zone: str, role: str = '') -> None:
        if zone != DEFAULT_ZONE and not self.registry.zone_exists(zone):
            raise ZoneNotFoundError(zone, role)

    def save_entity(self, entity: Entity, zone: Optional[str] = None, validate_zones: bool = True) -> Entity:
        """
        Create or update an entity.

        Read signals of an existing entity are preserved; its relevance score is
        replaced only if the incoming entity carries one.

        Args:
            entity: Entity to save
            zone: Target zone, the entity's own zone or the default zone if None
            validate_zones: Fail if the zone does not exist

        Returns:
            The entity as stored
        """
        if not entity.name or not entity.name.strip():
            raise ValidationError('Entity name cannot be empty')

        zone = self.registry.resolve_zone(zone or entity.zone)
        if validate_zones:
            self._require_zone(zone)

        self.registry.initialize()
        self.registry.ensure_zone_index(zone)

        existing = self.get_entity_without_updating_last_read(entity.name, zone)
        now = now_iso()

        if existing is not None:
            relevance = entity.relevance_score if entity.relevance_score is not None else existing.relevance_score
            stored = replace(entity,
                             zone=zone,
                             read_count=existing.read_count,
                             last_read=existing.last_read,
                             last_write=now,
                             relevance_score=relevance)
        else:
            stored = replace(entity, zone=zone, read_count=0, last_read=now, last_write=now)

        if stored.relevance_score is None:
            stored.relevance_score = DEFAULT_RELEVANCE_SCORE

        self.client.index_document(self.config.zone_index(zone), entity_document_id(stored.name), stored.to_document())
        logger.debug(f'Saved entity {stored.name} in zone {zone}')
        return stored

    def get_entity_without_updating_last_read(self, name: str, zone: Optional[str] = None) -> Optional[Entity]:
        """Look an entity up by name within a zone without touching its read signals."""
        zone = self.registry.resolve_zone(zone)
        query = Bool(filter=[Term('type', 'entity'), Term('name.keyword', name), Term('zone', zone)])

        response = self.client.search(self.config.zone_index(zone), SearchRequest(query=query, size=1))
        hits = response['hits']['hits']
        if not hits:
            return None
        return Entity.from_document(hits[0]['_source'])

    def get_entity(self, name: str, zone: Optional[str] = None) -> Optional[Entity]:
        """
        Look an entity up and record the read.

        The read counter and timestamp are updated on a best-effort basis; the
        returned entity carries the new values even if the update failed.
        """
        zone = self.registry.resolve_zone(zone)
        entity = self.get_entity_without_updating_last_read(name, zone)
        if entity is None:
            return None

        entity.read_count += 1
        entity.last_read = now_iso()
        try:
            self.client.update_document(self.config.zone_index(zone), entity_document_id(name), {
                'readCount': entity.read_count,
                'lastRead': entity.last_read
            })
        except OpenSearchError as e:
            logger.warning(f'Failed to update read signals of {name} in zone {zone}: {e}')

        return entity

    def delete_entity(self, name: str, zone: Optional[str] = None, cascade_relations: bool = True) -> bool:
        """
        Delete an entity.

        Relations to the entity from other zones are always removed; relations
        within the zone only when cascading.

        Returns:
            True if deleted, False if the entity does not exist
        """
        if not name or not name.strip():
            raise ValidationError('Entity name cannot be empty')

        zone = self.registry.resolve_zone(zone)
        if self.get_entity_without_updating_last_read(name, zone) is None:
            return False

        relations_index = self.config.relations_index
        saga = Saga(f'delete_entity({zone}:{name})')

        if cascade_relations:
            same_zone = Bool(filter=[Term('fromZone', zone), Term('toZone', zone)],
                             should=[Term('from', name), Term('to', name)],
                             minimum_should_match=1)
            saga.step('delete_zone_relations', self.client.delete_by_query, relations_index, same_zone)

        cross_zone = Bool(should=[
            Bool(filter=[Term('fromZone', zone), Term('from', name)], must_not=[Term('toZone', zone)]),
            Bool(filter=[Term('toZone', zone), Term('to', name)], must_not=[Term('fromZone', zone)])
        ],
                          minimum_should_match=1)
        saga.step('delete_cross_zone_relations', self.client.delete_by_query, relations_index, cross_zone)
        saga.step('delete_entity', self.client.delete_document, self.config.zone_index(zone), entity_document_id(name))

        logger.info(f'Deleted entity {name} from zone {zone}')
        return True

    def add_observations(self, name: str, observations: List[str], zone: Optional[str] = None) -> Entity:
        """Append observations to an existing entity."""
        zone = self.registry.resolve_zone(zone)
        entity = self.get_entity_without_updating_last_read(name, zone)
        if entity is None:
            raise EntityNotFoundError(name, zone)

        entity.observations.extend(observations)
        return self.save_entity(entity, zone)

    def update_entity_relevance_score(self,
                                      name: str,
                                      ratio: float,
                                      zone: Optional[str] = None,
                                      auto_create_missing_entities: bool = False) -> Entity:
        """
        Multiply an entity's relevance score by a ratio.

        Args:
            name: Entity name
            ratio: Multiplier; above 1 boosts, otherwise dampens
            zone: Zone of the entity
            auto_create_missing_entities: Create a placeholder entity if it does not exist

        Returns:
            The updated entity
        """
        zone = self.registry.resolve_zone(zone)
        entity = self.get_entity_without_updating_last_read(name, zone)
        if entity is None:
            if not auto_create_missing_entities:
                raise EntityNotFoundError(name, zone)
            entity = self.save_entity(Entity(name=name, relevance_score=DEFAULT_RELEVANCE_SCORE), zone)

        current = entity.relevance_score if entity.relevance_score is not None else DEFAULT_RELEVANCE_SCORE
        entity.relevance_score = clamp_relevance(current, ratio)

        self.client.update_document(self.config.zone_index(zone), entity_document_id(name),
                                    {'relevanceScore': entity.relevance_score})
        logger.debug(f'Relevance of {name} in zone {zone}: {current} -> {entity.relevance_score}')
        return entity

    def mark_important(self,
                       name: str,
                       important: bool,
                       zone: Optional[str] = None,
                       auto_create_missing_entities: bool = False) -> Entity:
        ratio = IMPORTANT_RATIO if important else UNIMPORTANT_RATIO
        return self.update_entity_relevance_score(name, ratio, zone, auto_create_missing_entities)

    def get_recent_entities(self,
                            limit: int = 10,
                            include_observations: bool = False,
                            zone: Optional[str] = None) -> List[Entity]:
        """Most recently read entities of a zone."""
        zone = self.registry.resolve_zone(zone)
        request = SearchRequest(query=Bool(must=[MatchAll()], filter=zone_entity_filters(zone)),
                                size=limit,
                                sort=[Sort('lastRead', 'desc')],
                                source_excludes=[] if include_observations else ['observations'])

        response = self.client.search(self.config.zone_index(zone), request)
        return [Entity.from_document(hit['_source']) for hit in response['hits']['hits']]

    def list_all_entities(self, zone: Optional[str] = None) -> List[Entity]:
        """Every entity of a zone, up to the configured result cap."""
        zone = self.registry.resolve_zone(zone)
        request = SearchRequest(query=Bool(must=[MatchAll()], filter=zone_entity_filters(zone)),
                                size=self.config.max_results)

        response = self.client.search(self.config.zone_index(zone), request)
        return [Entity.from_document(hit['_source']) for hit in response['hits']['hits']]
