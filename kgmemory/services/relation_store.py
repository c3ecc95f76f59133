"""
Relation Store: directed, typed relations whose endpoints may live in different zones.
"""

from collections import deque
from typing import Dict, List, Optional, Tuple

from ..models.core import DEFAULT_ZONE, Entity, RelatedEntities, Relation
from ..models.query import Bool, QueryExpr, SearchRequest, Term, Terms
from ..utils.logging_config import get_logger
from .entity_store import EntityStore
from .errors import ValidationError, ZoneNotFoundError
from .zone_registry import zone_relations_query

logger = get_logger(__name__)


class RelationStore:
    """Relation storage in the shared relations collection."""

    def __init__(self, entity_store: EntityStore):
        """
        Initialize the relation store.

        Args:
            entity_store: Entity store used to resolve and create relation endpoints
        """
        self.entity_store = entity_store
        self.registry = entity_store.registry
        self.client = entity_store.client
        self.config = entity_store.config

    def _search_relations(self, query: QueryExpr) -> List[Relation]:
        request = SearchRequest(query=Bool(must=[query], filter=[Term('type', 'relation')]), size=self.config.max_results)
        response = self.client.search(self.config.relations_index, request)
        return [Relation.from_document(hit['_source']) for hit in response['hits']['hits']]

    def save_relation(self,
                      relation: Relation,
                      from_zone: Optional[str] = None,
                      to_zone: Optional[str] = None,
                      auto_create_missing_entities: bool = True,
                      validate_zones: bool = True) -> Relation:
        """
        Create or update a relation.

        Args:
            relation: Relation to save
            from_zone: Zone of the source entity, the relation's own or the default zone if None
            to_zone: Zone of the target entity, the relation's own or the default zone if None
            auto_create_missing_entities: Create placeholder entities for missing endpoints
            validate_zones: Fail if either zone does not exist

        Returns:
            The relation as stored
        """
        if not relation.from_ or not relation.from_.strip() or not relation.to or not relation.to.strip():
            raise ValidationError('Relation endpoints cannot be empty')

        from_zone = self.registry.resolve_zone(from_zone or relation.from_zone)
        to_zone = self.registry.resolve_zone(to_zone or relation.to_zone)

        if validate_zones:
            for zone in (from_zone, to_zone):
                if zone != DEFAULT_ZONE and not self.registry.zone_exists(zone):
                    raise ZoneNotFoundError(zone)

        missing = []
        for name, zone in ((relation.from_, from_zone), (relation.to, to_zone)):
            if self.entity_store.get_entity_without_updating_last_read(name, zone) is None:
                missing.append((name, zone))

        if missing and not auto_create_missing_entities:
            described = ', '.join(f'"{name}" in zone "{zone}"' for name, zone in missing)
            raise ValidationError(f'Cannot create relation: Missing entities: {described}')

        for name, zone in missing:
            logger.info(f'Auto-creating missing entity {name} in zone {zone}')
            self.entity_store.save_entity(Entity(name=name), zone, validate_zones=False)

        stored = Relation(from_=relation.from_,
                          to=relation.to,
                          relation_type=relation.relation_type,
                          from_zone=from_zone,
                          to_zone=to_zone)

        self.registry.initialize()
        self.client.index_document(self.config.relations_index, stored.document_id, stored.to_document())
        logger.debug(f'Saved relation {stored.key}')
        return stored

    def delete_relation(self,
                        from_: str,
                        to: str,
                        relation_type: str,
                        from_zone: Optional[str] = None,
                        to_zone: Optional[str] = None) -> bool:
        """Delete a relation by its identity. Returns False if it does not exist."""
        relation = Relation(from_=from_,
                            to=to,
                            relation_type=relation_type,
                            from_zone=self.registry.resolve_zone(from_zone),
                            to_zone=self.registry.resolve_zone(to_zone))
        return self.client.delete_document(self.config.relations_index, relation.document_id)

    def _relations_of(self, zone: str, name: str) -> List[Relation]:
        query = Bool(should=[
            Bool(filter=[Term('from', name), Term('fromZone', zone)]),
            Bool(filter=[Term('to', name), Term('toZone', zone)])
        ],
                     minimum_should_match=1)
        return self._search_relations(query)

    def get_related_entities(self, name: str, max_depth: int = 1, zone: Optional[str] = None) -> RelatedEntities:
        """
        Collect the entities reachable from an entity within max_depth hops.

        Relations are followed in both directions and across zones. The root entity
        is included first and is the only one whose read signals are updated.
        """
        zone = self.registry.resolve_zone(zone)
        root = self.entity_store.get_entity(name, zone)
        if root is None:
            return RelatedEntities(entities=[], relations=[])

        entities: Dict[Tuple[str, str], Entity] = {(zone, root.name): root}
        relations: Dict[str, Relation] = {}
        visited = set()
        queue = deque([(zone, root.name, 0)])

        while queue:
            entity_zone, entity_name, depth = queue.popleft()
            if (entity_zone, entity_name) in visited or depth >= max_depth:
                continue
            visited.add((entity_zone, entity_name))

            for relation in self._relations_of(entity_zone, entity_name):
                if relation.key in relations:
                    continue
                relations[relation.key] = relation

                for other in ((relation.from_zone, relation.from_), (relation.to_zone, relation.to)):
                    if other in entities:
                        continue
                    other_entity = self.entity_store.get_entity_without_updating_last_read(other[1], other[0])
                    if other_entity is None:
                        continue
                    entities[other] = other_entity
                    queue.append((other[0], other[1], depth + 1))

        return RelatedEntities(entities=list(entities.values()), relations=list(relations.values()))

    def get_relations_for_entities(self, names: List[str], zone: Optional[str] = None) -> List[Relation]:
        """Relations in which any of the named entities of a zone is source or target."""
        if not names:
            return []
        zone = self.registry.resolve_zone(zone)
        query = Bool(should=[
            Bool(filter=[Term('fromZone', zone), Terms('from', names)]),
            Bool(filter=[Term('toZone', zone), Terms('to', names)])
        ],
                     minimum_should_match=1)
        return self._search_relations(query)

    def get_relations_touching_zone(self, zone: str) -> List[Relation]:
        return self._search_relations(zone_relations_query(zone))
