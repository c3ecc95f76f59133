"""
Zone Registry: which zones exist, their metadata, and the zone-existence cache.
"""

import re
from typing import Dict, List, Optional

from ..models.core import DEFAULT_ZONE, SagaOutcome, ZoneMetadata, ZoneStats
from ..models.query import Bool, MatchAll, SearchRequest, Term, TermsAgg
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import (ENTITY_INDEX_BODY, METADATA_INDEX_BODY, RELATION_INDEX_BODY, OpenSearchClient,
                                       OpenSearchError)
from ..utils.saga import Saga
from ..utils.timestamp_utils import now_iso
from ..utils.zone_cache import ZoneCache
from .errors import ValidationError, ZoneNotFoundError

logger = get_logger(__name__)

# Zone names become part of an index name
ZONE_NAME_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_\-]*$')

MAX_ZONES = 1000


def zone_relations_query(zone: str) -> Bool:
    """Relations having the zone on either end."""
    return Bool(should=[Term('fromZone', zone), Term('toZone', zone)], minimum_should_match=1)


class ZoneRegistry:
    """Tracks zones and their data partitions.

    Metadata records are authoritative; the presence of a partition is the fallback
    for zones created before metadata existed.
    """

    def __init__(self, client: OpenSearchClient, zone_cache: Optional[ZoneCache] = None, assistant=None):
        """
        Initialize the registry.

        Args:
            client: Engine client wrapper
            zone_cache: Cache of zone names known to exist, shared with other registries if injected
            assistant: Optional relevance assistant used to rank zones when listed with a reason
        """
        self.client = client
        self.config = client.config
        self.zone_cache = zone_cache if zone_cache is not None else ZoneCache()
        self.assistant = assistant
        self._ready_indices = ZoneCache()
        self._initialized = False

    def resolve_zone(self, zone: Optional[str]) -> str:
        return zone or self.config.default_zone

    def initialize(self) -> None:
        """Create the metadata and relations collections and the default partition if needed."""
        if self._initialized:
            return

        status = self.client.create_index_if_not_exists(self.config.metadata_index, METADATA_INDEX_BODY)
        if status == 'created' or self.client.get_document(self.config.metadata_index, f'zone:{DEFAULT_ZONE}') is None:
            self.save_zone_metadata(DEFAULT_ZONE, 'Default knowledge zone')

        self.client.create_index_if_not_exists(self.config.relations_index, RELATION_INDEX_BODY)
        self.ensure_zone_index(DEFAULT_ZONE)
        self.zone_cache.add(DEFAULT_ZONE)
        self._initialized = True
        logger.info('Initialized knowledge graph collections')

    def ensure_zone_index(self, zone: str) -> None:
        """Create the zone's data partition on first use."""
        if zone in self._ready_indices:
            return
        self.client.create_index_if_not_exists(self.config.zone_index(zone), ENTITY_INDEX_BODY)
        self._ready_indices.add(zone)

    def validate_zone_name(self, name: str) -> None:
        if not name or not name.strip():
            raise ValidationError('Zone name cannot be empty')
        if not ZONE_NAME_PATTERN.match(name):
            raise ValidationError(f'Invalid zone name "{name}". Use lowercase letters, digits, "-" and "_".')

    def zone_exists(self, zone: str) -> bool:
        """Check whether a zone exists, consulting the cache first."""
        if zone == DEFAULT_ZONE:
            return True
        if zone in self.zone_cache:
            return True

        self.initialize()
        if self.client.get_document(self.config.metadata_index, f'zone:{zone}') is not None:
            self.zone_cache.add(zone)
            return True

        if self.client.index_exists(self.config.zone_index(zone)):
            logger.debug(f'Zone {zone} detected from its partition only')
            self.zone_cache.add(zone)
            return True

        return False

    def save_zone_metadata(self,
                           name: str,
                           description: Optional[str] = None,
                           config: Optional[Dict] = None,
                           short_description: Optional[str] = None) -> ZoneMetadata:
        """Create or update a zone's metadata record, keeping fields that are not given."""
        now = now_iso()
        existing_doc = self.client.get_document(self.config.metadata_index, f'zone:{name}')
        existing = ZoneMetadata.from_document(existing_doc) if existing_doc else None

        metadata = ZoneMetadata(name=name,
                                created_at=existing.created_at if existing and existing.created_at else now,
                                last_modified=now,
                                description=description if description is not None else
                                (existing.description if existing else None),
                                short_description=short_description if short_description is not None else
                                (existing.short_description if existing else None),
                                config=config if config is not None else (existing.config if existing else None))

        self.client.index_document(self.config.metadata_index, f'zone:{name}', metadata.to_document())
        return metadata

    def add_memory_zone(self,
                        name: str,
                        description: Optional[str] = None,
                        config: Optional[Dict] = None,
                        short_description: Optional[str] = None) -> bool:
        """
        Add a new memory zone: its data partition and its metadata record.

        Raises:
            ValidationError: If the name is empty, "default" or not usable as an index name
        """
        if not name or not name.strip() or name == DEFAULT_ZONE:
            raise ValidationError('Invalid zone name. Cannot be empty or "default".')
        self.validate_zone_name(name)

        self.initialize()
        self.ensure_zone_index(name)
        self.save_zone_metadata(name, description, config, short_description)
        self.zone_cache.add(name)

        logger.info(f'Added memory zone {name}')
        return True

    def _forget_zone(self, name: str) -> None:
        self.zone_cache.discard(name)
        self._ready_indices.discard(name)

    def delete_memory_zone(self, name: str) -> SagaOutcome:
        """
        Delete a zone, its metadata and every relation touching it.

        Each cleanup step runs even if an earlier one failed; failures are logged
        and reported in the outcome.

        Raises:
            ValidationError: If asked to delete the default zone
        """
        if name == DEFAULT_ZONE:
            raise ValidationError('Cannot delete the default zone.')

        self.initialize()
        saga = Saga(f'delete_memory_zone({name})', best_effort=True)
        saga.step('delete_partition', self.client.delete_index, self.config.zone_index(name))
        saga.step('delete_metadata', self.client.delete_document, self.config.metadata_index, f'zone:{name}')
        saga.step('purge_cache', self._forget_zone, name)
        saga.step('delete_relations', self.client.delete_by_query, self.config.relations_index,
                  zone_relations_query(name))

        outcome = saga.outcome
        if outcome.ok:
            logger.info(f'Deleted memory zone {name}')
        else:
            logger.warning(f'Deleted memory zone {name} with failed steps: {outcome.failed_steps}')
        return outcome

    def list_memory_zones(self, reason: Optional[str] = None) -> List[ZoneMetadata]:
        """
        List every zone.

        Partitions without a metadata record are listed too, and their metadata is
        backfilled. When a reason is given and the assistant is available, zones are
        rated for usefulness and the most useful come first.
        """
        self.initialize()

        zones: List[ZoneMetadata] = []
        try:
            response = self.client.search(self.config.metadata_index, SearchRequest(query=MatchAll(), size=MAX_ZONES))
            zones = [ZoneMetadata.from_document(hit['_source']) for hit in response['hits']['hits']]
        except OpenSearchError as e:
            logger.warning(f'Error getting zones from metadata, falling back to index detection: {e}')

        # Partitions created before metadata existed have no record yet
        known = {zone.name for zone in zones}
        prefix = f'{self.config.index_prefix}@'
        for index_name in self.client.list_indices(f'{prefix}*'):
            name = index_name[len(prefix):]
            if not index_name.startswith(prefix) or name in known:
                continue
            logger.info(f'Backfilling metadata for zone {name} detected from index {index_name}')
            zones.append(self.save_zone_metadata(name, f'Zone detected from index: {index_name}'))
            known.add(name)

        self.zone_cache.replace([zone.name for zone in zones] + [DEFAULT_ZONE])

        if reason and self.assistant is not None and self.assistant.is_available():
            self._rank_zones(zones, reason)

        return zones

    def _rank_zones(self, zones: List[ZoneMetadata], reason: str) -> None:
        try:
            usefulness = self.assistant.classify_zone_usefulness(zones, reason)
        except Exception as e:
            logger.error(f'Zone classification failed, returning zones unranked: {e}')
            return

        for zone in zones:
            zone.usefulness = usefulness.get(zone.name, 2)
        zones.sort(key=lambda zone: zone.usefulness, reverse=True)

    def get_zone_metadata(self, name: str) -> Optional[ZoneMetadata]:
        self.initialize()
        doc = self.client.get_document(self.config.metadata_index, f'zone:{name}')
        return ZoneMetadata.from_document(doc) if doc else None

    def update_zone_descriptions(self, name: str, description: str, short_description: Optional[str] = None) -> ZoneMetadata:
        """Update the descriptive fields of a zone, creating the zone first if needed."""
        self.initialize()
        if not self.zone_exists(name):
            self.add_memory_zone(name, description, short_description=short_description)
            return self.get_zone_metadata(name)
        return self.save_zone_metadata(name, description=description, short_description=short_description)

    def get_memory_zone_stats(self, zone: Optional[str] = None) -> ZoneStats:
        """Entity and relation counts plus type distributions for a zone."""
        zone = self.resolve_zone(zone)
        if not self.zone_exists(zone):
            raise ZoneNotFoundError(zone)
        self.initialize()

        index_name = self.config.zone_index(zone)
        entity_query = Term('type', 'entity')
        relation_query = zone_relations_query(zone)

        entity_count = self.client.count(index_name, entity_query)
        relation_count = self.client.count(self.config.relations_index, relation_query)

        entity_types_response = self.client.search(
            index_name, SearchRequest(query=entity_query, size=0, aggs=[TermsAgg('entity_types', 'entityType')]))
        relation_types_response = self.client.search(
            self.config.relations_index,
            SearchRequest(query=relation_query, size=0, aggs=[TermsAgg('relation_types', 'relationType')]))

        return ZoneStats(zone=zone,
                         entity_count=entity_count,
                         relation_count=relation_count,
                         entity_types=self._buckets(entity_types_response, 'entity_types'),
                         relation_types=self._buckets(relation_types_response, 'relation_types'))

    @staticmethod
    def _buckets(response: Dict, name: str) -> Dict[str, int]:
        buckets = response.get('aggregations', {}).get(name, {}).get('buckets', [])
        return {bucket['key']: bucket['doc_count'] for bucket in buckets}
