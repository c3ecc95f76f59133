"""
Import/Export Service: zone-tagged entity and relation records, independent of the engine format.
"""

import json
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from ..models.core import DEFAULT_ZONE, Entity, ExportBundle, ImportResult, InvalidRelation, Relation
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_iso
from .entity_store import EntityStore, entity_document_id
from .errors import ValidationError, ZoneNotFoundError
from .relation_store import RelationStore

logger = get_logger(__name__)

RECORD_TYPES = ('entity', 'relation')


def write_jsonl(path: str, records: Iterable[Dict[str, Any]]) -> int:
    """Write records to a JSON-lines file. Returns the number of lines written."""
    count = 0
    with open(path, 'w', encoding='utf-8') as f:
        for record in records:
            f.write(json.dumps(record, ensure_ascii=False))
            f.write('\n')
            count += 1
    logger.info(f'Wrote {count} records to {path}')
    return count


def read_jsonl(path: str) -> List[Dict[str, Any]]:
    """Read records from a JSON-lines file, skipping blank and unparseable lines."""
    records = []
    with open(path, encoding='utf-8') as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                logger.warning(f'Skipping unparseable line {line_number} of {path}: {e}')
    return records


class ImportExportService:
    """Bulk transfer of zones in and out of the knowledge graph."""

    def __init__(self, entity_store: EntityStore, relation_store: RelationStore):
        self.entity_store = entity_store
        self.relation_store = relation_store
        self.registry = entity_store.registry
        self.client = entity_store.client
        self.config = entity_store.config

    def export_zone(self, zone: Optional[str] = None) -> List[Dict[str, Any]]:
        """Entity records of a zone followed by the relation records touching it."""
        zone = self.registry.resolve_zone(zone)
        if not self.registry.zone_exists(zone):
            raise ZoneNotFoundError(zone)

        records = [entity.to_document() for entity in self.entity_store.list_all_entities(zone)]
        records.extend(relation.to_document() for relation in self.relation_store.get_relations_touching_zone(zone))
        return records

    def _entity_document(self, record: Dict[str, Any], zone: str) -> Dict[str, Any]:
        entity = Entity.from_document(record)
        entity.zone = zone
        now = now_iso()
        entity.last_read = entity.last_read or now
        entity.last_write = entity.last_write or now
        return entity.to_document()

    def import_records(self, records: List[Dict[str, Any]], zone: Optional[str] = None) -> ImportResult:
        """
        Import entity and relation records.

        Entities are bulk-indexed into their own zone, or the given zone when they carry
        none. Relations are only created when both endpoints exist; the others are
        reported with a reason.

        Args:
            records: Records tagged with type 'entity' or 'relation'
            zone: Zone for records without one, the default zone if None

        Returns:
            ImportResult with counts and the rejected relations

        Raises:
            ValidationError: If a record has no valid type tag or an entity has no name
        """
        zone = self.registry.resolve_zone(zone)

        for index, record in enumerate(records):
            if not isinstance(record, dict) or record.get('type') not in RECORD_TYPES:
                raise ValidationError(f'Record {index} has no valid type tag, expected one of {RECORD_TYPES}')
            if record['type'] == 'entity' and not str(record.get('name') or '').strip():
                raise ValidationError(f'Entity record {index} has no name')

        entities_by_zone: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for record in records:
            if record['type'] == 'entity':
                entity_zone = record.get('zone') or zone
                entities_by_zone[entity_zone].append(self._entity_document(record, entity_zone))

        for entity_zone in entities_by_zone:
            if not self.registry.zone_exists(entity_zone):
                raise ZoneNotFoundError(entity_zone)

        result = ImportResult()
        self.registry.initialize()
        for entity_zone, documents in entities_by_zone.items():
            self.registry.ensure_zone_index(entity_zone)
            bulk = [{'_id': entity_document_id(doc['name']), '_source': doc} for doc in documents]
            result.entities_added += self.client.bulk_index(self.config.zone_index(entity_zone), bulk)

        for record in records:
            if record['type'] != 'relation':
                continue

            relation = Relation.from_document(record)
            relation.from_zone = relation.from_zone or zone
            relation.to_zone = relation.to_zone or zone

            if not relation.from_ or not relation.to or not relation.relation_type:
                result.invalid_relations.append(InvalidRelation(record, 'Relation is missing from, to or relationType'))
                continue

            missing = [
                f'"{name}" in zone "{name_zone}"'
                for name, name_zone in ((relation.from_, relation.from_zone), (relation.to, relation.to_zone))
                if self.entity_store.get_entity_without_updating_last_read(name, name_zone) is None
            ]
            if missing:
                result.invalid_relations.append(InvalidRelation(record, f'Missing entities: {", ".join(missing)}'))
                continue

            self.relation_store.save_relation(relation, auto_create_missing_entities=False, validate_zones=False)
            result.relations_added += 1

        if result.invalid_relations:
            logger.warning(f'{len(result.invalid_relations)} relations were not imported due to missing entities')
        logger.info(f'Imported {result.entities_added} entities and {result.relations_added} relations')
        return result

    def export_all(self, zones: Optional[List[str]] = None) -> ExportBundle:
        """Every zone (or the given ones) with their entities and relations."""
        metadata = self.registry.list_memory_zones()
        if zones is not None:
            wanted = set(zones)
            metadata = [zone for zone in metadata if zone.name in wanted]

        entities: List[Dict[str, Any]] = []
        relations: Dict[str, Dict[str, Any]] = {}
        for zone in metadata:
            entities.extend(entity.to_document() for entity in self.entity_store.list_all_entities(zone.name))
            for relation in self.relation_store.get_relations_touching_zone(zone.name):
                relations.setdefault(relation.document_id, relation.to_document())

        logger.info(f'Exported {len(entities)} entities and {len(relations)} relations from {len(metadata)} zones')
        return ExportBundle(entities=entities, relations=list(relations.values()), zones=metadata)

    def import_all(self, bundle: ExportBundle) -> ImportResult:
        """Recreate the bundle's zones, then import its records."""
        for zone in bundle.zones:
            if zone.name == DEFAULT_ZONE or self.registry.zone_exists(zone.name):
                continue
            self.registry.add_memory_zone(zone.name, zone.description, zone.config, zone.short_description)

        return self.import_records(list(bundle.entities) + list(bundle.relations))
