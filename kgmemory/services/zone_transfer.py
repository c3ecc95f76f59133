"""
Zone Transfer Service: copy, move and merge entities between zones.
"""

from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from ..models.core import DEFAULT_ZONE, CopyResult, Entity, FailedZone, MergeResult, MoveResult, Relation, SkippedEntity
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchError
from .entity_store import EntityStore
from .errors import KnowledgeGraphError, ValidationError, ZoneNotFoundError
from .relation_store import RelationStore

logger = get_logger(__name__)

CONFLICT_POLICIES = ('skip', 'overwrite', 'rename')


class ZoneTransferService:
    """Moves knowledge between zones without transactions.

    Each entity is handled on its own; partial progress is reported rather than
    rolled back.
    """

    def __init__(self, entity_store: EntityStore, relation_store: RelationStore):
        self.entity_store = entity_store
        self.relation_store = relation_store
        self.registry = entity_store.registry

    def _exists(self, name: str, zone: str) -> bool:
        return self.entity_store.get_entity_without_updating_last_read(name, zone) is not None

    def _recreate_relations(self,
                            relations: List[Relation],
                            source: str,
                            target: str,
                            name_map: Optional[Dict[str, str]] = None) -> int:
        """
        Re-create relations with their source-zone endpoints pointed at the target.

        Endpoints in other zones keep their zone. A relation is only created when both
        endpoints exist; the rest are dropped.

        Returns:
            Number of relations created
        """
        name_map = name_map or {}
        created = 0

        for relation in relations:
            endpoints: List[Tuple[str, str]] = []
            for name, zone in ((relation.from_, relation.from_zone), (relation.to, relation.to_zone)):
                if zone == source:
                    endpoints.append((name_map.get(name, name), target))
                else:
                    endpoints.append((name, zone))

            if not all(self._exists(name, zone) for name, zone in endpoints):
                logger.debug(f'Dropping relation {relation.key}: endpoint missing after transfer')
                continue

            (from_name, from_zone), (to_name, to_zone) = endpoints
            self.relation_store.save_relation(Relation(from_=from_name, to=to_name, relation_type=relation.relation_type),
                                              from_zone,
                                              to_zone,
                                              auto_create_missing_entities=False,
                                              validate_zones=False)
            created += 1

        return created

    def copy_entities_between_zones(self,
                                    names: List[str],
                                    source: str,
                                    target: str,
                                    copy_relations: bool = True,
                                    overwrite: bool = False) -> CopyResult:
        """
        Copy entities from one zone to another.

        Args:
            names: Names of the entities to copy
            source: Zone to copy from
            target: Zone to copy into
            copy_relations: Re-create the relations of the copied entities in the target
            overwrite: Replace entities that already exist in the target

        Returns:
            CopyResult with the copied names, the skipped names with reasons, and the relation count
        """
        if source == target:
            raise ValidationError('Source and target zones must be different')
        if not self.registry.zone_exists(source):
            raise ZoneNotFoundError(source, 'Source')
        if not self.registry.zone_exists(target):
            raise ZoneNotFoundError(target, 'Target')

        result = CopyResult()
        for name in names:
            entity = self.entity_store.get_entity_without_updating_last_read(name, source)
            if entity is None:
                result.entities_skipped.append(SkippedEntity(name, 'Entity not found in source zone'))
                continue

            if not overwrite and self._exists(name, target):
                result.entities_skipped.append(SkippedEntity(name, 'Entity already exists in target zone'))
                continue

            self.entity_store.save_entity(replace(entity, zone=None), target)
            result.entities_copied.append(name)

        if copy_relations and result.entities_copied:
            relations = self.relation_store.get_relations_for_entities(result.entities_copied, source)
            result.relations_copied = self._recreate_relations(relations, source, target)

        logger.info(f'Copied {len(result.entities_copied)} entities from {source} to {target} '
                    f'({len(result.entities_skipped)} skipped, {result.relations_copied} relations)')
        return result

    def move_entities_between_zones(self,
                                    names: List[str],
                                    source: str,
                                    target: str,
                                    move_relations: bool = True,
                                    overwrite: bool = False) -> MoveResult:
        """
        Move entities to another zone: copy them, then delete them from the source.

        A failed delete leaves the entity in both zones and is reported as skipped.
        """
        copy_result = self.copy_entities_between_zones(names, source, target, move_relations, overwrite)
        result = MoveResult(entities_skipped=list(copy_result.entities_skipped),
                            relations_moved=copy_result.relations_copied)

        for name in copy_result.entities_copied:
            try:
                if self.entity_store.delete_entity(name, source, cascade_relations=False):
                    result.entities_moved.append(name)
                else:
                    result.entities_skipped.append(SkippedEntity(name, 'Entity disappeared from source zone before deletion'))
            except (OpenSearchError, KnowledgeGraphError) as e:
                logger.error(f'Failed to delete {name} from {source} after copying it to {target}: {e}')
                result.entities_skipped.append(SkippedEntity(name, f'Failed to delete from source zone: {e}'))

        logger.info(f'Moved {len(result.entities_moved)} entities from {source} to {target}')
        return result

    def _free_name(self, base: str, zone: str) -> str:
        candidate = base
        counter = 1
        while self._exists(candidate, zone):
            candidate = f'{base}_{counter}'
            counter += 1
        return candidate

    def _merge_with_rename(self, source: str, target: str, entities: List[Entity]) -> Tuple[int, int]:
        name_map: Dict[str, str] = {}
        for entity in entities:
            new_name = entity.name
            if self._exists(new_name, target):
                new_name = self._free_name(f'{entity.name}_from_{source}', target)
                logger.debug(f'Renaming {entity.name} from {source} to {new_name}')
            self.entity_store.save_entity(replace(entity, name=new_name, zone=None), target)
            name_map[entity.name] = new_name

        relations = self.relation_store.get_relations_for_entities(list(name_map), source)
        return len(name_map), self._recreate_relations(relations, source, target, name_map)

    def merge_zones(self,
                    sources: List[str],
                    target: str,
                    delete_source_zones: bool = False,
                    overwrite_conflicts: str = 'skip') -> MergeResult:
        """
        Merge several zones into a target zone.

        Args:
            sources: Zones to merge from
            target: Zone to merge into, created if missing
            delete_source_zones: Delete each source after it merged successfully (never the default zone)
            overwrite_conflicts: 'skip', 'overwrite' or 'rename' for names already in the target

        Returns:
            MergeResult with merged and failed sources and the transfer counts
        """
        if not sources:
            raise ValidationError('At least one source zone is required')
        if target in sources:
            raise ValidationError('Target zone cannot be one of the source zones')
        if overwrite_conflicts not in CONFLICT_POLICIES:
            raise ValidationError(f'Unknown conflict policy "{overwrite_conflicts}", use one of {CONFLICT_POLICIES}')

        if not self.registry.zone_exists(target):
            self.registry.add_memory_zone(target, f'Merged from {", ".join(sources)}')

        result = MergeResult()
        for source in sources:
            try:
                if not self.registry.zone_exists(source):
                    raise ZoneNotFoundError(source, 'Source')

                entities = self.entity_store.list_all_entities(source)
                if overwrite_conflicts == 'rename':
                    copied, relations = self._merge_with_rename(source, target, entities)
                    skipped = 0
                else:
                    copy_result = self.copy_entities_between_zones([entity.name for entity in entities],
                                                                   source,
                                                                   target,
                                                                   copy_relations=True,
                                                                   overwrite=overwrite_conflicts == 'overwrite')
                    copied = len(copy_result.entities_copied)
                    skipped = len(copy_result.entities_skipped)
                    relations = copy_result.relations_copied
            except (OpenSearchError, KnowledgeGraphError) as e:
                logger.error(f'Failed to merge zone {source} into {target}: {e}')
                result.failed_zones.append(FailedZone(source, str(e)))
                continue

            result.entities_copied += copied
            result.entities_skipped += skipped
            result.relations_copied += relations
            result.merged_zones.append(source)

            if delete_source_zones and source != DEFAULT_ZONE:
                outcome = self.registry.delete_memory_zone(source)
                if not outcome.ok:
                    logger.warning(f'Zone {source} merged but not fully deleted: {outcome.failed_steps}')

        logger.info(f'Merged {len(result.merged_zones)} zones into {target} ({len(result.failed_zones)} failed)')
        return result
