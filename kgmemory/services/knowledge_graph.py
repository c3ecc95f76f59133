"""
Knowledge Graph Service: single entry point over zones, entities, relations, search and transfers.
"""

from typing import Any, Dict, List, Optional

from ..models.core import (CopyResult, Entity, ExportBundle, ImportResult, InspectionResult, MergeResult, MoveResult,
                           RelatedEntities, Relation, SagaOutcome, SearchResponse, UserSearchResult, ZoneMetadata,
                           ZoneStats)
from ..utils.config import AppConfig
from ..utils.config import config as default_config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from ..utils.zone_cache import ZoneCache
from .entity_store import EntityStore
from .import_export import ImportExportService
from .inspection import InspectionService
from .relation_store import RelationStore
from .relevance_assistant import RelevanceAssistant
from .search import SearchService
from .zone_registry import ZoneRegistry
from .zone_transfer import ZoneTransferService

logger = get_logger(__name__)


class KnowledgeGraphService:
    """Zone-aware knowledge graph built on one engine client and one zone cache."""

    def __init__(self,
                 app_config: Optional[AppConfig] = None,
                 client: Optional[OpenSearchClient] = None,
                 assistant: Optional[RelevanceAssistant] = None,
                 zone_cache: Optional[ZoneCache] = None):
        """
        Initialize the knowledge graph service.

        Args:
            app_config: Application configuration, the global one if None
            client: Engine client wrapper, built from the configuration if None
            assistant: Relevance assistant, built from the configuration if None
            zone_cache: Zone-existence cache to share, a fresh one if None
        """
        self.app_config = app_config or default_config
        self.opensearch = client or OpenSearchClient(self.app_config.opensearch)
        self.assistant = assistant or RelevanceAssistant.from_config(self.app_config.bedrock_llm)

        self.zones = ZoneRegistry(self.opensearch, zone_cache if zone_cache is not None else ZoneCache(), self.assistant)
        self.entities = EntityStore(self.zones)
        self.relations = RelationStore(self.entities)
        self.search_service = SearchService(self.entities, self.relations, self.assistant, self.app_config.search)
        self.transfer = ZoneTransferService(self.entities, self.relations)
        self.import_export = ImportExportService(self.entities, self.relations)
        self.inspection = InspectionService(self.search_service, self.assistant)

        logger.info('Initialized KnowledgeGraphService')

    def initialize(self) -> None:
        self.zones.initialize()

    # Zones

    def zone_exists(self, zone: str) -> bool:
        return self.zones.zone_exists(zone)

    def add_memory_zone(self,
                        name: str,
                        description: Optional[str] = None,
                        config: Optional[Dict[str, Any]] = None,
                        short_description: Optional[str] = None) -> bool:
        return self.zones.add_memory_zone(name, description, config, short_description)

    def delete_memory_zone(self, name: str) -> SagaOutcome:
        return self.zones.delete_memory_zone(name)

    def list_memory_zones(self, reason: Optional[str] = None) -> List[ZoneMetadata]:
        return self.zones.list_memory_zones(reason)

    def get_zone_metadata(self, name: str) -> Optional[ZoneMetadata]:
        return self.zones.get_zone_metadata(name)

    def update_zone_descriptions(self,
                                 name: str,
                                 description: str,
                                 short_description: Optional[str] = None) -> ZoneMetadata:
        return self.zones.update_zone_descriptions(name, description, short_description)

    def get_memory_zone_stats(self, zone: Optional[str] = None) -> ZoneStats:
        return self.zones.get_memory_zone_stats(zone)

    # Entities

    def save_entity(self, entity: Entity, zone: Optional[str] = None, validate_zones: bool = True) -> Entity:
        return self.entities.save_entity(entity, zone, validate_zones)

    def get_entity(self, name: str, zone: Optional[str] = None) -> Optional[Entity]:
        return self.entities.get_entity(name, zone)

    def get_entity_without_updating_last_read(self, name: str, zone: Optional[str] = None) -> Optional[Entity]:
        return self.entities.get_entity_without_updating_last_read(name, zone)

    def delete_entity(self, name: str, zone: Optional[str] = None, cascade_relations: bool = True) -> bool:
        return self.entities.delete_entity(name, zone, cascade_relations)

    def add_observations(self, name: str, observations: List[str], zone: Optional[str] = None) -> Entity:
        return self.entities.add_observations(name, observations, zone)

    def update_entity_relevance_score(self,
                                      name: str,
                                      ratio: float,
                                      zone: Optional[str] = None,
                                      auto_create_missing_entities: bool = False) -> Entity:
        return self.entities.update_entity_relevance_score(name, ratio, zone, auto_create_missing_entities)

    def mark_important(self,
                       name: str,
                       important: bool,
                       zone: Optional[str] = None,
                       auto_create_missing_entities: bool = False) -> Entity:
        return self.entities.mark_important(name, important, zone, auto_create_missing_entities)

    def get_recent_entities(self,
                            limit: int = 10,
                            include_observations: bool = False,
                            zone: Optional[str] = None) -> List[Entity]:
        return self.entities.get_recent_entities(limit, include_observations, zone)

    # Relations

    def save_relation(self,
                      relation: Relation,
                      from_zone: Optional[str] = None,
                      to_zone: Optional[str] = None,
                      auto_create_missing_entities: bool = True,
                      validate_zones: bool = True) -> Relation:
        return self.relations.save_relation(relation, from_zone, to_zone, auto_create_missing_entities, validate_zones)

    def delete_relation(self,
                        from_: str,
                        to: str,
                        relation_type: str,
                        from_zone: Optional[str] = None,
                        to_zone: Optional[str] = None) -> bool:
        return self.relations.delete_relation(from_, to, relation_type, from_zone, to_zone)

    def get_related_entities(self, name: str, max_depth: int = 1, zone: Optional[str] = None) -> RelatedEntities:
        return self.relations.get_related_entities(name, max_depth, zone)

    def get_relations_for_entities(self, names: List[str], zone: Optional[str] = None) -> List[Relation]:
        return self.relations.get_relations_for_entities(names, zone)

    # Search

    def search(self, query: Optional[str], **kwargs) -> SearchResponse:
        return self.search_service.search(query, **kwargs)

    def search_entities(self, query: Optional[str], **kwargs) -> List[Entity]:
        return self.search_service.search_entities(query, **kwargs)

    def user_search(self, query: Optional[str], **kwargs) -> UserSearchResult:
        return self.search_service.user_search(query, **kwargs)

    def inspect_knowledge_graph(self,
                                information_needed: str,
                                reason: Optional[str] = None,
                                keywords: Optional[List[str]] = None,
                                zone: Optional[str] = None,
                                entity_types: Optional[List[str]] = None) -> InspectionResult:
        return self.inspection.inspect_knowledge_graph(information_needed, reason, keywords, zone, entity_types)

    # Transfers

    def copy_entities_between_zones(self,
                                    names: List[str],
                                    source: str,
                                    target: str,
                                    copy_relations: bool = True,
                                    overwrite: bool = False) -> CopyResult:
        return self.transfer.copy_entities_between_zones(names, source, target, copy_relations, overwrite)

    def move_entities_between_zones(self,
                                    names: List[str],
                                    source: str,
                                    target: str,
                                    move_relations: bool = True,
                                    overwrite: bool = False) -> MoveResult:
        return self.transfer.move_entities_between_zones(names, source, target, move_relations, overwrite)

    def merge_zones(self,
                    sources: List[str],
                    target: str,
                    delete_source_zones: bool = False,
                    overwrite_conflicts: str = 'skip') -> MergeResult:
        return self.transfer.merge_zones(sources, target, delete_source_zones, overwrite_conflicts)

    # Import / export

    def export_zone(self, zone: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.import_export.export_zone(zone)

    def import_records(self, records: List[Dict[str, Any]], zone: Optional[str] = None) -> ImportResult:
        return self.import_export.import_records(records, zone)

    def export_all(self, zones: Optional[List[str]] = None) -> ExportBundle:
        return self.import_export.export_all(zones)

    def import_all(self, bundle: ExportBundle) -> ImportResult:
        return self.import_export.import_all(bundle)

    def health_check(self) -> bool:
        return self.opensearch.health_check()
