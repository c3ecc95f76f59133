"""
MCP Interface Layer exposing the knowledge graph as fastmcp tools.
"""
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from kgmemory.models.core import Entity, Relation
from kgmemory.services.errors import EntityNotFoundError, KnowledgeGraphError
from kgmemory.services.knowledge_graph import KnowledgeGraphService
from kgmemory.utils.bedrock_llm import BedrockLLMError
from kgmemory.utils.config import config
from kgmemory.utils.logging_config import get_logger
from kgmemory.utils.opensearch_client import OpenSearchError

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Knowledge Graph Memory')
kg_service = KnowledgeGraphService()

_SERVICE_ERRORS = (KnowledgeGraphError, OpenSearchError, BedrockLLMError)


def _tool_failure(action: str, error: Exception) -> Exception:
    if isinstance(error, KnowledgeGraphError):
        logger.warning(f'{action} rejected: {error}')
    else:
        logger.error(f'{action} failed: {error}')
    return Exception(f'{action} failed: {error}')


@mcp.tool()
def create_entities(entities: List[Dict[str, Any]], zone: Optional[str] = None) -> List[Dict[str, Any]]:
    """Create or update entities in a memory zone.

    Args:
        entities: Dicts with 'name', optional 'entityType', 'observations' and 'relevanceScore'
        zone: Memory zone, the default zone if omitted

    Returns:
        The saved entities
    """
    try:
        saved = []
        for item in entities:
            entity = Entity(name=item.get('name', ''),
                            entity_type=item.get('entityType') or 'unknown',
                            observations=list(item.get('observations') or []),
                            relevance_score=item.get('relevanceScore'))
            saved.append(asdict(kg_service.save_entity(entity, zone)))
        logger.debug(f'MCP saved {len(saved)} entities in zone {zone or config.opensearch.default_zone}')
        return saved
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Entity creation', e) from e


@mcp.tool()
def update_entities(entities: List[Dict[str, Any]], zone: Optional[str] = None) -> List[Dict[str, Any]]:
    """Update existing entities, keeping the fields that are not given.

    Args:
        entities: Dicts with 'name' and optional 'entityType', 'observations', 'relevanceScore'
            and 'isImportant' (true boosts, false dampens the relevance)
        zone: Memory zone, the default zone if omitted

    Returns:
        The updated entities
    """
    try:
        updated = []
        for item in entities:
            name = item.get('name', '')
            existing = kg_service.get_entity_without_updating_last_read(name, zone)
            if existing is None:
                raise EntityNotFoundError(name, kg_service.zones.resolve_zone(zone))

            observations = item.get('observations')
            score = item.get('relevanceScore')
            entity = Entity(name=name,
                            entity_type=item.get('entityType') or existing.entity_type,
                            observations=list(observations) if observations is not None else existing.observations,
                            relevance_score=score if score is not None else existing.relevance_score)
            saved = kg_service.save_entity(entity, zone)

            if item.get('isImportant') is not None:
                saved = kg_service.mark_important(name, bool(item['isImportant']), zone)
            updated.append(asdict(saved))
        return updated
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Entity update', e) from e


@mcp.tool()
def open_nodes(names: List[str], zone: Optional[str] = None) -> Dict[str, Any]:
    """Read entities by name, with the relations among them.

    Args:
        names: Entity names
        zone: Memory zone, the default zone if omitted
    """
    try:
        found = [entity for entity in (kg_service.get_entity(name, zone) for name in names) if entity is not None]
        relations = kg_service.get_relations_for_entities([entity.name for entity in found], zone)
        return {'entities': [asdict(entity) for entity in found], 'relations': [asdict(relation) for relation in relations]}
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Open nodes', e) from e


@mcp.tool()
def delete_entities(names: List[str], zone: Optional[str] = None, cascade_relations: bool = True) -> Dict[str, bool]:
    """Delete entities. Returns whether each one existed."""
    try:
        return {name: kg_service.delete_entity(name, zone, cascade_relations) for name in names}
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Entity deletion', e) from e


@mcp.tool()
def add_observations(name: str, observations: List[str], zone: Optional[str] = None) -> Dict[str, Any]:
    """Append observations to an existing entity."""
    try:
        return asdict(kg_service.add_observations(name, observations, zone))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Adding observations', e) from e


@mcp.tool()
def mark_important(name: str, important: bool = True, zone: Optional[str] = None,
                   auto_create: bool = False) -> Dict[str, Any]:
    """Boost (important) or dampen (not important) an entity's relevance."""
    try:
        return asdict(kg_service.mark_important(name, important, zone, auto_create))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Marking importance', e) from e


@mcp.tool()
def get_recent(limit: int = 10, include_observations: bool = False, zone: Optional[str] = None) -> List[Dict[str, Any]]:
    """Most recently read entities of a zone."""
    try:
        return [asdict(entity) for entity in kg_service.get_recent_entities(limit, include_observations, zone)]
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Recent entities', e) from e


@mcp.tool()
def create_relations(relations: List[Dict[str, Any]], auto_create_missing_entities: bool = True) -> List[Dict[str, Any]]:
    """Create relations between entities, possibly in different zones.

    Args:
        relations: Dicts with 'from', 'to', 'relationType' and optional 'fromZone', 'toZone'
        auto_create_missing_entities: Create placeholder entities for missing endpoints
    """
    try:
        saved = []
        for item in relations:
            relation = Relation(from_=item.get('from', ''), to=item.get('to', ''), relation_type=item.get('relationType', ''))
            saved.append(
                asdict(
                    kg_service.save_relation(relation,
                                             item.get('fromZone'),
                                             item.get('toZone'),
                                             auto_create_missing_entities=auto_create_missing_entities)))
        return saved
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Relation creation', e) from e


@mcp.tool()
def delete_relations(relations: List[Dict[str, Any]]) -> List[bool]:
    """Delete relations by from, to, relationType and optional zones."""
    try:
        return [
            kg_service.delete_relation(item.get('from', ''), item.get('to', ''), item.get('relationType', ''),
                                       item.get('fromZone'), item.get('toZone')) for item in relations
        ]
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Relation deletion', e) from e


@mcp.tool()
def get_related_entities(name: str, max_depth: int = 1, zone: Optional[str] = None) -> Dict[str, Any]:
    """Entities reachable from an entity within max_depth hops, across zones, with the relations walked."""
    try:
        return asdict(kg_service.get_related_entities(name, max_depth, zone))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Related entities', e) from e


@mcp.tool()
def search_nodes(query: str,
                 entity_types: Optional[List[str]] = None,
                 limit: int = 10,
                 sort_by: str = 'relevance',
                 include_observations: bool = False,
                 zone: Optional[str] = None,
                 information_needed: Optional[str] = None,
                 reason: Optional[str] = None) -> Dict[str, Any]:
    """Search a zone's entities.

    Args:
        query: Search string; supports AND/OR/NOT, fuzzy~, wildcards and quoted phrases
        entity_types: Only return these entity types
        limit: Maximum number of entities
        sort_by: 'relevance', 'recent' or 'importance'
        include_observations: Return observations with each entity
        zone: Memory zone, the default zone if omitted
        information_needed: What you want to learn; enables relevance filtering
        reason: Why you are searching
    """
    try:
        result = kg_service.user_search(query,
                                        entity_types=entity_types,
                                        limit=limit,
                                        sort_by=sort_by,
                                        include_observations=include_observations,
                                        zone=zone,
                                        information_needed=information_needed,
                                        reason=reason)
        return asdict(result)
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Search', e) from e


@mcp.tool()
def inspect_knowledge_graph(information_needed: str,
                            reason: Optional[str] = None,
                            keywords: Optional[List[str]] = None,
                            zone: Optional[str] = None,
                            entity_types: Optional[List[str]] = None) -> Dict[str, Any]:
    """Find what the graph knows about an information need and draft an answer."""
    try:
        return asdict(kg_service.inspect_knowledge_graph(information_needed, reason, keywords, zone, entity_types))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Inspection', e) from e


@mcp.tool()
def list_zones(reason: Optional[str] = None) -> List[Dict[str, Any]]:
    """List memory zones, most useful first when a reason is given."""
    try:
        return [asdict(zone) for zone in kg_service.list_memory_zones(reason)]
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Listing zones', e) from e


@mcp.tool()
def create_zone(name: str, description: Optional[str] = None, short_description: Optional[str] = None) -> bool:
    """Create a memory zone."""
    try:
        return kg_service.add_memory_zone(name, description, short_description=short_description)
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Zone creation', e) from e


@mcp.tool()
def get_zone_metadata(name: str) -> Optional[Dict[str, Any]]:
    """Metadata record of a zone, or None if it has none."""
    try:
        metadata = kg_service.get_zone_metadata(name)
        return asdict(metadata) if metadata else None
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Zone metadata', e) from e


@mcp.tool()
def update_zone_descriptions(name: str, description: str, short_description: Optional[str] = None) -> Dict[str, Any]:
    """Set a zone's descriptions, creating the zone if it does not exist."""
    try:
        return asdict(kg_service.update_zone_descriptions(name, description, short_description))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Zone description update', e) from e


@mcp.tool()
def delete_zone(name: str) -> Dict[str, Any]:
    """Delete a memory zone with its entities and every relation touching it."""
    try:
        return asdict(kg_service.delete_memory_zone(name))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Zone deletion', e) from e


@mcp.tool()
def get_zone_stats(zone: Optional[str] = None) -> Dict[str, Any]:
    """Entity and relation counts of a zone."""
    try:
        return asdict(kg_service.get_memory_zone_stats(zone))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Zone statistics', e) from e


@mcp.tool()
def copy_entities(names: List[str], source_zone: str, target_zone: str, copy_relations: bool = True,
                  overwrite: bool = False) -> Dict[str, Any]:
    """Copy entities from one zone to another."""
    try:
        return asdict(kg_service.copy_entities_between_zones(names, source_zone, target_zone, copy_relations, overwrite))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Copying entities', e) from e


@mcp.tool()
def move_entities(names: List[str], source_zone: str, target_zone: str, move_relations: bool = True,
                  overwrite: bool = False) -> Dict[str, Any]:
    """Move entities from one zone to another."""
    try:
        return asdict(kg_service.move_entities_between_zones(names, source_zone, target_zone, move_relations, overwrite))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Moving entities', e) from e


@mcp.tool()
def merge_zones(source_zones: List[str],
                target_zone: str,
                delete_source_zones: bool = False,
                overwrite_conflicts: str = 'skip') -> Dict[str, Any]:
    """Merge zones into a target zone; conflicts are skipped, overwritten or renamed."""
    try:
        return asdict(kg_service.merge_zones(source_zones, target_zone, delete_source_zones, overwrite_conflicts))
    except _SERVICE_ERRORS as e:
        raise _tool_failure('Merging zones', e) from e


if __name__ == '__main__':
    transport = config.mcp.transport
    if transport == 'stdio':
        mcp.run(transport=transport)
    else:
        mcp.run(transport=transport, host=config.mcp.host, port=config.mcp.port)
