"""
Tests for zone lifecycle, metadata and the zone-existence cache.
"""

import pytest
from opensearchpy.exceptions import TransportError

from kgmemory.models.core import Entity, Relation
from kgmemory.services.errors import ValidationError, ZoneNotFoundError
from kgmemory.services.knowledge_graph import KnowledgeGraphService
from kgmemory.services.relevance_assistant import RelevanceAssistant


class TestZoneLifecycle:

    def test_initialize_creates_collections_and_default_zone(self, kg, fake_opensearch):
        assert 'kg-test-metadata' in fake_opensearch.store
        assert 'kg-test-relations' in fake_opensearch.store
        assert 'kg-test@default' in fake_opensearch.store
        assert 'zone:default' in fake_opensearch.store['kg-test-metadata']

    def test_default_zone_always_exists(self, kg):
        assert kg.zone_exists('default')

    def test_add_memory_zone(self, kg, fake_opensearch):
        assert kg.add_memory_zone('team-a', 'Team A knowledge', {'owner': 'a'}, 'Team A') is True

        assert kg.zone_exists('team-a')
        assert 'kg-test@team-a' in fake_opensearch.store
        metadata = kg.get_zone_metadata('team-a')
        assert metadata.description == 'Team A knowledge'
        assert metadata.short_description == 'Team A'
        assert metadata.config == {'owner': 'a'}
        assert metadata.created_at

    @pytest.mark.parametrize('name', ['', '   ', 'default', 'Team A', 'UPPER', 'has/slash', '-leading'])
    def test_add_memory_zone_rejects_invalid_names(self, kg, name):
        with pytest.raises(ValidationError):
            kg.add_memory_zone(name)

    def test_unknown_zone_does_not_exist(self, kg):
        assert not kg.zone_exists('nowhere')

    def test_zone_detected_from_partition_only(self, kg, fake_opensearch):
        fake_opensearch.indices.create(index='kg-test@legacy')

        assert kg.zone_exists('legacy')
        assert 'legacy' in kg.zones.zone_cache

    def test_delete_default_zone_is_rejected(self, kg):
        with pytest.raises(ValidationError):
            kg.delete_memory_zone('default')

    def test_delete_memory_zone(self, kg, fake_opensearch):
        kg.add_memory_zone('team-a')
        kg.save_entity(Entity(name='Widget', entity_type='tool'), 'team-a')

        outcome = kg.delete_memory_zone('team-a')

        assert outcome.ok
        assert outcome.succeeded_steps == ['delete_partition', 'delete_metadata', 'purge_cache', 'delete_relations']
        assert 'kg-test@team-a' not in fake_opensearch.store
        assert kg.get_zone_metadata('team-a') is None
        assert not kg.zone_exists('team-a')

    def test_delete_memory_zone_removes_cross_zone_relations(self, kg):
        kg.add_memory_zone('z1')
        kg.add_memory_zone('z2')
        kg.save_entity(Entity(name='A'), 'z1')
        kg.save_entity(Entity(name='B'), 'z2')
        kg.save_relation(Relation(from_='A', to='B', relation_type='uses'), 'z1', 'z2')

        kg.delete_memory_zone('z1')

        assert kg.relations.get_relations_touching_zone('z2') == []

    def test_delete_memory_zone_continues_after_failed_step(self, kg, fake_opensearch):
        kg.add_memory_zone('team-a')
        fake_opensearch.failures['indices.delete'] = TransportError(500, 'boom', {})

        outcome = kg.delete_memory_zone('team-a')

        assert not outcome.ok
        assert [step.step for step in outcome.failed_steps] == ['delete_partition']
        assert outcome.succeeded_steps == ['delete_metadata', 'purge_cache', 'delete_relations']
        assert kg.get_zone_metadata('team-a') is None


class TestListZones:

    def test_lists_metadata_records(self, kg):
        kg.add_memory_zone('team-a')
        kg.add_memory_zone('team-b')

        names = {zone.name for zone in kg.list_memory_zones()}

        assert names == {'default', 'team-a', 'team-b'}

    def test_backfills_metadata_from_partitions(self, kg, fake_opensearch):
        fake_opensearch.store['kg-test-metadata'].clear()
        fake_opensearch.indices.create(index='kg-test@legacy')

        zones = kg.list_memory_zones()

        assert {zone.name for zone in zones} == {'default', 'legacy'}
        legacy = kg.get_zone_metadata('legacy')
        assert legacy.description == 'Zone detected from index: kg-test@legacy'

    @pytest.mark.parametrize('metadata_exists', [False, True])
    def test_fresh_service_lists_partitions_missing_metadata(self, app_config, opensearch_client, fake_opensearch,
                                                             metadata_exists):
        if metadata_exists:
            fake_opensearch.indices.create(index='kg-test-metadata')
        fake_opensearch.indices.create(index='kg-test@legacy')
        service = KnowledgeGraphService(app_config, opensearch_client, RelevanceAssistant(None))

        zones = service.list_memory_zones()

        assert {zone.name for zone in zones} == {'default', 'legacy'}
        assert service.get_zone_metadata('legacy').description == 'Zone detected from index: kg-test@legacy'
        assert 'legacy' in service.zones.zone_cache

    def test_partition_listed_alongside_other_metadata(self, kg, fake_opensearch):
        kg.add_memory_zone('team-a')
        fake_opensearch.indices.create(index='kg-test@legacy')

        names = {zone.name for zone in kg.list_memory_zones()}

        assert names == {'default', 'team-a', 'legacy'}
        assert 'zone:legacy' in fake_opensearch.store['kg-test-metadata']

    def test_list_repopulates_cache(self, kg):
        kg.add_memory_zone('team-a')
        kg.zones.zone_cache.replace([])

        kg.list_memory_zones()

        assert 'team-a' in kg.zones.zone_cache

    def test_reason_ranks_zones_with_assistant(self, kg_with_assistant, stub_llm):
        kg_with_assistant.add_memory_zone('recipes', 'Cooking')
        kg_with_assistant.add_memory_zone('infra', 'Servers')
        stub_llm.replies.append({'recipes': 0, 'infra': 2, 'default': 1})

        zones = kg_with_assistant.list_memory_zones(reason='fix the deployment')

        assert [zone.name for zone in zones] == ['infra', 'default', 'recipes']
        assert [zone.usefulness for zone in zones] == [2, 1, 0]

    def test_assistant_failure_leaves_zones_unranked(self, kg_with_assistant, stub_llm):
        kg_with_assistant.add_memory_zone('recipes')

        zones = kg_with_assistant.list_memory_zones(reason='anything')

        assert {zone.name for zone in zones} == {'default', 'recipes'}
        assert all(zone.usefulness is None for zone in zones)


class TestZoneDescriptionsAndStats:

    def test_update_descriptions_of_existing_zone(self, kg):
        kg.add_memory_zone('team-a', 'old', {'k': 'v'})

        metadata = kg.update_zone_descriptions('team-a', 'new', 'short')

        assert metadata.description == 'new'
        assert metadata.short_description == 'short'
        assert metadata.config == {'k': 'v'}

    def test_update_descriptions_creates_missing_zone(self, kg):
        metadata = kg.update_zone_descriptions('fresh', 'brand new')

        assert kg.zone_exists('fresh')
        assert metadata.description == 'brand new'

    def test_stats(self, kg):
        kg.add_memory_zone('team-a')
        kg.save_entity(Entity(name='Alice', entity_type='person'), 'team-a')
        kg.save_entity(Entity(name='Bob', entity_type='person'), 'team-a')
        kg.save_entity(Entity(name='Widget', entity_type='tool'), 'team-a')
        kg.save_relation(Relation(from_='Alice', to='Widget', relation_type='uses'), 'team-a', 'team-a')
        kg.save_relation(Relation(from_='Bob', to='Widget', relation_type='uses'), 'team-a', 'team-a')

        stats = kg.get_memory_zone_stats('team-a')

        assert stats.entity_count == 3
        assert stats.relation_count == 2
        assert stats.entity_types == {'person': 2, 'tool': 1}
        assert stats.relation_types == {'uses': 2}

    def test_stats_of_missing_zone(self, kg):
        with pytest.raises(ZoneNotFoundError):
            kg.get_memory_zone_stats('nowhere')
