"""
Tests for zone export, record import and the JSON-lines helpers.
"""

import pytest

from kgmemory.models.core import Entity, Relation
from kgmemory.services.errors import ValidationError, ZoneNotFoundError
from kgmemory.services.import_export import read_jsonl, write_jsonl


@pytest.fixture
def populated(kg):
    kg.add_memory_zone('team-a', 'Team A knowledge')
    kg.save_entity(Entity(name='Alice', entity_type='person', observations=['Engineer']), 'team-a')
    kg.save_entity(Entity(name='Widget', entity_type='tool'), 'team-a')
    kg.save_entity(Entity(name='Repo', entity_type='project'))
    kg.save_relation(Relation(from_='Alice', to='Widget', relation_type='uses'), 'team-a', 'team-a')
    kg.save_relation(Relation(from_='Alice', to='Repo', relation_type='owns'), 'team-a', 'default')
    return kg


class TestExport:

    def test_export_zone(self, populated):
        records = populated.export_zone('team-a')

        entities = [record for record in records if record['type'] == 'entity']
        relations = [record for record in records if record['type'] == 'relation']
        assert records[:len(entities)] == entities
        assert {record['name'] for record in entities} == {'Alice', 'Widget'}
        assert all(record['zone'] == 'team-a' for record in entities)
        assert {(r['from'], r['to'], r['toZone']) for r in relations} == {('Alice', 'Widget', 'team-a'),
                                                                         ('Alice', 'Repo', 'default')}

    def test_export_missing_zone(self, kg):
        with pytest.raises(ZoneNotFoundError):
            kg.export_zone('ghost')

    def test_export_all_deduplicates_cross_zone_relations(self, populated):
        bundle = populated.export_all()

        assert {zone.name for zone in bundle.zones} == {'default', 'team-a'}
        assert len(bundle.entities) == 3
        assert len(bundle.relations) == 2

    def test_export_selected_zones(self, populated):
        bundle = populated.export_all(zones=['default'])

        assert [record['name'] for record in bundle.entities] == ['Repo']
        assert [r['relationType'] for r in bundle.relations] == ['owns']


class TestImport:

    def test_import_records(self, kg):
        records = [
            {'type': 'entity', 'name': 'A', 'entityType': 'thing', 'observations': ['first']},
            {'type': 'entity', 'name': 'B', 'entityType': 'thing'},
            {'type': 'relation', 'from': 'A', 'to': 'B', 'relationType': 'links'},
        ]

        result = kg.import_records(records)

        assert result.entities_added == 2
        assert result.relations_added == 1
        assert result.invalid_relations == []
        imported = kg.get_entity_without_updating_last_read('A')
        assert imported.observations == ['first']
        assert imported.zone == 'default'
        assert imported.last_write is not None
        assert [(r.from_, r.to) for r in kg.get_relations_for_entities(['A'])] == [('A', 'B')]

    def test_records_go_to_given_zone(self, kg):
        kg.add_memory_zone('team-a')

        kg.import_records([{'type': 'entity', 'name': 'A'}], zone='team-a')

        assert kg.get_entity_without_updating_last_read('A', 'team-a') is not None
        assert kg.get_entity_without_updating_last_read('A') is None

    def test_relations_with_missing_endpoints_are_reported(self, kg):
        records = [
            {'type': 'entity', 'name': 'A'},
            {'type': 'relation', 'from': 'A', 'to': 'B', 'relationType': 'links'},
        ]

        result = kg.import_records(records)

        assert result.entities_added == 1
        assert result.relations_added == 0
        assert len(result.invalid_relations) == 1
        assert result.invalid_relations[0].reason == 'Missing entities: "B" in zone "default"'
        assert result.invalid_relations[0].relation['to'] == 'B'
        assert kg.get_entity_without_updating_last_read('B') is None

    @pytest.mark.parametrize('record', [{'name': 'A'}, {'type': 'node', 'name': 'A'}, {'type': 'entity'},
                                        {'type': 'entity', 'name': '  '}, 'not a record'])
    def test_structural_errors_fail_the_import(self, kg, record):
        with pytest.raises(ValidationError):
            kg.import_records([{'type': 'entity', 'name': 'Valid'}, record])

        assert kg.get_entity_without_updating_last_read('Valid') is None

    def test_entities_of_missing_zone_fail_the_import(self, kg):
        with pytest.raises(ZoneNotFoundError, match='ghost'):
            kg.import_records([{'type': 'entity', 'name': 'A', 'zone': 'ghost'}])

    def test_import_all_into_fresh_graph(self, populated, empty_kg):
        bundle = populated.export_all()

        result = empty_kg.import_all(bundle)

        assert result.entities_added == 3
        assert result.relations_added == 2
        assert empty_kg.zone_exists('team-a')
        assert empty_kg.get_zone_metadata('team-a').description == 'Team A knowledge'
        assert empty_kg.get_entity_without_updating_last_read('Alice', 'team-a').observations == ['Engineer']
        related = empty_kg.get_related_entities('Alice', zone='team-a')
        assert {(e.zone, e.name) for e in related.entities} == {('team-a', 'Alice'), ('team-a', 'Widget'),
                                                               ('default', 'Repo')}


class TestJsonLines:

    def test_write_then_read(self, populated, tmp_path):
        path = str(tmp_path / 'team-a.jsonl')
        records = populated.export_zone('team-a')

        assert write_jsonl(path, records) == len(records)
        assert read_jsonl(path) == records

    def test_unparseable_lines_are_skipped(self, tmp_path):
        path = tmp_path / 'broken.jsonl'
        path.write_text('{"type": "entity", "name": "A"}\n\nnot json\n{"type": "entity", "name": "B"}\n',
                        encoding='utf-8')

        records = read_jsonl(str(path))

        assert [record['name'] for record in records] == ['A', 'B']
