"""
Tests for the saga step runner and the zone-existence cache.
"""

import threading

import pytest

from kgmemory.services.knowledge_graph import KnowledgeGraphService
from kgmemory.services.relevance_assistant import RelevanceAssistant
from kgmemory.utils.opensearch_client import OpenSearchError
from kgmemory.utils.saga import Saga
from kgmemory.utils.zone_cache import ZoneCache


def _fail():
    raise OpenSearchError('engine down')


class TestSaga:

    def test_records_succeeded_steps_and_returns_results(self):
        saga = Saga('op')

        assert saga.step('first', lambda x: x * 2, 21) == 42
        saga.step('second', dict, a=1)

        assert saga.outcome.ok
        assert saga.outcome.succeeded_steps == ['first', 'second']

    def test_strict_saga_reraises_and_stops(self):
        saga = Saga('op')
        saga.step('first', lambda: None)

        with pytest.raises(OpenSearchError):
            saga.step('second', _fail)

        assert saga.outcome.succeeded_steps == ['first']
        assert [(step.step, step.reason) for step in saga.outcome.failed_steps] == [('second', 'engine down')]

    def test_best_effort_saga_continues(self):
        saga = Saga('op', best_effort=True)

        assert saga.step('first', _fail) is None
        saga.step('second', lambda: None)

        assert not saga.outcome.ok
        assert saga.outcome.succeeded_steps == ['second']
        assert [step.step for step in saga.outcome.failed_steps] == ['first']

    def test_other_errors_are_not_caught(self):
        saga = Saga('op', best_effort=True)

        with pytest.raises(ValueError):
            saga.step('first', int, 'not a number')


class TestZoneCache:

    def test_add_discard_and_contains(self):
        cache = ZoneCache(['default'])
        cache.add('team-a')
        cache.discard('default')
        cache.discard('never-added')

        assert 'team-a' in cache
        assert 'default' not in cache
        assert len(cache) == 1

    def test_replace_and_snapshot(self):
        cache = ZoneCache(['old'])

        cache.replace(['b', 'a'])

        assert cache.snapshot() == ['a', 'b']
        assert 'old' not in cache

    def test_concurrent_adds(self):
        cache = ZoneCache()

        def add_range(start):
            for i in range(start, start + 200):
                cache.add(f'zone-{i}')

        threads = [threading.Thread(target=add_range, args=(n * 200, )) for n in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(cache) == 1000

    def test_shared_cache_sees_zones_of_other_service(self, app_config, opensearch_client):
        shared = ZoneCache()
        first = KnowledgeGraphService(app_config, opensearch_client, RelevanceAssistant(None), shared)
        first.initialize()
        first.add_memory_zone('team-a')

        assert 'team-a' in shared
        first.delete_memory_zone('team-a')
        assert 'team-a' not in shared
