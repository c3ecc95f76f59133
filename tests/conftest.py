"""
Shared pytest fixtures for kgmemory tests.

Provides fixtures for:
- An in-memory stand-in for the opensearch-py client
- Test configuration
- A scripted LLM driving the relevance assistant
- Wired knowledge graph services, with and without the assistant
"""

import copy
import fnmatch
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import pytest
from opensearchpy.exceptions import NotFoundError

from kgmemory.services.knowledge_graph import KnowledgeGraphService
from kgmemory.services.relevance_assistant import RelevanceAssistant
from kgmemory.utils.bedrock_llm import BedrockLLMError
from kgmemory.utils.config import AppConfig, BedrockLLMConfig, MCPConfig, OpenSearchConfig, SearchConfig
from kgmemory.utils.opensearch_client import OpenSearchClient

_TOKEN = re.compile(r'\w+')


def _tokens(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [token for item in value for token in _tokens(item)]
    return [token.lower() for token in _TOKEN.findall(str(value))]


def _within_one_edit(a: str, b: str) -> bool:
    if a == b:
        return True
    if abs(len(a) - len(b)) > 1:
        return False
    if len(a) == len(b):
        return sum(1 for x, y in zip(a, b) if x != y) == 1
    shorter, longer = (a, b) if len(a) < len(b) else (b, a)
    for i in range(len(longer)):
        if longer[:i] + longer[i + 1:] == shorter:
            return True
    return False


def _token_matches(query_token: str, doc_tokens: List[str], fuzzy: bool) -> bool:
    if any(char in query_token for char in '*?'):
        return any(fnmatch.fnmatchcase(token, query_token) for token in doc_tokens)
    if fuzzy and len(query_token) >= 3:
        return any(_within_one_edit(query_token, token) for token in doc_tokens)
    return query_token in doc_tokens


def _field_name(field: str) -> str:
    return field.split('^', 1)[0]


def _keyword_values(doc: Dict[str, Any], field: str) -> List[Any]:
    base, _, subfield = field.partition('.')
    value = doc.get(base)
    values = value if isinstance(value, list) else [value]
    if subfield == 'lower':
        return [item.lower() if isinstance(item, str) else item for item in values]
    return values


class _FakeIndices:

    def __init__(self, store: 'FakeOpenSearch'):
        self._store = store

    def exists(self, index: str) -> bool:
        return index in self._store.store

    def create(self, index: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._store.maybe_fail('indices.create')
        self._store.store.setdefault(index, {})
        self._store.index_bodies[index] = body
        return {'acknowledged': True, 'index': index}

    def delete(self, index: str) -> Dict[str, Any]:
        self._store.maybe_fail('indices.delete')
        if index not in self._store.store:
            raise NotFoundError(404, 'index_not_found_exception', {'index': index})
        del self._store.store[index]
        return {'acknowledged': True}

    def get(self, index: str) -> Dict[str, Any]:
        return {name: {} for name in self._store.store if fnmatch.fnmatchcase(name, index)}


class _FakeCluster:

    def __init__(self, status: str = 'green'):
        self.status = status

    def health(self) -> Dict[str, Any]:
        return {'status': self.status}


class FakeOpenSearch:
    """In-memory subset of the opensearch-py client used by kgmemory.

    Supports the query DSL subset the services render: match_all, term, terms,
    match, multi_match, a simplified query_string and bool, plus sort, from/size,
    _source excludes and terms aggregations. `failures` maps a method name to an
    exception raised on its next call.
    """

    def __init__(self):
        self.store: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.index_bodies: Dict[str, Any] = {}
        self.failures: Dict[str, Exception] = {}
        self.search_bodies: List[Tuple[str, Dict[str, Any]]] = []
        self.cluster = _FakeCluster()
        self.indices = _FakeIndices(self)

    def maybe_fail(self, method: str) -> None:
        error = self.failures.pop(method, None)
        if error is not None:
            raise error

    def _index(self, index: str) -> Dict[str, Dict[str, Any]]:
        if index not in self.store:
            raise NotFoundError(404, 'index_not_found_exception', {'index': index})
        return self.store[index]

    # Documents

    def index(self, index: str, id: str, body: Dict[str, Any], refresh: bool = False) -> Dict[str, Any]:
        self.maybe_fail('index')
        docs = self.store.setdefault(index, {})
        result = 'updated' if id in docs else 'created'
        docs[id] = copy.deepcopy(body)
        return {'_index': index, '_id': id, 'result': result}

    def get(self, index: str, id: str) -> Dict[str, Any]:
        self.maybe_fail('get')
        docs = self._index(index)
        if id not in docs:
            raise NotFoundError(404, 'not_found', {'_id': id})
        return {'_index': index, '_id': id, 'found': True, '_source': copy.deepcopy(docs[id])}

    def update(self, index: str, id: str, body: Dict[str, Any], refresh: bool = False) -> Dict[str, Any]:
        self.maybe_fail('update')
        docs = self._index(index)
        if id not in docs:
            raise NotFoundError(404, 'document_missing_exception', {'_id': id})
        docs[id].update(copy.deepcopy(body['doc']))
        return {'_index': index, '_id': id, 'result': 'updated'}

    def delete(self, index: str, id: str, refresh: bool = False) -> Dict[str, Any]:
        self.maybe_fail('delete')
        docs = self._index(index)
        if id not in docs:
            raise NotFoundError(404, 'not_found', {'_id': id})
        del docs[id]
        return {'_index': index, '_id': id, 'result': 'deleted'}

    def bulk(self, body: List[Dict[str, Any]], refresh: bool = False) -> Dict[str, Any]:
        self.maybe_fail('bulk')
        items = []
        for action, source in zip(body[0::2], body[1::2]):
            meta = action['index']
            self.store.setdefault(meta['_index'], {})[meta['_id']] = copy.deepcopy(source)
            items.append({'index': {'_index': meta['_index'], '_id': meta['_id'], 'status': 201}})
        return {'errors': False, 'items': items}

    # Queries

    def _matched(self, index: str, query: Dict[str, Any]) -> List[Tuple[str, float, Dict[str, Any]]]:
        matched = []
        for name in index.split(','):
            for doc_id, doc in self._index(name).items():
                ok, score = self._evaluate(doc, query)
                if ok:
                    matched.append((doc_id, score, doc))
        return matched

    def search(self, index: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.maybe_fail('search')
        self.search_bodies.append((index, copy.deepcopy(body)))
        matched = self._matched(index, body.get('query', {'match_all': {}}))

        for sort in reversed(body.get('sort', [])):
            field, options = next(iter(sort.items()))
            reverse = options.get('order', 'asc') == 'desc'
            if field == '_score':
                matched.sort(key=lambda item: item[1], reverse=reverse)
            else:
                present = [item for item in matched if item[2].get(field) is not None]
                absent = [item for item in matched if item[2].get(field) is None]
                present.sort(key=lambda item: item[2][field], reverse=reverse)
                matched = present + absent

        start = body.get('from', 0)
        page = matched[start:start + body.get('size', 10)]
        excludes = body.get('_source', {}).get('excludes', [])

        hits = []
        for doc_id, score, doc in page:
            source = {key: copy.deepcopy(value) for key, value in doc.items() if key not in excludes}
            hits.append({'_index': index, '_id': doc_id, '_score': score, '_source': source})

        response: Dict[str, Any] = {'hits': {'total': {'value': len(matched), 'relation': 'eq'}, 'hits': hits}}

        if body.get('aggs'):
            aggregations = {}
            for agg_name, agg in body['aggs'].items():
                field = agg['terms']['field']
                counts: Dict[Any, int] = {}
                for _, _, doc in matched:
                    value = doc.get(field)
                    if value is not None:
                        counts[value] = counts.get(value, 0) + 1
                buckets = sorted(counts.items(), key=lambda item: (-item[1], str(item[0])))
                aggregations[agg_name] = {'buckets': [{'key': key, 'doc_count': count} for key, count in buckets]}
            response['aggregations'] = aggregations

        return response

    def count(self, index: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.maybe_fail('count')
        return {'count': len(self._matched(index, body['query']))}

    def delete_by_query(self, index: str, body: Dict[str, Any], refresh: bool = False) -> Dict[str, Any]:
        self.maybe_fail('delete_by_query')
        matched = self._matched(index, body['query'])
        docs = self._index(index)
        for doc_id, _, _ in matched:
            docs.pop(doc_id, None)
        return {'deleted': len(matched)}

    def _evaluate(self, doc: Dict[str, Any], query: Dict[str, Any]) -> Tuple[bool, float]:
        kind, params = next(iter(query.items()))

        if kind == 'match_all':
            return True, 1.0

        if kind == 'term':
            field, value = next(iter(params.items()))
            boost = 1.0
            if isinstance(value, dict):
                boost = value.get('boost', 1.0)
                value = value['value']
            return value in _keyword_values(doc, field), boost

        if kind == 'terms':
            field, values = next(iter(params.items()))
            return any(value in values for value in _keyword_values(doc, field)), 1.0

        if kind == 'match':
            field, options = next(iter(params.items()))
            if not isinstance(options, dict):
                options = {'query': options}
            query_tokens = _tokens(options['query'])
            doc_tokens = _tokens(doc.get(field))
            fuzzy = bool(options.get('fuzziness'))
            hits = [token for token in query_tokens if _token_matches(token, doc_tokens, fuzzy)]
            if options.get('operator', 'or').lower() == 'and':
                ok = bool(query_tokens) and len(hits) == len(query_tokens)
            else:
                ok = bool(hits)
            return ok, float(len(hits))

        if kind == 'multi_match':
            query_tokens = _tokens(params['query'])
            fuzzy = bool(params.get('fuzziness'))
            score = 0.0
            for field in params['fields']:
                doc_tokens = _tokens(doc.get(_field_name(field)))
                score += sum(1 for token in query_tokens if _token_matches(token, doc_tokens, fuzzy))
            return score > 0, score

        if kind == 'query_string':
            return self._query_string(doc, params)

        if kind == 'bool':
            score = 0.0
            for clause in params.get('must', []):
                ok, clause_score = self._evaluate(doc, clause)
                if not ok:
                    return False, 0.0
                score += clause_score
            for clause in params.get('filter', []):
                if not self._evaluate(doc, clause)[0]:
                    return False, 0.0
            for clause in params.get('must_not', []):
                if self._evaluate(doc, clause)[0]:
                    return False, 0.0
            should = params.get('should', [])
            if should:
                results = [self._evaluate(doc, clause) for clause in should]
                matched = sum(1 for ok, _ in results if ok)
                required = params.get('minimum_should_match')
                if required is None:
                    required = 0 if params.get('must') or params.get('filter') else 1
                if matched < required:
                    return False, 0.0
                score += sum(clause_score for ok, clause_score in results if ok)
            return True, score

        raise ValueError(f'Unsupported query type in fake: {kind}')

    def _query_string(self, doc: Dict[str, Any], params: Dict[str, Any]) -> Tuple[bool, float]:
        doc_tokens = [token for field in params['fields'] for token in _tokens(doc.get(_field_name(field)))]
        doc_text = ' '.join(doc_tokens)

        positive: List[bool] = []
        negative: List[bool] = []
        require_all = False
        negate_next = False

        for part in re.findall(r'"[^"]+"|\S+', params['query']):
            if part in ('AND', 'OR'):
                require_all = require_all or part == 'AND'
                continue
            if part == 'NOT':
                negate_next = True
                continue

            if part.startswith('"'):
                ok = ' '.join(_tokens(part)) in doc_text
            else:
                fuzzy = '~' in part
                term = part.split('~', 1)[0].lower()
                ok = _token_matches(term, doc_tokens, fuzzy) if term else False

            (negative if negate_next else positive).append(ok)
            negate_next = False

        if any(negative):
            return False, 0.0
        if not positive:
            return True, 1.0
        ok = all(positive) if require_all else any(positive)
        return ok, float(sum(positive))


class StubLLM:
    """Scripted stand-in for BedrockLLM: replies are consumed in order."""

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.prompts: List[Dict[str, Any]] = []
        self.disabled = False
        self.model_id = 'stub-model'

    def is_disabled(self) -> bool:
        return self.disabled

    def generate_response(self, messages, system_prompt, max_tokens=None, temperature=None, stop_sequences=None):
        self.prompts.append({'messages': messages, 'system_prompt': system_prompt})
        if not self.replies:
            raise BedrockLLMError('No scripted reply left')
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return reply, None


@pytest.fixture
def app_config() -> AppConfig:
    """Configuration independent of the environment."""
    return AppConfig(environment='test',
                     log_level='DEBUG',
                     log_file='',
                     opensearch=OpenSearchConfig(endpoint='localhost',
                                                 port=9200,
                                                 use_ssl=False,
                                                 verify_certs=False,
                                                 auth_mode='none',
                                                 region='us-east-1',
                                                 service='es',
                                                 username='',
                                                 password='',
                                                 index_prefix='kg-test',
                                                 default_zone='default',
                                                 max_results=1000),
                     bedrock_llm=BedrockLLMConfig(enabled=False,
                                                  region='us-east-1',
                                                  model_ids=['model-primary', 'model-fallback'],
                                                  max_tokens=256,
                                                  temperature=0.0,
                                                  retry_attempts=2,
                                                  retry_delay=0.0,
                                                  cooldown_seconds=60.0),
                     search=SearchConfig(default_limit=10, overfetch_factor=3, usefulness_threshold=5, dampen_ratio=0.8),
                     mcp=MCPConfig(transport='stdio', host='127.0.0.1', port=8000))


@pytest.fixture
def fake_opensearch() -> FakeOpenSearch:
    return FakeOpenSearch()


@pytest.fixture
def opensearch_client(app_config: AppConfig, fake_opensearch: FakeOpenSearch) -> OpenSearchClient:
    return OpenSearchClient(app_config.opensearch, client=fake_opensearch)


@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def kg(app_config: AppConfig, opensearch_client: OpenSearchClient) -> KnowledgeGraphService:
    """Knowledge graph without a relevance assistant."""
    service = KnowledgeGraphService(app_config, opensearch_client, RelevanceAssistant(None))
    service.initialize()
    return service


@pytest.fixture
def kg_with_assistant(app_config: AppConfig, opensearch_client: OpenSearchClient,
                      stub_llm: StubLLM) -> KnowledgeGraphService:
    """Knowledge graph whose assistant replies with whatever stub_llm is scripted with."""
    service = KnowledgeGraphService(app_config, opensearch_client, RelevanceAssistant(stub_llm))
    service.initialize()
    return service


@pytest.fixture
def empty_kg(app_config: AppConfig) -> KnowledgeGraphService:
    """A second, independent knowledge graph on its own engine."""
    client = OpenSearchClient(app_config.opensearch, client=FakeOpenSearch())
    service = KnowledgeGraphService(app_config, client, RelevanceAssistant(None))
    service.initialize()
    return service
