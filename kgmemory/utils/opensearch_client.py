"""
OpenSearch client wrapper for the knowledge graph partitions.
"""

import copy
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.query import QueryExpr, SearchRequest
from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

_ANALYSIS_SETTINGS = {
    'number_of_shards': 1,
    'number_of_replicas': 0,
    'analysis': {
        'analyzer': {
            'entity_analyzer': {
                'type': 'custom',
                'tokenizer': 'standard',
                'filter': ['lowercase', 'asciifolding']
            }
        },
        'normalizer': {
            'lowercase_normalizer': {
                'type': 'custom',
                'filter': ['lowercase']
            }
        }
    }
}

# Zone partitions hold entity documents
ENTITY_INDEX_BODY = {
    'settings': _ANALYSIS_SETTINGS,
    'mappings': {
        'properties': {
            'type': {
                'type': 'keyword'
            },
            'name': {
                'type': 'text',
                'analyzer': 'entity_analyzer',
                'fields': {
                    'keyword': {
                        'type': 'keyword'
                    },
                    'lower': {
                        'type': 'keyword',
                        'normalizer': 'lowercase_normalizer'
                    }
                }
            },
            'entityType': {
                'type': 'keyword'
            },
            'observations': {
                'type': 'text',
                'analyzer': 'entity_analyzer'
            },
            'zone': {
                'type': 'keyword'
            },
            'lastRead': {
                'type': 'date'
            },
            'lastWrite': {
                'type': 'date'
            },
            'readCount': {
                'type': 'integer'
            },
            'relevanceScore': {
                'type': 'float'
            }
        }
    }
}

RELATION_INDEX_BODY = {
    'settings': _ANALYSIS_SETTINGS,
    'mappings': {
        'properties': {
            'type': {
                'type': 'keyword'
            },
            'from': {
                'type': 'keyword'
            },
            'fromZone': {
                'type': 'keyword'
            },
            'to': {
                'type': 'keyword'
            },
            'toZone': {
                'type': 'keyword'
            },
            'relationType': {
                'type': 'keyword'
            }
        }
    }
}

METADATA_INDEX_BODY = {
    'mappings': {
        'properties': {
            'name': {
                'type': 'keyword'
            },
            'description': {
                'type': 'text'
            },
            'shortDescription': {
                'type': 'text'
            },
            'createdAt': {
                'type': 'date'
            },
            'lastModified': {
                'type': 'date'
            },
            'config': {
                'type': 'object',
                'enabled': False
            }
        }
    }
}

_EMPTY_RESPONSE = {'hits': {'total': {'value': 0, 'relation': 'eq'}, 'hits': []}}


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch client with optional AWS or basic authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[Any] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built low-level client; one is created from config if None
        """
        self.config = config

        if client is not None:
            self.client = client
            return

        # Parse endpoint to get host
        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=self._build_auth(config),
                                 use_ssl=config.use_ssl,
                                 verify_certs=config.verify_certs,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint} (auth: {config.auth_mode})')

    @staticmethod
    def _build_auth(config: OpenSearchConfig):
        if config.auth_mode == 'aws':
            # Get AWS credentials and create auth
            credentials = boto3.Session().get_credentials()
            return AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
        if config.auth_mode == 'basic' and config.username:
            return (config.username, config.password)
        return None

    def index_exists(self, index_name: str) -> bool:
        try:
            return bool(self.client.indices.exists(index=index_name))
        except OpenSearchException as e:
            logger.error(f'Error checking index {index_name}: {e}')
            raise OpenSearchError(f'Failed to check index: {e}')

    def create_index_if_not_exists(self, index_name: str, index_body: Dict[str, Any]) -> str:
        """
        Create index if it doesn't exist.

        Args:
            index_name: Name of the index
            index_body: Settings and mappings of the index

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=copy.deepcopy(index_body))
            if response.get('acknowledged', False):
                logger.info(f'Created index {index_name}')
                return 'created'
            logger.warning(f'Index creation for {index_name} was not acknowledged: {response}')
            return 'failed'
        except OpenSearchException as e:
            # Another caller may have created it between the check and the create
            if 'resource_already_exists_exception' in str(e):
                return 'exists'
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def delete_index(self, index_name: str) -> bool:
        """Delete an index. Returns False if it did not exist."""
        try:
            if not self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} does not exist')
                return False
            self.client.indices.delete(index=index_name)
            logger.info(f'Deleted index {index_name}')
            return True
        except NotFoundError:
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting index {index_name}: {e}')
            raise OpenSearchError(f'Failed to delete index: {e}')

    def list_indices(self, pattern: str) -> List[str]:
        """Names of the indices matching a wildcard pattern."""
        try:
            response = self.client.indices.get(index=pattern)
            return sorted(response.keys())
        except NotFoundError:
            return []
        except OpenSearchException as e:
            logger.error(f'Error listing indices {pattern}: {e}')
            raise OpenSearchError(f'Failed to list indices: {e}')

    def index_document(self, index_name: str, doc_id: str, document: Dict[str, Any]) -> bool:
        """
        Index (create or replace) a document and make it visible to search immediately.

        Returns:
            True if indexing was successful, False otherwise
        """
        try:
            response = self.client.index(index=index_name, id=doc_id, body=document, refresh=True)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Indexed document {doc_id} in {index_name}')
            else:
                logger.warning(f'Unexpected result indexing document: {response}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error indexing document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error indexing document: {e}')

    def get_document(self, index_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a document source by id, None if the document or index is missing."""
        try:
            response = self.client.get(index=index_name, id=doc_id)
            return response.get('_source')
        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id} from {index_name}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')

    def update_document(self, index_name: str, doc_id: str, partial: Dict[str, Any]) -> bool:
        """Apply a partial update to a document. Returns False if it does not exist."""
        try:
            self.client.update(index=index_name, id=doc_id, body={'doc': partial}, refresh=True)
            return True
        except NotFoundError:
            logger.warning(f'Document {doc_id} not found for update')
            return False
        except OpenSearchException as e:
            logger.error(f'Error updating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to update document: {e}')

    def delete_document(self, index_name: str, doc_id: str) -> bool:
        """
        Delete a document from the index.

        Returns:
            True if deletion was successful, False if it was not found
        """
        try:
            response = self.client.delete(index=index_name, id=doc_id, refresh=True)

            success = response.get('result') == 'deleted'
            if success:
                logger.debug(f'Deleted document {doc_id} from {index_name}')
            else:
                logger.warning(f'Document {doc_id} not found for deletion')

            return success

        except NotFoundError:
            logger.debug(f'Document {doc_id} not found for deletion')
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to delete document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error deleting document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error deleting document: {e}')

    def search(self, index_name: str, request: SearchRequest, ignore_missing: bool = True) -> Dict[str, Any]:
        """
        Run a search and return the raw engine response.

        Args:
            index_name: Index (or comma-separated indices) to search
            request: Search request, rendered to the engine DSL here
            ignore_missing: Return an empty response instead of failing on a missing index
        """
        body = request.to_dict()
        try:
            return self.client.search(index=index_name, body=body)
        except NotFoundError:
            if ignore_missing:
                logger.debug(f'Index {index_name} missing, returning no hits')
                return copy.deepcopy(_EMPTY_RESPONSE)
            raise OpenSearchError(f'Index {index_name} does not exist')
        except OpenSearchException as e:
            logger.error(f'Error searching {index_name}: {e}')
            raise OpenSearchError(f'Search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error searching {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error in search: {e}')

    def delete_by_query(self, index_name: str, query: QueryExpr) -> int:
        """Delete every document matching a query. Returns the number deleted."""
        try:
            response = self.client.delete_by_query(index=index_name, body={'query': query.to_dict()}, refresh=True)
            deleted = int(response.get('deleted', 0))
            logger.debug(f'Deleted {deleted} documents from {index_name}')
            return deleted
        except NotFoundError:
            return 0
        except OpenSearchException as e:
            logger.error(f'Error deleting by query in {index_name}: {e}')
            raise OpenSearchError(f'Delete by query failed: {e}')

    def count(self, index_name: str, query: QueryExpr) -> int:
        try:
            response = self.client.count(index=index_name, body={'query': query.to_dict()})
            return int(response.get('count', 0))
        except NotFoundError:
            return 0
        except OpenSearchException as e:
            logger.error(f'Error counting documents in {index_name}: {e}')
            raise OpenSearchError(f'Count failed: {e}')

    def bulk_index(self, index_name: str, documents: List[Dict[str, Any]]) -> int:
        """
        Index many documents in one request.

        Args:
            index_name: Target index
            documents: Dicts with '_id' and '_source' keys

        Returns:
            Number of documents indexed without error
        """
        if not documents:
            return 0
        operations: List[Dict[str, Any]] = []
        for doc in documents:
            operations.append({'index': {'_index': index_name, '_id': doc['_id']}})
            operations.append(doc['_source'])
        try:
            response = self.client.bulk(body=operations, refresh=True)
        except OpenSearchException as e:
            logger.error(f'Error in bulk indexing into {index_name}: {e}')
            raise OpenSearchError(f'Bulk indexing failed: {e}')

        items = response.get('items', [])
        failed = [item for item in items if item.get('index', {}).get('error')]
        for item in failed:
            logger.warning(f"Bulk item {item['index'].get('_id')} failed: {item['index']['error']}")
        return len(items) - len(failed)

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.cluster.health()
            return response.get('status') in ['green', 'yellow']

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
