"""
OpenSearch client wrapper for the namespaced entry vector index.

All knowledge domains share one physical index; each document carries a
`namespace` keyword and every query is filtered on it.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def _term_filters(namespace: str, filters: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    clauses = [{'term': {'namespace': namespace}}]
    for field, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            clauses.append({'terms': {field: list(value)}})
        else:
            clauses.append({'term': {field: value}})
    return clauses


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built OpenSearch client (skips AWS auth setup)
        """
        self.config = config
        self.index_name = config.index_name

        if client is not None:
            self.client = client
        else:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                endpoint = endpoint.split('://', 1)[1]

            self.client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                     http_auth=auth,
                                     use_ssl=True,
                                     verify_certs=True,
                                     timeout=config.timeout,
                                     connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def create_index_if_not_exists(self) -> str:
        """
        Create the shared vector index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            index_body = {
                'mappings': {
                    'properties': {
                        'id': {'type': 'keyword'},
                        'namespace': {'type': 'keyword'},
                        'user_id': {'type': 'keyword'},
                        'domain': {'type': 'keyword'},
                        'tag': {'type': 'keyword'},
                        'tags': {'type': 'keyword'},
                        'media_type': {'type': 'keyword'},
                        'is_original': {'type': 'boolean'},
                        'text': {'type': 'text'},
                        'source_title': {'type': 'text'},
                        'created_at': {'type': 'date'},
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'nmslib'
                            }
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True,
                        'knn.algo_param.ef_search': 100
                    }
                }
            }

            response = self.client.indices.create(index=self.index_name, body=index_body)
            logger.info(f'Created index {self.index_name}')
            if response.get('acknowledged', False):
                logger.info(f'Waiting 15s for index {self.index_name} sync-up...')
                time.sleep(15)
                return 'created'
            return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}') from e

    @staticmethod
    def document_id(namespace: str, doc_id: str) -> str:
        return f'{namespace}:{doc_id}'

    def upsert(self, namespace: str, doc_id: str, vector: List[float], metadata: Dict[str, Any]) -> bool:
        """
        Insert or replace one vector with its metadata.

        Args:
            namespace: Domain namespace
            doc_id: Entry id
            vector: Embedding
            metadata: Filterable projection fields

        Returns:
            True if the document was created or updated

        Raises:
            OpenSearchError: If indexing fails
        """
        document = {**metadata, 'id': doc_id, 'namespace': namespace, 'embedding': vector}

        try:
            response = self.client.index(index=self.index_name, id=self.document_id(namespace, doc_id), body=document)
        except OpenSearchException as e:
            logger.error(f'Error upserting {doc_id} into {namespace}: {e}')
            raise OpenSearchError(f'Failed to upsert document: {e}') from e

        success = response.get('result') in ['created', 'updated']
        if success:
            logger.debug(f'Upserted {doc_id} into namespace {namespace}')
        else:
            logger.warning(f'Unexpected result upserting document: {response}')
        return success

    def query(self,
              namespace: str,
              vector: List[float],
              top_k: int = 10,
              filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Nearest-neighbour search within one namespace.

        Args:
            namespace: Domain namespace
            vector: Query embedding
            top_k: Number of results to return
            filters: Exact-match metadata filters (field -> value or list of values)

        Returns:
            Ranked list of {'id', 'score', 'metadata'}
        """
        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            'embedding': {
                                'vector': vector,
                                'k': top_k
                            }
                        }
                    }],
                    'filter': _term_filters(namespace, filters)
                }
            },
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing vector search in {namespace}: {e}')
            raise OpenSearchError(f'Vector search failed: {e}') from e

        results = self._hits(response)
        logger.debug(f'Vector search returned {len(results)} results in namespace {namespace}')
        return results

    def query_recent(self,
                     namespace: str,
                     since: str,
                     filters: Optional[Dict[str, Any]] = None,
                     size: int = 100) -> List[Dict[str, Any]]:
        """
        All vectors in a namespace whose created_at is at or after `since`, newest first.

        Scores are irrelevant here and reported as 0.0.
        """
        search_body = {
            'size': size,
            'query': {
                'bool': {
                    'filter': _term_filters(namespace, filters) + [{'range': {'created_at': {'gte': since}}}]
                }
            },
            'sort': [{'created_at': {'order': 'desc'}}],
            '_source': {
                'excludes': ['embedding']
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing recency search in {namespace}: {e}')
            raise OpenSearchError(f'Recency search failed: {e}') from e

        results = self._hits(response, scored=False)
        logger.debug(f'Recency search returned {len(results)} results in namespace {namespace} since {since}')
        return results

    def delete_many(self, namespace: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """
        Delete every document in a namespace matching the filters.

        Returns:
            Number of deleted documents
        """
        body = {'query': {'bool': {'filter': _term_filters(namespace, filters)}}}
        try:
            response = self.client.delete_by_query(index=self.index_name, body=body)
        except NotFoundError:
            logger.warning(f'Index {self.index_name} not found for deletion')
            return 0
        except OpenSearchException as e:
            logger.error(f'Error deleting documents from {namespace}: {e}')
            raise OpenSearchError(f'Failed to delete documents: {e}') from e

        deleted = int(response.get('deleted', 0))
        logger.info(f'Deleted {deleted} documents from namespace {namespace}')
        return deleted

    @staticmethod
    def _hits(response: Dict[str, Any], scored: bool = True) -> List[Dict[str, Any]]:
        results = []
        for hit in response['hits']['hits']:
            source = dict(hit['_source'])
            doc_id = source.pop('id', None) or hit['_id'].split(':', 1)[-1]
            score = hit.get('_score') if scored else None
            results.append({'id': doc_id, 'score': float(score or 0.0), 'metadata': source})
        return results

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
