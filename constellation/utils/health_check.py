"""
Health check utilities for the application.
"""

from typing import Any, Callable, Dict

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .dynamodb_client import DynamoDBClient
from .github_archive import GitHubArchive
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def check_health() -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status()
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy')]
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')

    return all_healthy


def _status(service: str, build: Callable[[], Any], **details: Any) -> Dict[str, Any]:
    try:
        healthy = build().health_check()
        return {'healthy': healthy, 'service': service, **details}
    except Exception as e:
        return {'healthy': False, 'service': service, 'error': str(e)}


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    return {
        'bedrock_llm':
            _status('Amazon Bedrock LLM', lambda: BedrockLLM(config.bedrock_llm), model=config.bedrock_llm.model_id),
        'bedrock_embed':
            _status('Amazon Bedrock Embed',
                   lambda: BedrockEmbed(config.bedrock_embed),
                   model=config.bedrock_embed.model_id),
        'dynamodb':
            _status('Amazon DynamoDB', lambda: DynamoDBClient(config.dynamodb), table=config.dynamodb.table_name),
        'opensearch':
            _status('Amazon OpenSearch', lambda: OpenSearchClient(config.opensearch), endpoint=config.opensearch.endpoint),
        'github_archive':
            _status('GitHub archive',
                   lambda: GitHubArchive(config.github),
                   repository=f'{config.github.owner}/{config.github.repo}'),
    }


def get_system_info() -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    return {
        'service_name': 'Constellation Engine',
        'version': '0.1.0',
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_router_model': config.bedrock_llm.router_model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'vector_index': config.opensearch.index_name,
            'record_table': config.dynamodb.table_name,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status()
    }
