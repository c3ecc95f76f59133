"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def check_health(opensearch: Optional[OpenSearchClient] = None, llm: Optional[BedrockLLM] = None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(opensearch, llm)

        # A disabled assistant does not count against overall health
        all_healthy = all(
            status.get('healthy', False) for status in health_status.values() if not status.get('disabled'))

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(opensearch: Optional[OpenSearchClient] = None, llm: Optional[BedrockLLM] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Args:
        opensearch: Engine client to check, built from the configuration if None
        llm: Bedrock LLM client to check, built from the configuration if None and enabled

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check OpenSearch
    try:
        opensearch = opensearch or OpenSearchClient(config.opensearch)
        health_status['opensearch'] = {
            'healthy': opensearch.health_check(),
            'service': 'OpenSearch',
            'endpoint': opensearch.config.endpoint
        }
    except Exception as e:
        health_status['opensearch'] = {'healthy': False, 'service': 'OpenSearch', 'error': str(e)}

    # Check Bedrock LLM
    if llm is None and not config.bedrock_llm.enabled:
        health_status['bedrock_llm'] = {'healthy': False, 'disabled': True, 'service': 'Amazon Bedrock LLM'}
        return health_status

    try:
        llm = llm or BedrockLLM(config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': llm.model_id
        }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    return health_status
