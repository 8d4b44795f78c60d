"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .bedrock_llm import BedrockLLM
from .config import AppConfig, config
from .database import Database
from .logging_config import get_logger
from .serpapi_client import SerpApiClient

logger = get_logger(__name__)


def check_health(app_config: Optional[AppConfig] = None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(app_config)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(app_config: Optional[AppConfig] = None,
                      database: Optional[Database] = None,
                      llm: Optional[BedrockLLM] = None,
                      search: Optional[SerpApiClient] = None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    app_config = app_config or config
    health_status = {}

    # Check database
    try:
        database = database or Database(app_config.database)
        health_status['database'] = {
            'healthy': database.health_check(),
            'service': 'Relational store',
            'dialect': database.engine.dialect.name
        }
    except Exception as e:
        health_status['database'] = {'healthy': False, 'service': 'Relational store', 'error': str(e)}

    # Check Bedrock LLM
    try:
        llm = llm or BedrockLLM(app_config.bedrock_llm)
        health_status['bedrock_llm'] = {
            'healthy': llm.health_check(),
            'service': 'Amazon Bedrock LLM',
            'model': app_config.bedrock_llm.model_id
        }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check SerpAPI
    try:
        search = search or SerpApiClient(app_config.serpapi)
        health_status['serpapi'] = {
            'healthy': search.health_check(),
            'service': 'SerpAPI',
            'endpoint': app_config.serpapi.base_url
        }
    except Exception as e:
        health_status['serpapi'] = {'healthy': False, 'service': 'SerpAPI', 'error': str(e)}

    return health_status


def get_system_info(app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    app_config = app_config or config
    return {
        'service_name': 'socialcore',
        'version': '0.1.0',
        'configuration': {
            'environment': app_config.environment,
            'bedrock_llm_model': app_config.bedrock_llm.model_id,
            'scheduler_enabled': app_config.scheduler.enabled,
            'tick_interval_seconds': app_config.scheduler.tick_interval_seconds,
            'aws_region': app_config.bedrock_llm.region
        },
        'health_status': get_health_status(app_config)
    }
