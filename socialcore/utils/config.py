"""
Configuration management for collaborators, persistence and the monitor scheduler.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class DatabaseConfig:
    """Configuration for the relational store."""
    url: str
    echo: bool


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class SerpApiConfig:
    """Configuration for the SerpAPI search collaborator."""
    api_key: str
    base_url: str
    timeout_seconds: float
    num_results: int
    retry_attempts: int
    retry_delay: float


@dataclass
class EventBridgeConfig:
    """Configuration for broadcasting feed events over Amazon EventBridge."""
    enabled: bool
    region: str
    bus_name: str
    source: str


@dataclass
class SchedulerConfig:
    """Configuration for the monitor scheduler loop."""
    enabled: bool  # only the elected leader process sets this
    tick_interval_seconds: float
    batch_size: int
    max_items_per_post: int
    max_jitter_minutes: float
    default_cadence_minutes: int
    min_cadence_minutes: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    database: DatabaseConfig
    bedrock_llm: BedrockLLMConfig
    serpapi: SerpApiConfig
    eventbridge: EventBridgeConfig
    scheduler: SchedulerConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    database_config = DatabaseConfig(url=os.getenv('DATABASE_URL', 'sqlite:///socialcore.db'),
                                     echo=_env_bool('DATABASE_ECHO', 'false'))

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '300')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.7')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '2')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Search configuration
    serpapi_config = SerpApiConfig(api_key=os.getenv('SERPAPI_KEY', ''),
                                   base_url=os.getenv('SERPAPI_BASE_URL', 'https://serpapi.com/search.json'),
                                   timeout_seconds=float(os.getenv('SERPAPI_TIMEOUT_SECONDS', '20')),
                                   num_results=int(os.getenv('SERPAPI_NUM_RESULTS', '10')),
                                   retry_attempts=int(os.getenv('SERPAPI_RETRY_ATTEMPTS', '2')),
                                   retry_delay=float(os.getenv('SERPAPI_RETRY_DELAY', '1.0')))

    # Broadcast configuration
    eventbridge_config = EventBridgeConfig(enabled=_env_bool('EVENTBRIDGE_ENABLED', 'false'),
                                           region=os.getenv('EVENTBRIDGE_AWS_REGION', 'us-east-1'),
                                           bus_name=os.getenv('EVENTBRIDGE_BUS_NAME', 'default'),
                                           source=os.getenv('EVENTBRIDGE_SOURCE', 'socialcore.feed'))

    # Scheduler configuration
    scheduler_config = SchedulerConfig(enabled=_env_bool('MONITOR_SCHEDULER_ENABLED', 'false'),
                                       tick_interval_seconds=float(os.getenv('MONITOR_TICK_INTERVAL_SECONDS', '60')),
                                       batch_size=int(os.getenv('MONITOR_BATCH_SIZE', '5')),
                                       max_items_per_post=int(os.getenv('MONITOR_MAX_ITEMS_PER_POST', '5')),
                                       max_jitter_minutes=float(os.getenv('MONITOR_MAX_JITTER_MINUTES', '10')),
                                       default_cadence_minutes=int(os.getenv('MONITOR_DEFAULT_CADENCE_MINUTES', '60')),
                                       min_cadence_minutes=int(os.getenv('MONITOR_MIN_CADENCE_MINUTES', '5')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     database=database_config,
                     bedrock_llm=bedrock_llm_config,
                     serpapi=serpapi_config,
                     eventbridge=eventbridge_config,
                     scheduler=scheduler_config)


# Global configuration instance
config = load_config()
