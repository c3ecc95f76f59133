"""
Configuration management for the search engine, the relevance assistant and application settings.
"""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class OpenSearchConfig:
    """Configuration for the OpenSearch (or Elasticsearch-compatible) backing engine."""
    endpoint: str
    port: int
    use_ssl: bool
    verify_certs: bool
    auth_mode: str  # aws, basic or none
    region: str
    service: str  # es for managed domains, aoss for serverless collections
    username: str
    password: str
    index_prefix: str
    default_zone: str
    max_results: int

    @property
    def relations_index(self) -> str:
        return f'{self.index_prefix}-relations'

    @property
    def metadata_index(self) -> str:
        return f'{self.index_prefix}-metadata'

    def zone_index(self, zone: str) -> str:
        """Name of the data partition holding the entities of a zone."""
        return f'{self.index_prefix}@{zone}'


@dataclass
class BedrockLLMConfig:
    """Configuration for the Amazon Bedrock LLM behind the relevance assistant."""
    enabled: bool
    region: str
    model_ids: List[str]
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    cooldown_seconds: float


@dataclass
class SearchConfig:
    """Configuration for search ranking and the assistant-driven second pass."""
    default_limit: int
    overfetch_factor: int
    usefulness_threshold: float
    dampen_ratio: float


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    log_file: str
    opensearch: OpenSearchConfig
    bedrock_llm: BedrockLLMConfig
    search: SearchConfig
    mcp: MCPConfig = field(default_factory=lambda: MCPConfig(transport='stdio', host='127.0.0.1', port=8000))


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Backing engine configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '9200')),
                                         use_ssl=_as_bool(os.getenv('OPENSEARCH_USE_SSL', 'false')),
                                         verify_certs=_as_bool(os.getenv('OPENSEARCH_VERIFY_CERTS', 'true')),
                                         auth_mode=os.getenv('OPENSEARCH_AUTH_MODE', 'none').lower(),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_AWS_SERVICE', 'es'),
                                         username=os.getenv('OPENSEARCH_USERNAME', ''),
                                         password=os.getenv('OPENSEARCH_PASSWORD', ''),
                                         index_prefix=os.getenv('KG_INDEX_PREFIX', 'knowledge-graph'),
                                         default_zone=os.getenv('KG_DEFAULT_ZONE', 'default'),
                                         max_results=int(os.getenv('KG_MAX_RESULTS', '10000')))

    # Relevance assistant configuration
    model_ids = os.getenv('BEDROCK_LLM_MODEL_IDS',
                          'anthropic.claude-3-5-haiku-20241022-v1:0,anthropic.claude-3-haiku-20240307-v1:0')
    bedrock_llm_config = BedrockLLMConfig(enabled=_as_bool(os.getenv('BEDROCK_LLM_ENABLED', 'false')),
                                          region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_ids=[m.strip() for m in model_ids.split(',') if m.strip()],
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '2048')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          cooldown_seconds=float(os.getenv('BEDROCK_LLM_COOLDOWN_SECONDS', '300')))

    # Search configuration
    search_config = SearchConfig(default_limit=int(os.getenv('SEARCH_DEFAULT_LIMIT', '10')),
                                 overfetch_factor=int(os.getenv('SEARCH_OVERFETCH_FACTOR', '3')),
                                 usefulness_threshold=float(os.getenv('SEARCH_USEFULNESS_THRESHOLD', '5')),
                                 dampen_ratio=float(os.getenv('SEARCH_DAMPEN_RATIO', '0.8')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'stdio'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     log_file=os.getenv('LOG_FILE', ''),
                     opensearch=opensearch_config,
                     bedrock_llm=bedrock_llm_config,
                     search=search_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
