"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    router_model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class DynamoDBConfig:
    """Configuration for the DynamoDB record table."""
    table_name: str
    region: str
    endpoint_url: Optional[str]
    connect_timeout: int
    read_timeout: int


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int
    service: str
    timeout: int


@dataclass
class GitHubConfig:
    """Configuration for the GitHub archive repository."""
    token: str
    owner: str
    repo: str
    branch: str
    api_url: str
    timeout: int


@dataclass
class RecallConfig:
    """Configuration for context retrieval."""
    relevance_top_k: int
    fusion_cap: int
    recent_days: int
    history_active_days: int
    history_scan_limit: int
    max_workers: int


@dataclass
class LibrarianConfig:
    """Configuration for the recommendation job."""
    google_books_api_key: str
    http_timeout: int
    recent_days: int
    candidates_per_query: int


@dataclass
class IngestionConfig:
    """Configuration for the ingestion pipeline."""
    default_user_id: str
    dashboard_conflict_retries: int


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
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    dynamodb: DynamoDBConfig
    opensearch: OpenSearchConfig
    github: GitHubConfig
    recall: RecallConfig
    librarian: LibrarianConfig
    ingestion: IngestionConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          router_model_id=os.getenv('BEDROCK_LLM_ROUTER_MODEL_ID',
                                                                    'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          connect_timeout=int(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
                                          read_timeout=int(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '120')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # DynamoDB configuration
    dynamodb_config = DynamoDBConfig(table_name=os.getenv('DYNAMODB_TABLE', 'unified_lake'),
                                     region=os.getenv('DYNAMODB_AWS_REGION', 'us-east-1'),
                                     endpoint_url=os.getenv('DYNAMODB_ENDPOINT_URL') or None,
                                     connect_timeout=int(os.getenv('DYNAMODB_CONNECT_TIMEOUT', '5')),
                                     read_timeout=int(os.getenv('DYNAMODB_READ_TIMEOUT', '10')))

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'brain_dump'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         timeout=int(os.getenv('OPENSEARCH_TIMEOUT', '10')))

    # Archive configuration
    github_config = GitHubConfig(token=os.getenv('GITHUB_TOKEN', ''),
                                 owner=os.getenv('GITHUB_OWNER', ''),
                                 repo=os.getenv('GITHUB_REPO', ''),
                                 branch=os.getenv('GITHUB_BRANCH', 'main'),
                                 api_url=os.getenv('GITHUB_API_URL', 'https://api.github.com'),
                                 timeout=int(os.getenv('GITHUB_TIMEOUT', '15')))

    # Recall configuration
    recall_config = RecallConfig(relevance_top_k=int(os.getenv('RECALL_TOP_K', '10')),
                                 fusion_cap=int(os.getenv('RECALL_FUSION_CAP', '15')),
                                 recent_days=int(os.getenv('RECALL_RECENT_DAYS', '7')),
                                 history_active_days=int(os.getenv('RECALL_HISTORY_ACTIVE_DAYS', '5')),
                                 history_scan_limit=int(os.getenv('RECALL_HISTORY_SCAN_LIMIT', '50')),
                                 max_workers=int(os.getenv('RECALL_MAX_WORKERS', '8')))

    # Librarian configuration
    librarian_config = LibrarianConfig(google_books_api_key=os.getenv('GOOGLE_BOOKS_API_KEY', ''),
                                       http_timeout=int(os.getenv('LIBRARIAN_HTTP_TIMEOUT', '15')),
                                       recent_days=int(os.getenv('LIBRARIAN_RECENT_DAYS', '7')),
                                       candidates_per_query=int(os.getenv('LIBRARIAN_CANDIDATES_PER_QUERY', '20')))

    # Ingestion configuration
    ingestion_config = IngestionConfig(default_user_id=os.getenv('DEFAULT_USER_ID', 'default-user'),
                                       dashboard_conflict_retries=int(os.getenv('DASHBOARD_CONFLICT_RETRIES', '1')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     dynamodb=dynamodb_config,
                     opensearch=opensearch_config,
                     github=github_config,
                     recall=recall_config,
                     librarian=librarian_config,
                     ingestion=ingestion_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
