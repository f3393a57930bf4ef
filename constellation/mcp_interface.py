"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from .services.dashboard_store import DashboardWriteError
from .services.dashboard_synthesizer import SynthesisError
from .services.domains import UnknownDomainError
from .services.dreamer import Dreamer, DreamerError
from .services.ingestion_orchestrator import IngestionError, IngestionOrchestrator
from .services.intent_router import ClassificationError
from .services.librarian import Librarian, LibrarianError
from .utils.config import config
from .utils.dynamodb_client import DynamoDBError
from .utils.health_check import get_system_info
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Constellation Engine')

_orchestrator: Optional[IngestionOrchestrator] = None


def get_orchestrator() -> IngestionOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = IngestionOrchestrator()
    return _orchestrator


def _user(user_id: Optional[str]) -> str:
    if user_id and user_id.strip():
        return user_id.strip()
    return config.ingestion.default_user_id


@mcp.tool()
def save_entry(content: str,
               domain: str = 'inbox',
               media_type: str = 'text',
               tag: Optional[str] = None,
               user_id: Optional[str] = None) -> Dict[str, Any]:
    """Capture a note, memory, scene, dream, lyric or idea.

    Questions are answered instead of saved; reading progress updates the reading list.

    Args:
        content: The text to capture
        domain: inbox, life_log, story_bible, dream_analysis, song_seeds, idea_garden or reading_list
        media_type: text, audio (transcription) or image (description)
        tag: Domain tag such as MEMORY or SCENE (optional)
        user_id: Owner (defaults to the configured user)

    Returns:
        Entry id, intent, and whether the dashboard and index were updated
    """
    try:
        result = get_orchestrator().ingest(_user(user_id), content, domain=domain, media_type=media_type, tag=tag)
    except (ClassificationError, IngestionError, SynthesisError, UnknownDomainError) as e:
        logger.error(f'MCP save_entry failed: {e}')
        raise Exception(f'Save failed: {e}')

    response = {
        'entry_id': result.entry_id,
        'intent': result.intent,
        'domain': result.domain,
        'dashboard_updated': result.dashboard_updated,
        'indexed': result.indexed,
    }
    if result.dashboard_error:
        response['dashboard_error'] = result.dashboard_error
    if result.answer is not None:
        response['answer'] = result.answer.answer
        response['source_ids'] = result.answer.source_ids
    return response


@mcp.tool()
def ask(question: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Answer a question from everything the user has captured.

    Args:
        question: Natural language question
        user_id: Owner (defaults to the configured user)

    Returns:
        The answer and the ids of the entries it drew on
    """
    try:
        answer = get_orchestrator().query(_user(user_id), question)
    except (IngestionError, SynthesisError) as e:
        logger.error(f'MCP ask failed: {e}')
        raise Exception(f'Query failed: {e}')
    return {'answer': answer.answer, 'source_ids': answer.source_ids}


@mcp.tool()
def refresh_dashboard(domain: str, user_id: Optional[str] = None) -> str:
    """Polish a dashboard's formatting and flow without adding new content.

    Returns:
        The refreshed dashboard markdown
    """
    try:
        return get_orchestrator().refresh(_user(user_id), domain).content
    except (IngestionError, SynthesisError, DashboardWriteError, UnknownDomainError) as e:
        logger.error(f'MCP refresh_dashboard failed: {e}')
        raise Exception(f'Refresh failed: {e}')


@mcp.tool()
def log_reading(text: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Record reading progress, e.g. "Started Dune" or "Finished Neuromancer, 4/5".

    Returns:
        Entry id and whether the reading list was updated
    """
    try:
        result = get_orchestrator().log_reading(_user(user_id), text)
    except IngestionError as e:
        logger.error(f'MCP log_reading failed: {e}')
        raise Exception(f'Reading log failed: {e}')
    return {
        'entry_id': result.entry_id,
        'dashboard_updated': result.dashboard_updated,
        'dashboard_error': result.dashboard_error,
    }


@mcp.tool()
def get_dashboard(domain: str, user_id: Optional[str] = None) -> str:
    """Read the current dashboard of a domain (empty if none has been written yet)."""
    try:
        dashboard = get_orchestrator().get_dashboard(_user(user_id), domain)
    except (DynamoDBError, UnknownDomainError) as e:
        logger.error(f'MCP get_dashboard failed: {e}')
        raise Exception(f'Dashboard read failed: {e}')
    return dashboard.content if dashboard else ''


@mcp.tool()
def recommend_reading(user_id: Optional[str] = None) -> str:
    """Run the librarian: three books and a few articles chosen against recent writing.

    Returns:
        The recommendations markdown
    """
    orchestrator = get_orchestrator()
    librarian = Librarian(llm=orchestrator.llm,
                          recall=orchestrator.recall,
                          record_store=orchestrator.store,
                          reading_list=orchestrator.reading_list)
    try:
        return librarian.run(_user(user_id)).recommendations
    except LibrarianError as e:
        logger.error(f'MCP recommend_reading failed: {e}')
        raise Exception(f'Recommendation run failed: {e}')


@mcp.tool()
def dream(user_id: Optional[str] = None) -> str:
    """Connect two distant entries into a new Spark entry.

    Returns:
        The Spark text, or an empty string when there is not enough material yet
    """
    try:
        spark = Dreamer(get_orchestrator()).dream(_user(user_id))
    except (DreamerError, IngestionError) as e:
        logger.error(f'MCP dream failed: {e}')
        raise Exception(f'Dreamer failed: {e}')
    return spark.content if spark else ''


@mcp.tool()
def system_status() -> Dict[str, Any]:
    """Report configuration and the health of every backing service."""
    return get_system_info()


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
