"""
Ingestion Orchestrator: the per-domain capture pipeline.

classify -> embed -> store write -> index write -> recall -> synthesize ->
dashboard write. Every domain runs this same sequence with its own
DomainConfig; archival mirroring happens elsewhere, off the change feed.
"""

import time
from typing import List, Optional, Tuple

from ..models.core import Dashboard, Entry, IngestResult, QueryAnswer, entry_sk, unique_tags, user_pk
from ..models.schemas import RouterOutput
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.dynamodb_client import DynamoDBClient, DynamoDBError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import new_entry_id, now_iso, to_date_str
from .dashboard_store import DashboardStore, DashboardWriteError
from .dashboard_synthesizer import DashboardSynthesizer, SynthesisError
from .domains import READING_LIST, DomainConfig, all_namespaces, get_domain
from .intent_router import IntentRouterService
from .reading_list import ReadingListService
from .recall_engine import RecallEngine

logger = get_logger(__name__)

NO_CONTEXT_ANSWER = ('I could not find anything in your notes related to that question, '
                     'so there is no supporting context to answer from.')

RAG_SYSTEM_PROMPT = """
You are the user's second brain. Answer the user's question using ONLY the retrieved entries from their own notes.

- Cite what the user wrote, with dates where they help.
- If the entries do not answer the question, say so plainly instead of guessing.
- Keep the answer concise and conversational.
"""


class IngestionError(Exception):
    """Raised when an ingestion request fails before anything was saved."""
    pass


class StorageWriteError(IngestionError):
    """The durable store write failed; nothing was saved or indexed."""
    pass


class IndexWriteError(IngestionError):
    """The entry is saved but its vector upsert failed."""
    pass


class IngestionOrchestrator:
    """Capture, recall and dashboard synthesis for every knowledge domain."""

    def __init__(self,
                 llm: Optional[BedrockLLM] = None,
                 embed: Optional[BedrockEmbed] = None,
                 record_store: Optional[DynamoDBClient] = None,
                 vector_index: Optional[OpenSearchClient] = None,
                 router: Optional[IntentRouterService] = None,
                 recall: Optional[RecallEngine] = None,
                 synthesizer: Optional[DashboardSynthesizer] = None,
                 dashboards: Optional[DashboardStore] = None,
                 reading_list: Optional[ReadingListService] = None):
        """Initialize the orchestrator; collaborators default to config-built clients."""
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.store = record_store or DynamoDBClient(config.dynamodb)
        self.index = vector_index or OpenSearchClient(config.opensearch)
        self.router = router or IntentRouterService(self.llm)
        self.recall = recall or RecallEngine(self.index, self.store)
        self.synthesizer = synthesizer or DashboardSynthesizer(self.llm)
        self.dashboards = dashboards or DashboardStore(self.store)
        self.reading_list = reading_list or ReadingListService(self.llm, self.dashboards)

        logger.info('Initialized IngestionOrchestrator')

    def ingest(self,
               user_id: str,
               raw_input: str,
               domain: str = 'inbox',
               media_type: Optional[str] = 'text',
               tag: Optional[str] = None) -> IngestResult:
        """
        Classify raw input and branch on its intent.

        A question is answered read-only; a reading log updates the reading
        list; anything else is saved into `domain`.

        Args:
            user_id: Owner of the entry
            raw_input: Text as submitted (or a transcription / image description)
            domain: Target knowledge domain for saves
            media_type: Media type declared by the caller
            tag: Domain tag (e.g. MEMORY, SCENE); the domain default if omitted

        Returns:
            IngestResult

        Raises:
            ClassificationError: If the input could not be classified
            StorageWriteError: If the entry could not be saved
            IngestionError: For any other failure before the entry was saved
        """
        domain_config = get_domain(domain)
        self._require_text(raw_input, 'Content')

        classification = self.router.classify(raw_input, media_type)

        if classification.intent == 'query':
            answer = self.query(user_id, classification.content)
            return IngestResult(entry_id=None, intent='query', domain=domain_config.name, answer=answer)

        if classification.intent == 'log_reading':
            return self._log_reading(user_id, classification, raw_input)

        return self._save(user_id, classification, domain_config, tag, raw_input)

    def save(self,
             user_id: str,
             content: str,
             domain: str = 'inbox',
             media_type: Optional[str] = 'text',
             tag: Optional[str] = None) -> IngestResult:
        """
        Save content into a domain regardless of how the router reads its intent.

        Raises:
            ClassificationError: If the input could not be classified
            StorageWriteError: If the entry could not be saved
            IngestionError: For any other failure before the entry was saved
        """
        domain_config = get_domain(domain)
        self._require_text(content, 'Content')
        classification = self.router.classify(content, media_type)
        return self._save(user_id, classification, domain_config, tag, content)

    def log_reading(self, user_id: str, text: str) -> IngestResult:
        """
        Record reading progress and update the reading list's own sections.

        Raises:
            StorageWriteError: If the entry could not be saved
            IngestionError: For any other failure before the entry was saved
        """
        self._require_text(text, 'Reading log')
        classification = RouterOutput(intent='log_reading', is_original=True, content=text, media_type='text')
        return self._log_reading(user_id, classification, text)

    def query(self, user_id: str, question: str) -> QueryAnswer:
        """
        Answer a question from the user's entries across all domains. Nothing is written.

        Returns:
            QueryAnswer with the ids of the entries the answer drew on

        Raises:
            IngestionError: If the question could not be embedded
            SynthesisError: If the answer could not be generated
        """
        self._require_text(question, 'Question')

        try:
            vector = self.embed.embed_query(question)
        except BedrockEmbedError as e:
            logger.error(f'Could not embed question: {e}')
            raise IngestionError(f'Could not embed question: {e}') from e

        hits = self.recall.recall_across(user_id, vector, all_namespaces())
        try:
            hits = self.recall.hydrate(user_id, hits)
        except DynamoDBError as e:
            logger.warning(f'Could not hydrate recall hits, using indexed text only: {e}')
            hits = [hit for hit in hits if hit.text]

        context = self.recall.format_entries(hits)
        if not context:
            logger.info(f'No supporting context found for question from {user_id}')
            return QueryAnswer(question=question, answer=NO_CONTEXT_ANSWER, source_ids=[])

        prompt = f'USER QUESTION:\n{question}\n\nRETRIEVED CONTEXT:\n{context}'
        try:
            answer = self.llm.generate(prompt, system_prompt=RAG_SYSTEM_PROMPT)
        except BedrockLLMError as e:
            logger.error(f'Answer synthesis failed: {e}')
            raise SynthesisError(f'Answer synthesis failed: {e}') from e

        source_ids = [hit.id for hit in hits if hit.text]
        self._touch(user_id, source_ids)
        return QueryAnswer(question=question, answer=answer.strip(), source_ids=source_ids)

    def refresh(self, user_id: str, domain: str) -> Dashboard:
        """
        Polish a dashboard without a new entry.

        Raises:
            IngestionError: If the domain has no dashboard
            SynthesisError: If synthesis fails; the stored dashboard is unchanged
            DashboardWriteError: If the dashboard could not be stored
        """
        domain_config = get_domain(domain)
        if not domain_config.has_dashboard:
            raise IngestionError(f'Domain {domain} has no dashboard to refresh')

        today = to_date_str(now_iso())
        history = self._history(user_id, domain_config)
        dashboard = self.dashboards.read_merge_write(
            user_id, domain_config, lambda current: self.synthesizer.refresh(current, domain_config, today, history),
            today)
        logger.info(f'Refreshed dashboard {domain} for {user_id}')
        return dashboard

    def get_dashboard(self, user_id: str, domain: str) -> Optional[Dashboard]:
        """Current dashboard for a domain, or None if nothing has been written yet."""
        domain_config = get_domain(domain)
        return self.dashboards.get(user_id, domain_config.name)

    def persist_entry(self, entry: Entry, domain_config: DomainConfig, tag: Optional[str] = None) -> Tuple[List[float], bool]:
        """
        Embed an entry, write it to the store, then to the index.

        The store write always comes first; an index failure after it leaves
        the entry saved but unsearchable.

        Returns:
            Tuple of (vector, indexed)

        Raises:
            IngestionError: If the entry could not be embedded (nothing saved)
            StorageWriteError: If the store write failed (nothing saved or indexed)
        """
        try:
            vector = self.embed.embed_document(entry.content)
        except BedrockEmbedError as e:
            logger.error(f'Could not embed entry {entry.id}: {e}')
            raise IngestionError(f'Could not embed entry; nothing was saved: {e}') from e

        try:
            self.store.put_item(entry.to_item())
        except DynamoDBError as e:
            logger.error(f'Could not save entry {entry.id}: {e}')
            raise StorageWriteError(f'Could not save entry; nothing was saved: {e}') from e

        try:
            self._index(entry, vector, domain_config, tag)
            indexed = True
        except IndexWriteError as e:
            logger.warning(str(e))
            indexed = False

        logger.info(f'Saved entry {entry.id} in {domain_config.name} for {entry.user_id} (indexed={indexed})')
        return vector, indexed

    def _save(self, user_id: str, classification: RouterOutput, domain_config: DomainConfig, tag: Optional[str],
              raw_input: str) -> IngestResult:
        tag = domain_config.resolve_tag(tag)
        entry = self._build_entry(user_id, classification, domain_config, tag, raw_input)
        vector, indexed = self.persist_entry(entry, domain_config, tag)

        result = IngestResult(entry_id=entry.id, intent='save', domain=domain_config.name, indexed=indexed)
        if not domain_config.has_dashboard:
            return result

        try:
            dashboard = self._update_dashboard(user_id, domain_config, entry, vector, tag)
            result.dashboard_updated = True
            result.dashboard = dashboard.content
        except (SynthesisError, DashboardWriteError) as e:
            logger.error(f'Entry {entry.id} saved but dashboard {domain_config.name} is stale: {e}')
            result.dashboard_error = str(e)
        return result

    def _log_reading(self, user_id: str, classification: RouterOutput, raw_input: str) -> IngestResult:
        tag = READING_LIST.default_tag
        entry = self._build_entry(user_id, classification, READING_LIST, tag, raw_input)
        _, indexed = self.persist_entry(entry, READING_LIST, tag)

        result = IngestResult(entry_id=entry.id, intent='log_reading', domain=READING_LIST.name, indexed=indexed)
        try:
            dashboard = self.reading_list.apply_log(user_id, entry.content, to_date_str(entry.created_at))
            result.dashboard_updated = True
            result.dashboard = dashboard.content
        except (SynthesisError, DashboardWriteError) as e:
            logger.error(f'Reading log {entry.id} saved but the reading list is stale: {e}')
            result.dashboard_error = str(e)
        return result

    def _build_entry(self, user_id: str, classification: RouterOutput, domain_config: DomainConfig,
                     tag: Optional[str], raw_input: str) -> Entry:
        timestamp = time.time()
        created_at = now_iso(timestamp)
        # Text is stored exactly as submitted
        content = raw_input if classification.media_type == 'text' else classification.content
        return Entry(id=new_entry_id(timestamp),
                     user_id=user_id,
                     domain=domain_config.name,
                     content=content,
                     created_at=created_at,
                     updated_at=created_at,
                     is_original=classification.is_original,
                     media_type=classification.media_type,
                     tags=unique_tags(list(classification.tags) + ([tag] if tag else [])),
                     source_url=classification.source_url,
                     source_title=classification.source_title,
                     source_author=classification.source_author,
                     last_accessed=created_at)

    def _index(self, entry: Entry, vector: List[float], domain_config: DomainConfig, tag: Optional[str]) -> None:
        metadata = entry.index_metadata(include_text=domain_config.denormalize_text, tag=tag)
        try:
            self.index.upsert(domain_config.namespace, entry.id, vector, metadata)
        except OpenSearchError as e:
            raise IndexWriteError(f'Entry {entry.id} saved but not indexed: {e}') from e

    def _update_dashboard(self, user_id: str, domain_config: DomainConfig, entry: Entry, vector: List[float],
                          tag: Optional[str]) -> Dashboard:
        today = to_date_str(entry.created_at)
        context = self._context(user_id, domain_config, entry, vector)
        history = self._history(user_id, domain_config)

        def merge(current: str) -> str:
            return self.synthesizer.synthesize(current,
                                               domain_config,
                                               entry,
                                               today,
                                               tag=tag,
                                               context=context,
                                               history=history)

        return self.dashboards.read_merge_write(user_id, domain_config, merge, today)

    def _context(self, user_id: str, domain_config: DomainConfig, entry: Entry, vector: List[float]) -> str:
        try:
            hits = self.recall.recall(user_id,
                                      domain_config.namespace,
                                      vector,
                                      top_k=domain_config.recall_top_k,
                                      exclude_ids=[entry.id])
            hits = self.recall.hydrate(user_id, hits)
        except (OpenSearchError, DynamoDBError) as e:
            logger.warning(f'Recall failed for {domain_config.name}, synthesizing without context: {e}')
            return ''

        if not hits:
            logger.debug(f'No related entries in {domain_config.namespace} for {entry.id}')
        return self.recall.format_snippets(hits)

    def _history(self, user_id: str, domain_config: DomainConfig) -> str:
        if not domain_config.history_active_days:
            return ''
        return self.recall.recent_history(user_id, domain_config.name, domain_config.history_active_days)

    def _touch(self, user_id: str, entry_ids: List[str]) -> None:
        timestamp = now_iso()
        for entry_id in entry_ids:
            try:
                self.store.touch(user_pk(user_id), entry_sk(entry_id), timestamp)
            except DynamoDBError as e:
                logger.warning(f'Could not update lastAccessed for {entry_id}: {e}')

    @staticmethod
    def _require_text(value: Optional[str], what: str) -> None:
        if not value or not value.strip():
            raise IngestionError(f'{what} is required')
