"""
Context retrieval over the vector index and the record store.
"""

import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional

from ..models.core import ENTRY_TYPE, Entry, RecallHit, entry_sk, user_pk
from ..utils.config import RecallConfig, config
from ..utils.dynamodb_client import DynamoDBClient, DynamoDBError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import days_ago_iso, entry_id_floor, to_date_str

logger = get_logger(__name__)

NO_CONTEXT = 'No relevant context found.'


def _hit_from_result(result: Dict[str, Any], namespace: str) -> RecallHit:
    metadata = result.get('metadata') or {}
    return RecallHit(id=result['id'],
                     score=float(result.get('score') or 0.0),
                     namespace=metadata.get('namespace', namespace),
                     created_at=metadata.get('created_at', ''),
                     text=metadata.get('text'),
                     tag=metadata.get('tag'),
                     source_title=metadata.get('source_title'))


def fuse(hits: Iterable[RecallHit], cap: int) -> List[RecallHit]:
    """Deduplicate by id, order by score then recency (both descending), truncate to `cap`."""
    best: Dict[str, RecallHit] = {}
    for hit in hits:
        current = best.get(hit.id)
        if current is None or hit.score > current.score:
            best[hit.id] = hit
    ranked = sorted(best.values(), key=lambda hit: (hit.score, hit.created_at), reverse=True)
    return ranked[:cap]


class RecallEngine:
    """Relevance, recency and fused retrieval, always scoped to one user."""

    def __init__(self,
                 vector_index: Optional[OpenSearchClient] = None,
                 record_store: Optional[DynamoDBClient] = None,
                 recall_config: Optional[RecallConfig] = None):
        self.index = vector_index or OpenSearchClient(config.opensearch)
        self.store = record_store or DynamoDBClient(config.dynamodb)
        self.config = recall_config or config.recall

        logger.info('Initialized RecallEngine')

    def relevance(self,
                  user_id: str,
                  namespace: str,
                  vector: List[float],
                  top_k: Optional[int] = None,
                  exclude_ids: Iterable[str] = ()) -> List[RecallHit]:
        """
        Nearest neighbours of `vector` in one namespace.

        Raises:
            OpenSearchError: If the index query fails
        """
        excluded = set(exclude_ids)
        top_k = top_k or self.config.relevance_top_k
        results = self.index.query(namespace, vector, top_k=top_k + len(excluded), filters={'user_id': user_id})
        hits = [_hit_from_result(result, namespace) for result in results if result['id'] not in excluded]
        return hits[:top_k]

    def recency(self, user_id: str, namespace: str, days: Optional[int] = None) -> List[RecallHit]:
        """
        Everything indexed in a namespace over the last `days` days, newest first.

        Raises:
            OpenSearchError: If the index query fails
        """
        since = days_ago_iso(days if days is not None else self.config.recent_days)
        results = self.index.query_recent(namespace, since, filters={'user_id': user_id})
        return [_hit_from_result(result, namespace) for result in results]

    def recall(self,
               user_id: str,
               namespace: str,
               vector: List[float],
               top_k: Optional[int] = None,
               exclude_ids: Iterable[str] = (),
               days: Optional[int] = None,
               cap: Optional[int] = None) -> List[RecallHit]:
        """
        Fused relevance and recency context for one namespace.

        Recent entries the similarity search missed rank after the relevant
        ones, newest first; an entry found both ways keeps its similarity score.

        Raises:
            OpenSearchError: If either index query fails
        """
        excluded = set(exclude_ids)
        top_k = top_k or self.config.relevance_top_k
        relevant = self.relevance(user_id, namespace, vector, top_k=top_k, exclude_ids=excluded)
        recent = [hit for hit in self.recency(user_id, namespace, days) if hit.id not in excluded]
        return fuse(relevant + recent, max(top_k, cap or self.config.fusion_cap))

    def recall_across(self,
                      user_id: str,
                      vector: List[float],
                      namespaces: Iterable[str],
                      top_k: Optional[int] = None,
                      cap: Optional[int] = None) -> List[RecallHit]:
        """
        Query several namespaces in parallel and fuse the results.

        A namespace whose query fails contributes nothing; the others still count.

        Returns:
            At most `cap` hits, best score first, ties broken by recency
        """
        namespaces = list(dict.fromkeys(namespaces))
        cap = cap or self.config.fusion_cap
        if not namespaces:
            return []

        def search(namespace: str) -> List[RecallHit]:
            try:
                return self.relevance(user_id, namespace, vector, top_k=top_k)
            except OpenSearchError as e:
                logger.warning(f'Recall in namespace {namespace} failed, continuing without it: {e}')
                return []

        workers = max(1, min(self.config.max_workers, len(namespaces)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(search, namespaces))

        fused = fuse((hit for hits in results for hit in hits), cap)
        logger.debug(f'Fused recall over {len(namespaces)} namespaces returned {len(fused)} hits')
        return fused

    def hydrate(self, user_id: str, hits: List[RecallHit]) -> List[RecallHit]:
        """
        Fill in text for hits whose index projection carries none.

        Hits whose record no longer exists are dropped.
        """
        missing = [hit for hit in hits if not hit.text]
        if not missing:
            return hits

        items = self.store.batch_get([(user_pk(user_id), entry_sk(hit.id)) for hit in missing])
        by_id = {item['id']: item for item in items}

        hydrated = []
        for hit in hits:
            if hit.text:
                hydrated.append(hit)
                continue
            item = by_id.get(hit.id)
            if item is None:
                logger.debug(f'Dropping recall hit {hit.id}: record not found')
                continue
            hit.text = item.get('content', '')
            hit.source_title = hit.source_title or item.get('sourceTitle')
            hit.created_at = hit.created_at or item.get('createdAt', '')
            hydrated.append(hit)
        return hydrated

    def recent_entries(self, user_id: str, days: int, domain: Optional[str] = None) -> List[Entry]:
        """
        Entries created in the last `days` days, oldest first.

        Entry ids sort by creation time, so this is a key-range read rather
        than a scan.
        """
        since = time.time() - days * 86400
        filters = {'type': ENTRY_TYPE}
        if domain:
            filters['domain'] = domain
        items = self.store.query(user_pk(user_id),
                                 sk_prefix='ENTRY#',
                                 sk_from=entry_sk(entry_id_floor(since)),
                                 filters=filters)
        return [Entry.from_item(item) for item in items]

    def recent_history(self, user_id: str, domain: str, active_days: Optional[int] = None) -> str:
        """
        The user's entries for a domain over their last `active_days` distinct active dates.

        Returns:
            Markdown grouped by date, oldest date first, or '' if there is no history
        """
        active_days = active_days or self.config.history_active_days
        try:
            items = self.store.query(user_pk(user_id),
                                     sk_prefix='ENTRY#',
                                     limit=self.config.history_scan_limit,
                                     newest_first=True,
                                     filters={
                                         'type': ENTRY_TYPE,
                                         'domain': domain
                                     })
        except DynamoDBError as e:
            logger.warning(f'Could not read recent history for {domain}: {e}')
            return ''

        by_date: 'OrderedDict[str, List[str]]' = OrderedDict()
        for item in items:
            created_at = item.get('createdAt')
            if not created_at:
                continue
            date = to_date_str(created_at)
            if date not in by_date and len(by_date) >= active_days:
                continue
            by_date.setdefault(date, []).append(item.get('content', ''))

        lines = []
        for date in sorted(by_date):
            lines.append(f'**{date}:**')
            # Items were read newest first
            lines.extend(f'- {content}' for content in reversed(by_date[date]))
            lines.append('')
        return '\n'.join(lines).strip()

    @staticmethod
    def format_snippets(hits: List[RecallHit]) -> str:
        """Compact context block for dashboard synthesis; '' when empty."""
        lines = []
        for hit in hits:
            if not hit.text:
                continue
            suffix = f' (Tag: {hit.tag})' if hit.tag else ''
            lines.append(f'- "{hit.text}"{suffix}')
        return '\n'.join(lines)

    @staticmethod
    def format_entries(hits: List[RecallHit]) -> str:
        """Full context block for question answering; '' when empty."""
        blocks = []
        for hit in hits:
            if not hit.text:
                continue
            blocks.append(f'--- ENTRY (Date: {hit.created_at or "unknown"}, '
                          f'Title: {hit.source_title or "Untitled"}) ---\n{hit.text}')
        return '\n\n'.join(blocks)
