"""
Dialectical Librarian: periodic book and article recommendations.

Reads the user's recent writing, derives three reading lenses (data,
counterpoint, orthogonal), searches for candidates in parallel, curates one
book per lens and writes perspective paragraphs explaining how each book
pushes back on or extends what the user has been writing.
"""

import json
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..models.core import RECOMMENDATION_TYPE, Entry, entry_sk, user_pk
from ..models.schemas import AnalysisResult, Article, Book, BookQuery
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import LibrarianConfig, config
from ..utils.dynamodb_client import DynamoDBClient, DynamoDBError
from ..utils.github_archive import GitHubArchive, GitHubArchiveError
from ..utils.json_utils import extract_json, sanitize_markdown
from ..utils.logging_config import get_logger
from ..utils.reading_sources import ReadingSourceError, ReadingSources
from ..utils.timestamp_utils import new_entry_id, now_iso, to_date_str
from .dashboard_store import DashboardStore, DashboardWriteError
from .reading_list import ReadingListService
from .recall_engine import RecallEngine

logger = get_logger(__name__)

RECOMMENDATIONS_FILE = '00_Book_Recommendations.md'
NO_RECOMMENDATIONS = 'No new book recommendations were found in this run.'
PAST_TITLE_RE = re.compile(r'^##(?!#)\s*(.+?)\s*$', re.MULTILINE)

DEFAULT_ANALYSIS = AnalysisResult(
    book_queries=[
        BookQuery(query='general programming', sort='relevance', rationale='Default query due to no recent writing.'),
        BookQuery(query='philosophy of science', sort='relevance', rationale='Default query due to no recent writing.'),
        BookQuery(query='history of technology', sort='relevance', rationale='Default query due to no recent writing.'),
    ],
    article_queries={
        'devToTag': 'programming',
        'hnQuery': 'technology',
        'arxivQuery': 'computer science'
    })

ANALYSIS_SYSTEM_PROMPT = """
Analyze the user's recent entries (notes, saved articles, thoughts). Identify the core topics and interests.
Pay attention to the metadata (tags, media types).

1. Generate 3 "Book Lenses" in this order: Data, Counterpoint, Orthogonal.
2. Generate "Article Queries" for Dev.to, Hacker News and arXiv.

Return ONLY a JSON object with this structure:
{
  "bookQueries": [
    {"query": "...", "sort": "newest" | "relevance", "rationale": "..."},
    {"query": "...", "sort": "newest" | "relevance", "rationale": "..."},
    {"query": "...", "sort": "newest" | "relevance", "rationale": "..."}
  ],
  "articleQueries": {"devToTag": "...", "hnQuery": "...", "arxivQuery": "..."}
}

For each book lens:
- query: the Google Books search query
- sort: "newest" if the topic is tech, science or news, otherwise "relevance"
- rationale: why this query is a useful lens on the user's writing
The devToTag is a single word with no '#'.
"""

CURATION_SYSTEM_PROMPT = """
You are a curator. Select the single best book from the list for the given rationale.

Rules:
1. Do NOT select any book whose title appears in the past recommendations.
2. Prefer authoritative, highly-rated works.
3. If the topic is technical, heavily penalize outdated books.
4. Return ONLY the JSON object of the winning book, exactly as given. No commentary.
"""

INSIGHTS_SYSTEM_PROMPT = """
You are a literary analyst. For each selected book, write a "Perspective Paragraph" explaining specifically how the
book challenges, expands upon, or offers a new lens on the user's arguments and ideas as presented in their writing.
Avoid generic summaries. Focus on the dialectical relationship between the book and the user's text.

Output Markdown only, for each book:

## [Book Title]
By [Authors]

[Perspective Paragraph]
"""


class LibrarianError(Exception):
    """Raised when a recommendation run cannot proceed."""
    pass


@dataclass
class LibrarianReport:
    """Outcome of one recommendation run."""
    recommendations: str
    books: List[Book] = field(default_factory=list)
    articles: List[Article] = field(default_factory=list)
    recommendation_id: Optional[str] = None
    archived: bool = False
    dashboard_updated: bool = False


def past_titles(markdown: str) -> List[str]:
    """Book titles of previous runs: the `## ` headings of the recommendation history."""
    return PAST_TITLE_RE.findall(markdown or '')


def format_recent_writing(entries: Sequence[Entry], max_chars: int = 1000) -> str:
    blocks = []
    for entry in entries:
        meta = []
        if entry.tags:
            meta.append(f'Tags: {", ".join(entry.tags)}')
        if entry.media_type:
            meta.append(f'Type: {entry.media_type}')
        if entry.source_title:
            meta.append(f'Source: {entry.source_title}')
        blocks.append(f'Entry ({" | ".join(meta)}):\n{entry.content[:max_chars]}')
    return '\n\n---\n\n'.join(blocks)


class Librarian:
    """Recommendation job for one user."""

    def __init__(self,
                 llm: Optional[BedrockLLM] = None,
                 recall: Optional[RecallEngine] = None,
                 record_store: Optional[DynamoDBClient] = None,
                 archive: Optional[GitHubArchive] = None,
                 sources: Optional[ReadingSources] = None,
                 reading_list: Optional[ReadingListService] = None,
                 librarian_config: Optional[LibrarianConfig] = None):
        """Initialize the librarian; collaborators default to config-built clients."""
        self.config = librarian_config or config.librarian
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.store = record_store or DynamoDBClient(config.dynamodb)
        self.recall = recall or RecallEngine(record_store=self.store)
        self.archive = archive or GitHubArchive(config.github)
        self.sources = sources or ReadingSources(self.config)
        self.reading_list = reading_list or ReadingListService(self.llm, DashboardStore(self.store))

        logger.info('Initialized Librarian')

    def run(self, user_id: str) -> LibrarianReport:
        """
        Run the full recommendation pipeline.

        Returns:
            LibrarianReport; when no book was found nothing is persisted

        Raises:
            LibrarianError: If context cannot be read, the analysis fails, or the record cannot be saved
        """
        logger.info(f'Librarian run started for {user_id}')
        entries, past = self.fetch_context(user_id)
        analysis = self.analyze(entries)
        candidates, articles = self.retrieve(analysis)

        books: List[Book] = []
        for book_query, books_found in zip(analysis.book_queries, candidates):
            chosen = self.curate(book_query, books_found, past + [book.volume_info.title for book in books])
            if chosen is not None and all(chosen.id != book.id for book in books):
                books.append(chosen)

        markdown = self.synthesize(format_recent_writing(entries), books, articles)
        report = LibrarianReport(recommendations=markdown, books=books, articles=articles)
        if not books:
            logger.info(f'No new book recommendations for {user_id}; nothing persisted')
            return report

        self.persist(user_id, report)
        logger.info(f'Librarian run finished for {user_id}: {len(books)} books, {len(articles)} articles')
        return report

    def fetch_context(self, user_id: str) -> Tuple[List[Entry], List[str]]:
        """
        Recent entries and previously recommended titles, fetched in parallel.

        Raises:
            LibrarianError: If the recent entries cannot be read
        """
        with ThreadPoolExecutor(max_workers=2) as executor:
            entries_future = executor.submit(self.recall.recent_entries, user_id, self.config.recent_days)
            past_future = executor.submit(self.past_recommendations, user_id)
            try:
                entries = entries_future.result()
            except DynamoDBError as e:
                raise LibrarianError(f'Could not read recent writing: {e}') from e
            past = past_future.result()

        logger.debug(f'Librarian context: {len(entries)} recent entries, {len(past)} past titles')
        return entries, past

    def past_recommendations(self, user_id: str) -> List[str]:
        try:
            history = self.archive.get_file(f'{user_id}/{RECOMMENDATIONS_FILE}')
        except GitHubArchiveError as e:
            logger.warning(f'Could not read past recommendations, assuming none: {e}')
            return []
        return past_titles(history.content)

    def analyze(self, entries: Sequence[Entry]) -> AnalysisResult:
        """
        Derive book lenses and article queries from recent writing.

        Raises:
            LibrarianError: If the oracle fails or returns an invalid analysis
        """
        if not entries:
            logger.info('No recent entries; using default analysis')
            return DEFAULT_ANALYSIS

        prompt = f"Here are the user's recent entries:\n\n{format_recent_writing(entries)}"
        try:
            response = self.llm.generate(prompt, system_prompt=ANALYSIS_SYSTEM_PROMPT)
            return AnalysisResult.model_validate(extract_json(response))
        except BedrockLLMError as e:
            raise LibrarianError(f'Strategic analysis failed: {e}') from e
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f'Strategic analysis output was invalid: {e}')
            raise LibrarianError(f'Strategic analysis output did not match the expected schema: {e}') from e

    def retrieve(self, analysis: AnalysisResult) -> Tuple[List[List[Book]], List[Article]]:
        """
        Book candidates per lens and articles, all fetched concurrently.

        A failed source contributes an empty list.
        """

        def search(book_query: BookQuery) -> List[Book]:
            try:
                return self.sources.search_books(book_query.query, book_query.sort)
            except ReadingSourceError as e:
                logger.warning(f'Book search for {book_query.query!r} failed: {e}')
                return []

        queries = analysis.article_queries
        with ThreadPoolExecutor(max_workers=len(analysis.book_queries) + 3) as executor:
            book_futures = [executor.submit(search, book_query) for book_query in analysis.book_queries]
            article_futures = [
                executor.submit(self.sources.fetch_dev_to, queries.dev_to_tag),
                executor.submit(self.sources.fetch_hacker_news, queries.hn_query),
                executor.submit(self.sources.fetch_arxiv, queries.arxiv_query),
            ]
            candidates = [future.result() for future in book_futures]
            articles = [article for future in article_futures for article in future.result()]

        logger.debug(f'Retrieved {sum(len(c) for c in candidates)} book candidates and {len(articles)} articles')
        return candidates, articles

    def curate(self, book_query: BookQuery, candidates: List[Book], past: Sequence[str]) -> Optional[Book]:
        """
        Pick the best candidate for a lens, never one already recommended.

        Falls back to the first candidate not recommended before when the
        oracle fails or picks something outside the list.
        """
        eligible = [book for book in candidates if book.volume_info.title not in past]
        if not eligible:
            return None

        books_json = json.dumps([book.model_dump(by_alias=True) for book in eligible], indent=2)
        prompt = (f'**Rationale:** {book_query.rationale}\n\n'
                  f'**Past recommendations:** {json.dumps(list(past))}\n\n'
                  f'**Book List:**\n{books_json}')
        try:
            response = self.llm.generate(prompt, system_prompt=CURATION_SYSTEM_PROMPT)
            selected = Book.model_validate(extract_json(response))
            for book in eligible:
                if book.id == selected.id:
                    return book
            logger.warning(f'Curator picked {selected.id}, which is not a candidate; using fallback')
        except (BedrockLLMError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f'Curation failed for {book_query.query!r}, using fallback: {e}')
        return eligible[0]

    def synthesize(self, recent_writing: str, books: List[Book], articles: List[Article]) -> str:
        """
        Perspective paragraphs for the chosen books, plus the article list.

        Raises:
            LibrarianError: If the oracle fails
        """
        if not books:
            return f'## {NO_RECOMMENDATIONS}'

        volumes = json.dumps([book.volume_info.model_dump(by_alias=True, exclude_none=True) for book in books],
                             indent=2)
        prompt = (f"**User's Recent Writing:**\n---\n"
                  f'{recent_writing or "No writing was provided, so focus on the general value of each book."}\n---\n\n'
                  f'**Selected Books:**\n---\n{volumes}\n---')
        try:
            body = sanitize_markdown(self.llm.generate(prompt, system_prompt=INSIGHTS_SYSTEM_PROMPT))
        except BedrockLLMError as e:
            raise LibrarianError(f'Failed to synthesize insights: {e}') from e

        stamp = datetime.now(timezone.utc).strftime('%B %d, %Y %H:%M UTC')
        markdown = f'# Dialectical Librarian Recommendations for {stamp}\n\n{body}'
        if articles:
            lines = [f'- [{article.title}]({article.url}) ({article.source})' for article in articles]
            markdown += '\n\n### Further Reading\n' + '\n'.join(lines)
        return markdown

    def persist(self, user_id: str, report: LibrarianReport) -> None:
        """
        Store the recommendations, append them to the archive history and
        merge them into the reading list dashboard.

        Raises:
            LibrarianError: If the recommendation record cannot be saved
        """
        timestamp = now_iso()
        recommendation_id = new_entry_id()
        item = {
            'PK': user_pk(user_id),
            'SK': entry_sk(recommendation_id),
            'id': recommendation_id,
            'type': RECOMMENDATION_TYPE,
            'userId': user_id,
            'createdAt': timestamp,
            'updatedAt': timestamp,
            'content': report.recommendations,
            'isOriginal': True,
            'mediaType': 'text',
            'tags': ['recommendations', 'librarian'],
            'lastAccessed': timestamp,
        }
        try:
            self.store.put_item(item)
        except DynamoDBError as e:
            raise LibrarianError(f'Failed to persist recommendations: {e}') from e
        report.recommendation_id = recommendation_id

        try:
            self.archive.append_to_file(f'{user_id}/{RECOMMENDATIONS_FILE}', report.recommendations,
                                        'chore: Update reading recommendations')
            report.archived = True
        except GitHubArchiveError as e:
            logger.warning(f'Could not append recommendations to the archive: {e}')

        try:
            self.reading_list.apply_recommendations(user_id, report.recommendations, to_date_str(timestamp))
            report.dashboard_updated = True
        except DashboardWriteError as e:
            logger.warning(f'Could not merge recommendations into the reading list: {e}')
