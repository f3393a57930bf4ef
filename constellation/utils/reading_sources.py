"""
HTTP clients for the external reading sources used by the librarian.

Article fetchers never raise: a failing source contributes an empty list so
that one outage does not sink the whole retrieval fan-out.
"""

import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, List

import requests
from pydantic import ValidationError

from ..models.schemas import Article, Book
from .config import LibrarianConfig
from .logging_config import get_logger

logger = get_logger(__name__)

DEV_TO_URL = 'https://dev.to/api/articles'
HN_SEARCH_URL = 'https://hn.algolia.com/api/v1/search_by_date'
HN_ITEM_URL = 'https://hn.algolia.com/api/v1/items/{story_id}'
ARXIV_URL = 'http://export.arxiv.org/api/query'
GOOGLE_BOOKS_URL = 'https://www.googleapis.com/books/v1/volumes'

ATOM_NS = {'atom': 'http://www.w3.org/2005/Atom'}
_TAG_RE = re.compile(r'<[^>]*>?')
_SPACE_RE = re.compile(r'\s+')


class ReadingSourceError(Exception):
    """Custom exception for reading source errors."""
    pass


class ReadingSources:
    """Fetchers for Dev.to, Hacker News, arXiv and Google Books."""

    def __init__(self, config: LibrarianConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()

    def _get(self, url: str, params: Dict[str, Any] = None) -> requests.Response:
        response = self.session.get(url, params=params, timeout=self.config.http_timeout)
        response.raise_for_status()
        return response

    def fetch_dev_to(self, tag: str, limit: int = 3) -> List[Article]:
        """Top Dev.to articles of the week for a tag."""
        try:
            items = self._get(DEV_TO_URL, params={'tag': tag, 'per_page': limit, 'top': 7}).json()
            return [
                Article(title=item['title'],
                        url=item['url'],
                        source='Dev.to',
                        content=item.get('description') or 'No description available.') for item in items
            ]
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.warning(f'Dev.to fetch failed for tag {tag!r}: {e}')
            return []

    def fetch_hacker_news(self, query: str, comment_limit: int = 3) -> List[Article]:
        """Most recent discussed HN story for a query, with its top comments."""
        try:
            search = self._get(HN_SEARCH_URL,
                               params={
                                   'tags': 'story',
                                   'query': query,
                                   'numericFilters': 'num_comments>10',
                                   'hitsPerPage': 1
                               }).json()
            hits = search.get('hits') or []
            if not hits:
                return []

            story = hits[0]
            story_id = story['objectID']
            item = self._get(HN_ITEM_URL.format(story_id=story_id)).json()

            comments = []
            for child in (item.get('children') or [])[:comment_limit]:
                if child.get('text'):
                    comments.append(f'- {child.get("author")}: {_TAG_RE.sub("", child["text"])}')

            content = 'Top Comments:\n' + '\n'.join(comments) if comments else 'No comments found.'
            return [
                Article(title=story.get('title') or '',
                        url=f'https://news.ycombinator.com/item?id={story_id}',
                        source='HackerNews',
                        content=content)
            ]
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.warning(f'Hacker News fetch failed for query {query!r}: {e}')
            return []

    def fetch_arxiv(self, query: str, limit: int = 3) -> List[Article]:
        """Newest arXiv submissions matching a query."""
        try:
            response = self._get(ARXIV_URL,
                                 params={
                                     'search_query': f'all:{query}',
                                     'sortBy': 'submittedDate',
                                     'sortOrder': 'descending',
                                     'start': 0,
                                     'max_results': limit
                                 })
            root = ET.fromstring(response.content)
        except (requests.RequestException, ET.ParseError) as e:
            logger.warning(f'arXiv fetch failed for query {query!r}: {e}')
            return []

        articles = []
        for entry in root.findall('atom:entry', ATOM_NS):
            title = entry.findtext('atom:title', default='', namespaces=ATOM_NS)
            summary = entry.findtext('atom:summary', default='', namespaces=ATOM_NS)
            articles.append(
                Article(title=_SPACE_RE.sub(' ', title).strip(),
                        url=entry.findtext('atom:id', default='', namespaces=ATOM_NS),
                        source='arXiv',
                        content=_SPACE_RE.sub(' ', summary).strip() or 'No summary.'))
        return articles

    def search_books(self, query: str, sort: str = 'relevance') -> List[Book]:
        """
        Search Google Books. Volumes that fail validation are dropped individually.

        Raises:
            ReadingSourceError: If the search request itself fails
        """
        params = {'q': query, 'maxResults': self.config.candidates_per_query, 'orderBy': sort}
        if self.config.google_books_api_key:
            params['key'] = self.config.google_books_api_key

        try:
            items = self._get(GOOGLE_BOOKS_URL, params=params).json().get('items') or []
        except (requests.RequestException, ValueError) as e:
            logger.error(f'Google Books search failed for query {query!r}: {e}')
            raise ReadingSourceError(f'Failed to search for books: {e}') from e

        books = []
        for item in items:
            try:
                books.append(Book.model_validate(item))
            except ValidationError as e:
                logger.debug(f'Skipping malformed volume {item.get("id")}: {e}')
        logger.debug(f'Google Books returned {len(books)} valid volumes for {query!r}')
        return books
