import json
from unittest.mock import MagicMock

import pytest

from constellation.models.core import RECOMMENDATION_TYPE, dashboard_pk
from constellation.models.schemas import Article, Book, BookQuery
from constellation.services.librarian import (DEFAULT_ANALYSIS, NO_RECOMMENDATIONS, RECOMMENDATIONS_FILE, Librarian,
                                              LibrarianError, past_titles)
from constellation.services.recall_engine import RecallEngine
from constellation.utils.dynamodb_client import DynamoDBError
from constellation.utils.github_archive import APPEND_SEPARATOR, ArchivedFile
from constellation.utils.markdown_sections import get_section
from constellation.utils.reading_sources import ReadingSourceError
from tests.fakes import ANALYSIS, CURATION, INSIGHTS, make_entry

HISTORY_PATH = f'user-1/{RECOMMENDATIONS_FILE}'

ANALYSIS_JSON = json.dumps({
    'bookQueries': [
        {'query': 'data lens', 'sort': 'newest', 'rationale': 'evidence for your claims'},
        {'query': 'counter lens', 'sort': 'relevance', 'rationale': 'the opposing view'},
        {'query': 'orthogonal lens', 'sort': 'relevance', 'rationale': 'a sideways view'},
    ],
    'articleQueries': {'devToTag': 'rust', 'hnQuery': 'borrow checker', 'arxivQuery': 'type systems'},
})


def book_payload(book_id, title, author='Someone'):
    return {'id': book_id, 'volumeInfo': {'title': title, 'authors': [author]}}


def book(book_id, title, author='Someone'):
    return Book.model_validate(book_payload(book_id, title, author))


@pytest.fixture
def sources():
    mock = MagicMock()
    mock.search_books.return_value = []
    mock.fetch_dev_to.return_value = []
    mock.fetch_hacker_news.return_value = []
    mock.fetch_arxiv.return_value = []
    return mock


@pytest.fixture
def librarian(llm, store, index, archive, sources):
    return Librarian(llm=llm, recall=RecallEngine(index, store), record_store=store, archive=archive, sources=sources)


def recommendations(store):
    return [item for item in store.items.values() if item.get('type') == RECOMMENDATION_TYPE]


class TestPastTitles:

    def test_reads_book_headings_only(self):
        history = '# Run 1\n\n## Book A\nBy X\n\n### Further Reading\n- x\n\n---\n\n## Book B'
        assert past_titles(history) == ['Book A', 'Book B']

    def test_empty_history(self):
        assert past_titles('') == []


class TestRun:

    def test_full_run(self, librarian, llm, store, archive, sources):
        store.put_item(make_entry('Rust lifetimes are a proof system', tags=['rust']).to_item())
        archive.files[HISTORY_PATH] = ArchivedFile(content='# Old run\n\n## Book A\nBy X', sha='sha-0')

        def search_books(query, sort):
            if query == 'counter lens':
                raise ReadingSourceError('quota exceeded')
            if query == 'data lens':
                return [book('a', 'Book A'), book('b', 'Book B')]
            return [book('c', 'Book C')]

        sources.search_books.side_effect = search_books
        sources.fetch_dev_to.return_value = [Article(title='Lifetimes', url='https://dev.to/x', source='Dev.to')]
        llm.on(ANALYSIS, ANALYSIS_JSON)
        llm.on(CURATION, json.dumps(book_payload('b', 'Book B')), 'not json')
        llm.on(INSIGHTS, '## Book B\nBy Someone\n\nPushes back on your proof claim.\n\n## Book C\nBy Someone\n\nSideways.')

        report = librarian.run('user-1')

        assert [chosen.id for chosen in report.books] == ['b', 'c']
        assert report.recommendations.startswith('# Dialectical Librarian Recommendations for ')
        assert '### Further Reading\n- [Lifetimes](https://dev.to/x) (Dev.to)' in report.recommendations
        assert 'Rust lifetimes are a proof system' in llm.calls_for(ANALYSIS)[0]['prompt']
        assert '"Book A"' in llm.calls_for(CURATION)[0]['prompt']

        saved = recommendations(store)
        assert len(saved) == 1
        assert saved[0]['content'] == report.recommendations
        assert saved[0]['id'] == report.recommendation_id

        assert report.archived is True
        assert archive.files[HISTORY_PATH].content == f'# Old run\n\n## Book A\nBy X{APPEND_SEPARATOR}{report.recommendations}'

        assert report.dashboard_updated is True
        dashboard = store.items[(dashboard_pk('reading_list', 'user-1'), 'STATE')]
        assert '### Book B' in get_section(dashboard['content'], 'Top Recommendations').text

    def test_no_recent_writing_uses_default_analysis(self, librarian, llm, sources):
        report = librarian.run('user-1')

        assert llm.calls_for(ANALYSIS) == []
        searched = [call.args[0] for call in sources.search_books.call_args_list]
        assert sorted(searched) == sorted(query.query for query in DEFAULT_ANALYSIS.book_queries)
        assert report.books == []

    def test_nothing_found_persists_nothing(self, librarian, store, archive):
        report = librarian.run('user-1')

        assert report.recommendations == f'## {NO_RECOMMENDATIONS}'
        assert report.recommendation_id is None
        assert recommendations(store) == []
        assert archive.writes == []

    def test_archive_outage_does_not_sink_run(self, librarian, llm, store, archive, sources):
        archive.failing_paths.add(HISTORY_PATH)
        sources.search_books.return_value = [book('z', 'Book Z')]
        llm.on(CURATION, json.dumps(book_payload('z', 'Book Z')))
        llm.on(INSIGHTS, '## Book Z\nBy Someone\n\nWorth it.')

        report = librarian.run('user-1')

        assert [chosen.id for chosen in report.books] == ['z']
        assert report.archived is False
        assert len(recommendations(store)) == 1
        assert report.dashboard_updated is True

    def test_invalid_analysis(self, librarian, llm, store):
        store.put_item(make_entry('something').to_item())
        llm.on(ANALYSIS, '{"bookQueries": []}')
        with pytest.raises(LibrarianError):
            librarian.run('user-1')

    def test_unreadable_writing(self, llm, index, archive, sources):
        failing_store = MagicMock()
        failing_store.query.side_effect = DynamoDBError('down')
        librarian = Librarian(llm=llm,
                              recall=RecallEngine(index, failing_store),
                              record_store=failing_store,
                              archive=archive,
                              sources=sources)
        with pytest.raises(LibrarianError):
            librarian.run('user-1')


class TestCurate:

    def test_falls_back_when_pick_is_not_a_candidate(self, librarian, llm):
        llm.on(CURATION, json.dumps(book_payload('elsewhere', 'Some Other Book')))
        chosen = librarian.curate(BookQuery(query='q'), [book('a', 'Book A'), book('b', 'Book B')], ['Book A'])
        assert chosen.id == 'b'

    def test_nothing_eligible(self, librarian, llm):
        assert librarian.curate(BookQuery(query='q'), [book('a', 'Book A')], ['Book A']) is None
        assert llm.calls == []
