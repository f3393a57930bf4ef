import time
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from constellation.models.core import RecallHit
from constellation.services.recall_engine import RecallEngine, fuse
from constellation.utils.config import RecallConfig
from constellation.utils.dynamodb_client import DynamoDBError
from constellation.utils.timestamp_utils import now_iso
from tests.fakes import make_entry


def at(day: int, hour: int = 12) -> float:
    return datetime(2024, 1, day, hour, tzinfo=timezone.utc).timestamp()


def result(doc_id, score, created_at='2024-01-01T00:00:00.000Z', text=None):
    metadata = {'created_at': created_at}
    if text is not None:
        metadata['text'] = text
    return {'id': doc_id, 'score': score, 'metadata': metadata}


@pytest.fixture
def recall_config():
    return RecallConfig(relevance_top_k=10,
                        fusion_cap=15,
                        recent_days=7,
                        history_active_days=5,
                        history_scan_limit=50,
                        max_workers=4)


@pytest.fixture
def recall(index, store, recall_config):
    return RecallEngine(vector_index=index, record_store=store, recall_config=recall_config)


class TestFuse:

    def test_dedupes_keeping_best_score(self):
        hits = [RecallHit('a', 0.5, 'ideas'), RecallHit('a', 0.9, 'fiction'), RecallHit('b', 0.7, 'ideas')]
        fused = fuse(hits, cap=10)
        assert [(hit.id, hit.score) for hit in fused] == [('a', 0.9), ('b', 0.7)]

    def test_ties_broken_by_recency(self):
        hits = [
            RecallHit('old', 0.8, 'ideas', created_at='2024-01-01T00:00:00.000Z'),
            RecallHit('new', 0.8, 'ideas', created_at='2024-02-01T00:00:00.000Z'),
        ]
        assert [hit.id for hit in fuse(hits, cap=10)] == ['new', 'old']

    def test_truncates_to_cap(self):
        hits = [RecallHit(str(n), n / 10, 'ideas') for n in range(10)]
        assert [hit.id for hit in fuse(hits, cap=3)] == ['9', '8', '7']


class TestRelevance:

    def test_excluded_ids_do_not_shrink_result(self, recall, index):
        index.results['ideas'] = [result('e1', 0.9), result('e2', 0.8), result('e3', 0.7)]
        hits = recall.relevance('user-1', 'ideas', [0.1] * 8, top_k=2, exclude_ids=['e1'])
        assert [hit.id for hit in hits] == ['e2', 'e3']

    def test_scoped_to_user(self, recall, index):
        index.upsert('ideas', 'mine', [1.0] * 8, {'user_id': 'user-1', 'created_at': '2024-01-01T00:00:00.000Z'})
        index.upsert('ideas', 'theirs', [1.0] * 8, {'user_id': 'user-2', 'created_at': '2024-01-01T00:00:00.000Z'})
        hits = recall.relevance('user-1', 'ideas', [1.0] * 8)
        assert [hit.id for hit in hits] == ['mine']


class TestFusedRecall:

    def test_recent_entries_follow_relevant_ones(self, recall, index):
        now = time.time()
        for doc_id, user_id, age_days in (('old', 'user-1', 30), ('recent', 'user-1', 1), ('newest', 'user-1', 0),
                                          ('theirs', 'user-2', 0), ('self', 'user-1', 0)):
            index.upsert('biography', doc_id, [0.1] * 8, {
                'user_id': user_id,
                'created_at': now_iso(now - age_days * 86400 - 60)
            })
        index.results['biography'] = [result('old', 0.9), result('recent', 0.8)]

        hits = recall.recall('user-1', 'biography', [0.1] * 8, top_k=5, exclude_ids=['self'])

        assert [hit.id for hit in hits] == ['old', 'recent', 'newest']
        assert hits[1].score == 0.8

    def test_recency_window(self, recall, index):
        index.upsert('dreams', 'last-month', [0.1] * 8, {
            'user_id': 'user-1',
            'created_at': now_iso(time.time() - 30 * 86400)
        })
        assert recall.recency('user-1', 'dreams') == []
        assert [hit.id for hit in recall.recency('user-1', 'dreams', days=60)] == ['last-month']


class TestRecallAcross:

    def test_fuses_namespaces(self, recall, index):
        index.results['ideas'] = [result('a', 0.4), result('b', 0.9)]
        index.results['fiction'] = [result('c', 0.6)]
        hits = recall.recall_across('user-1', [0.1] * 8, ['ideas', 'fiction'], cap=2)
        assert [hit.id for hit in hits] == ['b', 'c']

    def test_failing_namespace_is_skipped(self, recall, index):
        index.results['ideas'] = [result('a', 0.4)]
        index.failing_namespaces.add('fiction')
        hits = recall.recall_across('user-1', [0.1] * 8, ['ideas', 'fiction'])
        assert [hit.id for hit in hits] == ['a']

    def test_empty_corpus(self, recall):
        assert recall.recall_across('user-1', [0.1] * 8, ['ideas', 'fiction']) == []

    def test_no_namespaces(self, recall):
        assert recall.recall_across('user-1', [0.1] * 8, []) == []


class TestHydrate:

    def test_fills_text_and_drops_missing_records(self, recall, store):
        entry = make_entry('stored text', source_title='A Source')
        store.put_item(entry.to_item())
        hits = [RecallHit(entry.id, 0.9, 'inbox'), RecallHit('gone', 0.8, 'inbox'),
                RecallHit('inline', 0.7, 'ideas', text='indexed text')]

        hydrated = recall.hydrate('user-1', hits)

        assert [hit.id for hit in hydrated] == [entry.id, 'inline']
        assert hydrated[0].text == 'stored text'
        assert hydrated[0].source_title == 'A Source'

    def test_skips_store_when_all_hits_have_text(self, recall):
        recall.store = MagicMock()
        hits = [RecallHit('a', 0.9, 'ideas', text='x')]
        assert recall.hydrate('user-1', hits) == hits
        recall.store.batch_get.assert_not_called()


class TestRecentEntries:

    def test_only_entries_inside_window(self, recall, store):
        old = make_entry('old', domain='life_log', timestamp=time.time() - 30 * 86400)
        new = make_entry('new', domain='life_log', timestamp=time.time() - 100)
        other_domain = make_entry('elsewhere', domain='ideas', timestamp=time.time() - 50)
        for entry in (old, new, other_domain):
            store.put_item(entry.to_item())

        assert [entry.content for entry in recall.recent_entries('user-1', 7)] == ['new', 'elsewhere']
        assert [entry.content for entry in recall.recent_entries('user-1', 7, domain='life_log')] == ['new']


class TestRecentHistory:

    def test_groups_last_active_dates_oldest_first(self, recall, store):
        entries = [
            make_entry('first', domain='life_log', timestamp=at(1)),
            make_entry('second', domain='life_log', timestamp=at(2, 9)),
            make_entry('third', domain='life_log', timestamp=at(2, 18)),
            make_entry('fourth', domain='life_log', timestamp=at(3)),
            make_entry('not mine', domain='story_bible', timestamp=at(3)),
        ]
        for entry in entries:
            store.put_item(entry.to_item())

        history = recall.recent_history('user-1', 'life_log', active_days=2)

        assert history == '**2024-01-02:**\n- second\n- third\n\n**2024-01-03:**\n- fourth'

    def test_no_history(self, recall):
        assert recall.recent_history('user-1', 'life_log') == ''

    def test_store_failure_degrades_to_empty(self, recall):
        recall.store = MagicMock()
        recall.store.query.side_effect = DynamoDBError('down')
        assert recall.recent_history('user-1', 'life_log') == ''


class TestFormatting:

    def test_format_snippets(self):
        hits = [RecallHit('a', 0.9, 'biography', text='walked the dog', tag='JOURNAL'),
                RecallHit('b', 0.8, 'biography', text='no tag'),
                RecallHit('c', 0.7, 'biography')]
        assert RecallEngine.format_snippets(hits) == '- "walked the dog" (Tag: JOURNAL)\n- "no tag"'

    def test_format_entries(self):
        hits = [RecallHit('a', 0.9, 'ideas', created_at='2024-01-01T00:00:00.000Z', text='body')]
        assert RecallEngine.format_entries(hits) == ('--- ENTRY (Date: 2024-01-01T00:00:00.000Z, '
                                                     'Title: Untitled) ---\nbody')

    def test_empty_formats_are_empty(self):
        assert RecallEngine.format_snippets([]) == ''
        assert RecallEngine.format_entries([]) == ''
