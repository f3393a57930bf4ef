import pytest

from constellation.models.core import Dashboard, dashboard_pk
from constellation.services.domains import UnknownDomainError
from constellation.services.ingestion_orchestrator import NO_CONTEXT_ANSWER, IngestionError, StorageWriteError
from constellation.services.intent_router import ClassificationError
from constellation.utils.bedrock_llm import BedrockLLMError
from tests.fakes import ANSWER, READING_LOG, ROUTER, SYNTHESIS, make_entry, router_json

LIFE_LOG_KEY = (dashboard_pk('life_log', 'user-1'), 'STATE')


def life_log(mood='Neutral', memories='*(No memories logged yet.)*', pulse='- **2024-01-01:** The story begins.'):
    return (f'# 🧬 Life Log: The Current Chapter\n\n'
            f'## 📊 State of Mind\n- **Mood:** {mood}\n\n'
            f'## 🕯️ Recovered Memories\n{memories}\n\n'
            f'## 💓 The Daily Pulse\n{pulse}')


def store_dashboard(store, content, version=1, created_at='2024-01-01T00:00:00.000Z', domain='life_log'):
    store.put_item(
        Dashboard(domain=domain,
                  user_id='user-1',
                  content=content,
                  created_at=created_at,
                  updated_at=created_at,
                  version=version).to_item())


def echo_router(prompt):
    return router_json(prompt.split('\n', 1)[1])


class TestSave:

    def test_text_is_stored_verbatim(self, orchestrator, llm, store, index):
        raw = 'just  a rough   thought, no punctuation'
        llm.on(ROUTER, router_json('Just a rough thought.'))

        result = orchestrator.ingest('user-1', raw, domain='inbox')

        item = store.entries()[0]
        assert item['content'] == raw
        assert item['id'] == result.entry_id
        assert result.intent == 'save'
        assert result.indexed is True
        assert result.dashboard_updated is False
        assert llm.calls_for(SYNTHESIS) == []

    def test_audio_keeps_declared_media_type(self, orchestrator, llm, store):
        llm.on(ROUTER, router_json('Saw a heron on a walk.', mediaType='text'))

        orchestrator.ingest('user-1', 'so um saw a heron on my walk', domain='inbox', media_type='audio')

        item = store.entries()[0]
        assert item['mediaType'] == 'audio'
        assert item['content'] == 'Saw a heron on a walk.'

    def test_undeclared_media_type_is_stored_verbatim(self, orchestrator, llm, store):
        raw = 'my own  raw words'
        llm.on(ROUTER, router_json('My own raw words.'))

        orchestrator.ingest('user-1', raw, domain='inbox', media_type=None)

        item = store.entries()[0]
        assert item['mediaType'] == 'text'
        assert item['content'] == raw

    def test_inbox_index_carries_no_text(self, orchestrator, llm, index):
        llm.on(ROUTER, router_json('note'))

        result = orchestrator.ingest('user-1', 'note', domain='inbox')

        metadata = index.docs[('inbox', result.entry_id)]['metadata']
        assert 'text' not in metadata
        assert metadata['user_id'] == 'user-1'

    def test_attribution_is_stored(self, orchestrator, llm, store, index):
        raw = 'Read this great article on stoicism https://example.com/stoicism by Ryan Holiday'
        llm.on(
            ROUTER,
            router_json(raw,
                        isOriginal=False,
                        sourceURL='https://example.com/stoicism',
                        sourceTitle='Stoicism',
                        sourceAuthor='Ryan Holiday'))

        result = orchestrator.ingest('user-1', raw, domain='inbox')

        item = store.entries()[0]
        assert item['isOriginal'] is False
        assert item['sourceURL'] == 'https://example.com/stoicism'
        assert item['sourceAuthor'] == 'Ryan Holiday'
        assert index.docs[('inbox', result.entry_id)]['metadata']['source_title'] == 'Stoicism'

    def test_index_failure_keeps_entry(self, orchestrator, llm, store, index):
        index.fail_upserts = True
        llm.on(ROUTER, router_json('note'))

        result = orchestrator.ingest('user-1', 'note', domain='inbox')

        assert result.indexed is False
        assert [item['id'] for item in store.entries()] == [result.entry_id]

    def test_storage_failure_writes_nothing(self, orchestrator, llm, store, index):
        store.fail_puts = True
        llm.on(ROUTER, router_json('note'))

        with pytest.raises(StorageWriteError):
            orchestrator.ingest('user-1', 'note', domain='inbox')
        assert index.docs == {}

    def test_embed_failure_writes_nothing(self, orchestrator, llm, store, index, embed):
        embed.fail = True
        llm.on(ROUTER, router_json('note'))

        with pytest.raises(IngestionError):
            orchestrator.ingest('user-1', 'note', domain='inbox')
        assert store.put_calls == 0
        assert index.docs == {}

    def test_classification_failure_writes_nothing(self, orchestrator, llm, store):
        llm.on(ROUTER, 'not json at all')
        with pytest.raises(ClassificationError):
            orchestrator.ingest('user-1', 'note', domain='inbox')
        assert store.put_calls == 0

    def test_unknown_domain(self, orchestrator):
        with pytest.raises(UnknownDomainError):
            orchestrator.ingest('user-1', 'note', domain='recipes')

    def test_empty_content(self, orchestrator):
        with pytest.raises(IngestionError):
            orchestrator.ingest('user-1', '   ', domain='inbox')

    def test_tag_is_normalized_and_indexed(self, orchestrator, llm, store, index):
        llm.on(ROUTER, router_json('the smell of my grandmother\'s kitchen'))
        llm.on(SYNTHESIS, life_log(memories='- grandmother\'s kitchen'))

        result = orchestrator.ingest('user-1', 'the smell of my grandmother\'s kitchen', domain='life_log', tag='memory')

        assert 'MEMORY' in store.entries()[0]['tags']
        assert index.docs[('biography', result.entry_id)]['metadata']['tag'] == 'MEMORY'
        assert '- grandmother\'s kitchen' in result.dashboard

    def test_save_ignores_query_intent(self, orchestrator, llm, store):
        llm.on(ROUTER, router_json('What is love?', intent='query'))
        result = orchestrator.save('user-1', 'What is love?', domain='inbox')
        assert result.intent == 'save'
        assert len(store.entries()) == 1


class TestDashboardUpdate:

    def test_first_entry_creates_dashboard(self, orchestrator, llm, store):
        llm.on(ROUTER, router_json('Walked by the sea'))
        llm.on(SYNTHESIS, life_log(mood='Calm'))

        result = orchestrator.ingest('user-1', 'Walked by the sea', domain='life_log')

        assert result.dashboard_updated is True
        item = store.items[LIFE_LOG_KEY]
        assert item['version'] == 1
        assert '**Mood:** Calm' in item['content']
        assert 'The story begins here' in llm.calls_for(SYNTHESIS)[0]['prompt']

    def test_context_and_history_reach_the_prompt(self, orchestrator, llm):
        llm.on(ROUTER, echo_router)
        llm.on(SYNTHESIS, life_log(), life_log())

        orchestrator.ingest('user-1', 'first walk', domain='life_log')
        orchestrator.ingest('user-1', 'second walk', domain='life_log')

        prompt = llm.calls_for(SYNTHESIS)[1]['prompt']
        assert '- "first walk" (Tag: JOURNAL)' in prompt
        assert '"second walk" (Tag' not in prompt
        assert '- first walk\n' in prompt
        assert '- second walk' in prompt

    def test_synthesis_failure_leaves_dashboard_unchanged(self, orchestrator, llm, store):
        store_dashboard(store, life_log(mood='Before'), version=1)
        llm.on(ROUTER, router_json('a new day'))
        llm.on(SYNTHESIS, BedrockLLMError('timeout'))

        result = orchestrator.ingest('user-1', 'a new day', domain='life_log')

        assert result.dashboard_updated is False
        assert 'timeout' in result.dashboard_error
        assert len(store.entries()) == 1
        assert store.items[LIFE_LOG_KEY]['version'] == 1
        assert '**Mood:** Before' in store.items[LIFE_LOG_KEY]['content']

    def test_update_preserves_created_at(self, orchestrator, llm, store):
        store_dashboard(store, life_log(), version=3, created_at='2023-05-05T05:05:05.000Z')
        llm.on(ROUTER, router_json('a new day'))
        llm.on(SYNTHESIS, life_log(mood='Bright'))

        orchestrator.ingest('user-1', 'a new day', domain='life_log')

        item = store.items[LIFE_LOG_KEY]
        assert item['version'] == 4
        assert item['createdAt'] == '2023-05-05T05:05:05.000Z'
        assert item['updatedAt'] > '2023-05-05T05:05:05.000Z'

    def test_concurrent_update_is_merged_again(self, orchestrator, llm, store):
        store_dashboard(store, life_log(mood='Original'), version=1)

        def concurrent_writer(item):
            store.items[LIFE_LOG_KEY].update(content=life_log(mood='Concurrent'), version=2)

        store.before_versioned_put = concurrent_writer
        llm.on(ROUTER, router_json('a new day'))
        llm.on(SYNTHESIS, life_log(mood='Lost'), life_log(mood='Merged'))

        result = orchestrator.ingest('user-1', 'a new day', domain='life_log')

        prompts = [call['prompt'] for call in llm.calls_for(SYNTHESIS)]
        assert '**Mood:** Concurrent' in prompts[1]
        assert result.dashboard_updated is True
        assert store.items[LIFE_LOG_KEY]['version'] == 3
        assert '**Mood:** Merged' in store.items[LIFE_LOG_KEY]['content']

    def test_recall_failure_synthesizes_without_context(self, orchestrator, llm, index):
        index.failing_namespaces.add('biography')
        llm.on(ROUTER, router_json('a new day'))
        llm.on(SYNTHESIS, life_log())

        result = orchestrator.ingest('user-1', 'a new day', domain='life_log')

        assert result.dashboard_updated is True
        assert 'No related entries found.' in llm.calls_for(SYNTHESIS)[0]['prompt']


class TestQuery:

    def test_no_history_answers_without_oracle(self, orchestrator, llm, store):
        llm.on(ROUTER, router_json('What did I think about Rust?', intent='query'))

        result = orchestrator.ingest('user-1', 'What did I think about Rust?', domain='inbox')

        assert result.entry_id is None
        assert result.answer.answer == NO_CONTEXT_ANSWER
        assert result.answer.source_ids == []
        assert llm.calls_for(ANSWER) == []
        assert store.items == {}

    def test_answers_from_hydrated_entries(self, orchestrator, llm, store, embed, index):
        entry = make_entry('Rust borrow checker finally clicked', source_title='My notes')
        store.put_item(entry.to_item())
        index.upsert('inbox', entry.id, embed.embed_document(entry.content), entry.index_metadata(include_text=False))
        llm.on(ANSWER, 'You found that the borrow checker clicked.')

        answer = orchestrator.query('user-1', 'What did I think about Rust?')

        assert answer.answer == 'You found that the borrow checker clicked.'
        assert answer.source_ids == [entry.id]
        assert 'Rust borrow checker finally clicked' in llm.calls_for(ANSWER)[0]['prompt']
        assert 'Title: My notes' in llm.calls_for(ANSWER)[0]['prompt']
        assert [touch[1] for touch in store.touched] == [f'ENTRY#{entry.id}']

    def test_other_users_entries_are_invisible(self, orchestrator, embed, store, index):
        entry = make_entry('secret', user_id='user-2')
        store.put_item(entry.to_item())
        index.upsert('inbox', entry.id, embed.embed_document('secret'), entry.index_metadata(include_text=True))

        answer = orchestrator.query('user-1', 'secret')

        assert answer.answer == NO_CONTEXT_ANSWER

    def test_empty_question(self, orchestrator):
        with pytest.raises(IngestionError):
            orchestrator.query('user-1', '')


class TestReadingLog:

    def test_log_intent_updates_reading_sections(self, orchestrator, llm, store):
        llm.on(ROUTER, router_json('Started Dune by Frank Herbert', intent='log_reading'))
        llm.on(READING_LOG, lambda prompt: prompt.split('**Current Dashboard:**\n')[1].split('\n\n**Instructions')[0]
               .replace('*(Nothing in progress.)*', '- **Title:** Dune by Frank Herbert'))

        result = orchestrator.ingest('user-1', 'Started Dune by Frank Herbert', domain='inbox')

        assert result.intent == 'log_reading'
        assert result.domain == 'reading_list'
        assert result.dashboard_updated is True
        assert '- **Title:** Dune by Frank Herbert' in result.dashboard
        assert store.entries()[0]['domain'] == 'reading_list'

    def test_oracle_failure_keeps_log_entry(self, orchestrator, llm, store):
        llm.on(READING_LOG, BedrockLLMError('down'))

        result = orchestrator.log_reading('user-1', 'Finished Dune, 4/5')

        assert result.dashboard_updated is False
        assert result.dashboard_error
        assert len(store.entries()) == 1


class TestRefresh:

    def test_refresh_rewrites_dashboard(self, orchestrator, llm, store):
        store_dashboard(store, life_log(mood='Messy'), version=2)
        llm.on(SYNTHESIS, life_log(mood='Tidy'))

        dashboard = orchestrator.refresh('user-1', 'life_log')

        assert dashboard.version == 3
        assert '**Mood:** Tidy' in store.items[LIFE_LOG_KEY]['content']

    def test_inbox_has_no_dashboard(self, orchestrator):
        with pytest.raises(IngestionError):
            orchestrator.refresh('user-1', 'inbox')

    def test_get_dashboard(self, orchestrator, store):
        assert orchestrator.get_dashboard('user-1', 'life_log') is None
        store_dashboard(store, life_log())
        assert orchestrator.get_dashboard('user-1', 'life_log').content == life_log()
