import base64
from unittest.mock import MagicMock

import pytest
import requests

from constellation.utils.config import GitHubConfig
from constellation.utils.github_archive import (APPEND_SEPARATOR, GitHubArchive, GitHubArchiveError,
                                                GitHubConflictError)

CONFIG = GitHubConfig(token='secret',
                      owner='someone',
                      repo='brain',
                      branch='main',
                      api_url='https://api.github.com',
                      timeout=1)
URL = 'https://api.github.com/repos/someone/brain/contents/user-1/00_Life_Log.md'


def response(status, payload=None):
    mock = MagicMock()
    mock.status_code = status
    mock.ok = status < 400
    mock.json.return_value = payload or {}
    mock.text = ''
    return mock


def encoded(text):
    return base64.b64encode(text.encode('utf-8')).decode('ascii')


@pytest.fixture
def session():
    mock = MagicMock()
    mock.headers = {}
    return mock


@pytest.fixture
def archive(session):
    return GitHubArchive(CONFIG, session=session)


class TestGetFile:

    def test_sets_auth_header(self, archive, session):
        assert session.headers['Authorization'] == 'Bearer secret'

    def test_decodes_content(self, archive, session):
        session.get.return_value = response(200, {'content': encoded('# Life Log ✨'), 'sha': 'abc'})

        archived = archive.get_file('user-1/00_Life_Log.md')

        assert archived.content == '# Life Log ✨'
        assert archived.sha == 'abc'
        assert session.get.call_args.args[0] == URL
        assert session.get.call_args.kwargs['params'] == {'ref': 'main'}

    def test_missing_file(self, archive, session):
        session.get.return_value = response(404)
        archived = archive.get_file('user-1/00_Life_Log.md')
        assert archived.content == ''
        assert archived.sha is None

    def test_server_error(self, archive, session):
        session.get.return_value = response(500)
        with pytest.raises(GitHubArchiveError):
            archive.get_file('user-1/00_Life_Log.md')

    def test_network_error(self, archive, session):
        session.get.side_effect = requests.ConnectionError('offline')
        with pytest.raises(GitHubArchiveError):
            archive.get_file('user-1/00_Life_Log.md')


class TestPutFile:

    def test_sends_sha_and_content(self, archive, session):
        session.put.return_value = response(200, {'content': {'sha': 'new-sha'}})

        assert archive.put_file('user-1/00_Life_Log.md', 'hello', 'backup', sha='old-sha') == 'new-sha'

        body = session.put.call_args.kwargs['json']
        assert body == {'message': 'backup', 'content': encoded('hello'), 'branch': 'main', 'sha': 'old-sha'}

    def test_create_omits_sha(self, archive, session):
        session.put.return_value = response(201, {'content': {'sha': 'new-sha'}})
        archive.put_file('user-1/00_Life_Log.md', 'hello', 'backup')
        assert 'sha' not in session.put.call_args.kwargs['json']

    @pytest.mark.parametrize('status', [409, 422])
    def test_stale_sha_is_a_conflict(self, archive, session, status):
        session.put.return_value = response(status)
        with pytest.raises(GitHubConflictError):
            archive.put_file('user-1/00_Life_Log.md', 'hello', 'backup', sha='stale')

    def test_other_failure(self, archive, session):
        session.put.return_value = response(500)
        with pytest.raises(GitHubArchiveError) as excinfo:
            archive.put_file('user-1/00_Life_Log.md', 'hello', 'backup')
        assert not isinstance(excinfo.value, GitHubConflictError)


class TestAppendToFile:

    def test_appends_with_separator(self, archive, session):
        session.get.return_value = response(200, {'content': encoded('first'), 'sha': 'abc'})
        session.put.return_value = response(200, {'content': {'sha': 'def'}})

        archive.append_to_file('user-1/00_Book_Recommendations.md', 'second', 'recs')

        body = session.put.call_args.kwargs['json']
        assert base64.b64decode(body['content']).decode('utf-8') == f'first{APPEND_SEPARATOR}second'
        assert body['sha'] == 'abc'

    def test_retries_after_conflict(self, archive, session):
        session.get.side_effect = [
            response(200, {'content': encoded('first'), 'sha': 'abc'}),
            response(200, {'content': encoded('first\n\nmore'), 'sha': 'abd'}),
        ]
        session.put.side_effect = [response(409), response(200, {'content': {'sha': 'xyz'}})]

        assert archive.append_to_file('user-1/00_Book_Recommendations.md', 'second', 'recs') == 'xyz'
        assert session.put.call_args.kwargs['json']['sha'] == 'abd'

    def test_gives_up(self, archive, session):
        session.get.return_value = response(404)
        session.put.return_value = response(422)
        with pytest.raises(GitHubConflictError):
            archive.append_to_file('user-1/00_Book_Recommendations.md', 'second', 'recs', max_attempts=2)
        assert session.put.call_count == 2
