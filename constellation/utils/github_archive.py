"""
GitHub repository client used as the versioned archival file store.

Files are addressed by path; the blob `sha` returned on read is the version
token that a write must present to replace the file.
"""

import base64
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .config import GitHubConfig
from .logging_config import get_logger

logger = get_logger(__name__)

APPEND_SEPARATOR = '\n\n---\n\n'


class GitHubArchiveError(Exception):
    """Custom exception for GitHub archive errors."""
    pass


class GitHubConflictError(GitHubArchiveError):
    """The file changed since its version token was read."""
    pass


@dataclass
class ArchivedFile:
    """File content plus its version token (None when the file does not exist)."""
    content: str
    sha: Optional[str] = None


class GitHubArchive:
    """Path-addressed file store backed by the GitHub contents API."""

    def __init__(self, config: GitHubConfig, session: Optional[requests.Session] = None):
        """
        Initialize GitHub archive client.

        Args:
            config: GitHubConfig instance with repository coordinates
            session: Pre-built requests session
        """
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': '2022-11-28',
        })
        if config.token:
            self.session.headers['Authorization'] = f'Bearer {config.token}'

        logger.info(f'Initialized GitHub archive for {config.owner}/{config.repo}@{config.branch}')

    def _contents_url(self, path: str) -> str:
        return f'{self.config.api_url}/repos/{self.config.owner}/{self.config.repo}/contents/{path.lstrip("/")}'

    def get_file(self, path: str) -> ArchivedFile:
        """
        Read a file.

        Returns:
            ArchivedFile; empty content and no sha if the file does not exist

        Raises:
            GitHubArchiveError: On any failure other than 404
        """
        try:
            response = self.session.get(self._contents_url(path),
                                        params={'ref': self.config.branch},
                                        timeout=self.config.timeout)
        except requests.RequestException as e:
            logger.error(f'Error fetching {path}: {e}')
            raise GitHubArchiveError(f'Failed to fetch {path}: {e}') from e

        if response.status_code == 404:
            logger.debug(f'{path} not found in archive')
            return ArchivedFile(content='', sha=None)
        if not response.ok:
            raise GitHubArchiveError(f'Failed to fetch {path}: HTTP {response.status_code} {response.text[:200]}')

        data = response.json()
        if isinstance(data, list):
            logger.warning(f'{path} is a directory, not a file')
            return ArchivedFile(content='', sha=None)

        encoded = data.get('content') or ''
        content = base64.b64decode(encoded).decode('utf-8') if encoded else ''
        return ArchivedFile(content=content, sha=data.get('sha'))

    def put_file(self, path: str, content: str, message: str, sha: Optional[str] = None) -> str:
        """
        Create or replace a file.

        Args:
            path: File path in the repository
            content: Full new content
            message: Commit message
            sha: Version token of the file being replaced (None to create)

        Returns:
            The new version token

        Raises:
            GitHubConflictError: If `sha` no longer matches the stored file
            GitHubArchiveError: On any other failure
        """
        body: Dict[str, Any] = {
            'message': message,
            'content': base64.b64encode(content.encode('utf-8')).decode('ascii'),
            'branch': self.config.branch,
        }
        if sha:
            body['sha'] = sha

        try:
            response = self.session.put(self._contents_url(path), json=body, timeout=self.config.timeout)
        except requests.RequestException as e:
            logger.error(f'Error writing {path}: {e}')
            raise GitHubArchiveError(f'Failed to write {path}: {e}') from e

        # 409: sha mismatch, 422: file exists but no sha was supplied
        if response.status_code in (409, 422):
            raise GitHubConflictError(f'Version conflict writing {path}')
        if not response.ok:
            raise GitHubArchiveError(f'Failed to write {path}: HTTP {response.status_code} {response.text[:200]}')

        new_sha = response.json().get('content', {}).get('sha', '')
        logger.debug(f'Wrote {path} ({len(content)} chars)')
        return new_sha

    def append_to_file(self, path: str, content: str, message: str, max_attempts: int = 3) -> str:
        """
        Append a block to a file, re-reading and retrying when a concurrent write wins.

        Returns:
            The new version token
        """
        for attempt in range(max_attempts):
            current = self.get_file(path)
            new_content = f'{current.content}{APPEND_SEPARATOR}{content}' if current.content else content
            try:
                return self.put_file(path, new_content, message, sha=current.sha)
            except GitHubConflictError:
                logger.warning(f'Append to {path} conflicted (attempt {attempt + 1}/{max_attempts}), retrying')
        raise GitHubConflictError(f'Append to {path} kept conflicting after {max_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the archive repository.

        Returns:
            True if the repository is reachable, False otherwise
        """
        try:
            url = f'{self.config.api_url}/repos/{self.config.owner}/{self.config.repo}'
            response = self.session.get(url, timeout=self.config.timeout)
            return response.ok
        except Exception as e:
            logger.error(f'GitHub archive health check failed: {e}')
            return False
