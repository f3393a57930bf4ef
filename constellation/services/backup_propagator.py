"""
Backup Propagator: mirrors Entry and Dashboard records to the archive.

Consumes DynamoDB Streams batches. Every record maps to one deterministic
path, so replaying a batch rewrites the same files with the same content.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from boto3.dynamodb.types import TypeDeserializer

from ..models.core import DASHBOARD_TYPE, ENTRY_TYPE
from ..utils.config import config
from ..utils.github_archive import GitHubArchive, GitHubArchiveError, GitHubConflictError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import parse_iso
from .domains import dashboard_files

logger = get_logger(__name__)

MIRRORED_EVENTS = ('INSERT', 'MODIFY')
WRITE_ATTEMPTS = 2

_deserializer = TypeDeserializer()


class ArchivalError(Exception):
    """Raised when one record could not be mirrored."""
    pass


@dataclass
class PropagationReport:
    """Per-batch counts; failures are logged, never raised."""
    written: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0


def deserialize_image(image: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert a stream image in DynamoDB JSON into a plain item."""
    return {key: _deserializer.deserialize(value) for key, value in image.items()}


def owner(item: Mapping[str, Any]) -> str:
    """User id of a record; the partition key ends with it."""
    return item.get('userId') or str(item['PK']).rsplit('#', 1)[-1]


def entry_path(item: Mapping[str, Any]) -> str:
    created = parse_iso(item['createdAt'])
    date = created.strftime('%Y-%m-%d')
    return f'{owner(item)}/Archive/{created:%Y}/{created:%m}/{date}_{item["id"]}.md'


def render_entry(item: Mapping[str, Any]) -> str:
    """Entry markdown: a frontmatter block of attribution metadata, then the content."""
    lines = [
        '---',
        f'id: {json.dumps(item["id"])}',
        f'created_at: {json.dumps(item["createdAt"])}',
        f'original: {"true" if item.get("isOriginal", True) else "false"}',
        f'type: {json.dumps(item.get("mediaType", "text"))}',
    ]
    tags = list(item.get('tags') or [])
    if tags:
        lines.append(f'tags: {json.dumps(tags, ensure_ascii=False)}')
    for key, attribute in (('source_url', 'sourceURL'), ('source_title', 'sourceTitle'),
                           ('source_author', 'sourceAuthor')):
        if item.get(attribute):
            lines.append(f'{key}: {json.dumps(item[attribute], ensure_ascii=False)}')
    lines.append('---')
    return '\n'.join(lines) + '\n\n' + item.get('content', '')


class BackupPropagator:
    """Best-effort replica of the record store in the archive repository."""

    def __init__(self, archive: Optional[GitHubArchive] = None, files: Optional[Mapping[str, str]] = None):
        self.archive = archive or GitHubArchive(config.github)
        self.files = dict(files) if files is not None else dashboard_files()

    def handle_stream_event(self, event: Mapping[str, Any]) -> PropagationReport:
        """
        Mirror every INSERT/MODIFY record of a stream batch.

        A failing record is logged and the batch continues.
        """
        records = event.get('Records') or []
        logger.info(f'Processing {len(records)} change records')

        report = PropagationReport()
        for record in records:
            if record.get('eventName') not in MIRRORED_EVENTS:
                report.skipped += 1
                continue
            image = (record.get('dynamodb') or {}).get('NewImage')
            if not image:
                report.skipped += 1
                continue

            try:
                outcome = self.propagate(deserialize_image(image))
            except (ArchivalError, KeyError, TypeError, ValueError) as e:
                logger.error(f'Could not mirror record {record.get("eventID")}: {e}')
                report.failed += 1
                continue
            setattr(report, outcome, getattr(report, outcome) + 1)

        logger.info(f'Mirrored batch: {report}')
        return report

    def propagate(self, item: Mapping[str, Any]) -> str:
        """
        Mirror one record.

        Returns:
            'written', 'unchanged' or 'skipped'

        Raises:
            ArchivalError: If the archive write fails
        """
        if item.get('skipBackup'):
            logger.debug(f'Skipping backup for {item.get("id")} (skipBackup)')
            return 'skipped'

        record_type = item.get('type')
        if record_type == ENTRY_TYPE:
            path, content = entry_path(item), render_entry(item)
        elif record_type == DASHBOARD_TYPE:
            file_name = self.files.get(item.get('id') or item.get('domain'))
            if not file_name:
                logger.debug(f'Skipping unknown dashboard id: {item.get("id")}')
                return 'skipped'
            path, content = f'{owner(item)}/{file_name}', item.get('content', '')
        else:
            return 'skipped'

        return self._write(path, content, f'backup: {record_type} {item.get("id")}')

    def _write(self, path: str, content: str, message: str) -> str:
        for attempt in range(WRITE_ATTEMPTS):
            try:
                current = self.archive.get_file(path)
                if current.sha is not None and current.content == content:
                    logger.debug(f'{path} already up to date')
                    return 'unchanged'
                self.archive.put_file(path, content, message, sha=current.sha)
                logger.info(f'Backed up {path}')
                return 'written'
            except GitHubConflictError:
                logger.warning(f'{path} changed during backup (attempt {attempt + 1}/{WRITE_ATTEMPTS})')
            except GitHubArchiveError as e:
                raise ArchivalError(f'Failed to back up {path}: {e}') from e
        raise ArchivalError(f'Failed to back up {path}: kept conflicting')
