"""
Core data models for the knowledge capture pipeline.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ENTRY_TYPE = 'Entry'
DASHBOARD_TYPE = 'Dashboard'
RECOMMENDATION_TYPE = 'Recommendation'
DASHBOARD_SK = 'STATE'

MEDIA_TYPES = ('text', 'audio', 'image')


def user_pk(user_id: str) -> str:
    return f'USER#{user_id}'


def entry_sk(entry_id: str) -> str:
    return f'ENTRY#{entry_id}'


def dashboard_pk(domain: str, user_id: str) -> str:
    return f'DASHBOARD#{domain}#{user_id}'


def unique_tags(tags: List[str]) -> List[str]:
    """Drop empty and duplicate tags, keeping first occurrence."""
    seen = set()
    result = []
    for tag in tags:
        tag = (tag or '').strip()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


@dataclass
class Entry:
    """An atomic unit of captured knowledge.

    The durable store holds the authoritative copy; the vector index only
    holds a projection of it keyed by the same id.
    """
    id: str
    user_id: str
    domain: str
    content: str  # Raw user text for text entries, never rewritten downstream
    created_at: str
    updated_at: str
    is_original: bool
    media_type: str
    tags: List[str] = field(default_factory=list)
    source_url: Optional[str] = None
    source_title: Optional[str] = None
    source_author: Optional[str] = None
    last_accessed: Optional[str] = None
    skip_backup: bool = False

    def to_item(self) -> Dict[str, Any]:
        """Render as a DynamoDB item."""
        item = {
            'PK': user_pk(self.user_id),
            'SK': entry_sk(self.id),
            'id': self.id,
            'type': ENTRY_TYPE,
            'userId': self.user_id,
            'domain': self.domain,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'content': self.content,
            'isOriginal': self.is_original,
            'mediaType': self.media_type,
            'tags': list(self.tags),
            'lastAccessed': self.last_accessed or self.created_at,
        }
        # Attribution fields are omitted when absent
        for key, value in (('sourceURL', self.source_url), ('sourceTitle', self.source_title),
                           ('sourceAuthor', self.source_author)):
            if value:
                item[key] = value
        if self.skip_backup:
            item['skipBackup'] = True
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Entry':
        user_id = item.get('userId') or item.get('PK', '').split('#', 1)[-1]
        return cls(id=item['id'],
                   user_id=user_id,
                   domain=item.get('domain', 'inbox'),
                   content=item.get('content', ''),
                   created_at=item.get('createdAt', ''),
                   updated_at=item.get('updatedAt', item.get('createdAt', '')),
                   is_original=bool(item.get('isOriginal', True)),
                   media_type=item.get('mediaType', 'text'),
                   tags=list(item.get('tags') or []),
                   source_url=item.get('sourceURL'),
                   source_title=item.get('sourceTitle'),
                   source_author=item.get('sourceAuthor'),
                   last_accessed=item.get('lastAccessed'),
                   skip_backup=bool(item.get('skipBackup', False)))

    def index_metadata(self, include_text: bool, tag: Optional[str] = None) -> Dict[str, Any]:
        """Projection stored alongside the vector."""
        metadata = {
            'id': self.id,
            'user_id': self.user_id,
            'domain': self.domain,
            'created_at': self.created_at,
            'is_original': self.is_original,
            'media_type': self.media_type,
            'tags': list(self.tags),
        }
        if tag:
            metadata['tag'] = tag
        if self.source_title:
            metadata['source_title'] = self.source_title
        if include_text:
            metadata['text'] = self.content
        return metadata


@dataclass
class Dashboard:
    """Singleton markdown document per (user, domain), always replaced whole."""
    domain: str
    user_id: str
    content: str
    created_at: str
    updated_at: str
    version: int = 0

    def to_item(self) -> Dict[str, Any]:
        return {
            'PK': dashboard_pk(self.domain, self.user_id),
            'SK': DASHBOARD_SK,
            'id': self.domain,
            'type': DASHBOARD_TYPE,
            'userId': self.user_id,
            'domain': self.domain,
            'content': self.content,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'version': self.version,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Dashboard':
        return cls(domain=item.get('domain') or item['id'],
                   user_id=item.get('userId', ''),
                   content=item.get('content', ''),
                   created_at=item.get('createdAt', ''),
                   updated_at=item.get('updatedAt', ''),
                   version=int(item.get('version', 0)))


@dataclass
class RecallHit:
    """One retrieved context snippet."""
    id: str
    score: float
    namespace: str
    created_at: str = ''
    text: Optional[str] = None
    tag: Optional[str] = None
    source_title: Optional[str] = None


@dataclass
class IngestResult:
    """Outcome of a save-style ingestion.

    `indexed` is False when the entry is stored but the vector upsert failed;
    `dashboard_error` is set when the entry is stored but the dashboard is stale.
    """
    entry_id: Optional[str]
    intent: str
    domain: str
    dashboard_updated: bool = False
    indexed: bool = False
    dashboard: Optional[str] = None
    dashboard_error: Optional[str] = None
    answer: Optional['QueryAnswer'] = None


@dataclass
class QueryAnswer:
    """Read-only answer with the ids of the entries it drew on."""
    question: str
    answer: str
    source_ids: List[str] = field(default_factory=list)
