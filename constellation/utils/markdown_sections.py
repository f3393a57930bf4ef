"""
Section-level view of dashboard markdown.

A document is a preamble (title and anything before the first `## ` heading)
followed by sections, each a `## ` heading line plus its body. A section body
is everything after the heading line, starting with its newline, so
splitting and rendering is lossless.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional

HEADING_RE = re.compile(r'^##(?!#)\s*(.+?)\s*$')
BULLET_RE = re.compile(r'^\s*(?:[-*+]|\d+[.)])\s+\S')
DATED_BULLET_RE = re.compile(r'^\s*(?:[-*+]|\d+[.)])\s+\**\s*\[?(\d{4}-\d{2}-\d{2})')
_NON_WORD_RE = re.compile(r'[^a-z0-9/ ]+')


@dataclass
class Section:
    heading: str  # full heading line, e.g. '## 🕯️ Recovered Memories'
    body: str

    @property
    def title(self) -> str:
        match = HEADING_RE.match(self.heading)
        return match.group(1) if match else self.heading

    @property
    def text(self) -> str:
        return self.body.strip('\n')

    def render(self) -> str:
        return self.heading + self.body


@dataclass
class Document:
    preamble: Optional[str]
    sections: List[Section]

    def render(self) -> str:
        parts = [] if self.preamble is None else [self.preamble]
        parts.extend(section.render() for section in self.sections)
        return '\n'.join(parts)

    def find(self, name: str) -> Optional[Section]:
        for section in self.sections:
            if heading_matches(section.title, name):
                return section
        return None


def make_section(heading: str, text: str) -> Section:
    """Build a section from a heading line and body text."""
    if not heading.startswith('#'):
        heading = f'## {heading}'
    text = text.strip('\n')
    return Section(heading, f'\n{text}' if text else '')


def normalize_heading(title: str) -> str:
    """Lowercase, drop emoji and punctuation, collapse spaces."""
    cleaned = _NON_WORD_RE.sub(' ', title.lower())
    return ' '.join(cleaned.split())


def heading_matches(title: str, name: str) -> bool:
    """True if a heading title refers to the named section (ignoring emoji and case)."""
    normalized_title = normalize_heading(title)
    normalized_name = normalize_heading(name)
    if not normalized_name:
        return False
    return normalized_title == normalized_name or normalized_title.startswith(normalized_name)


def parse(markdown: str) -> Document:
    preamble_lines: List[str] = []
    sections: List[Section] = []
    current_heading: Optional[str] = None
    current_body: List[str] = []
    in_fence = False

    for line in markdown.split('\n'):
        if line.lstrip().startswith('```'):
            in_fence = not in_fence
        if not in_fence and HEADING_RE.match(line):
            if current_heading is not None:
                sections.append(Section(current_heading, ''.join('\n' + body_line for body_line in current_body)))
            current_heading = line
            current_body = []
        elif current_heading is None:
            preamble_lines.append(line)
        else:
            current_body.append(line)

    if current_heading is not None:
        sections.append(Section(current_heading, ''.join('\n' + body_line for body_line in current_body)))

    preamble = '\n'.join(preamble_lines) if preamble_lines else None
    return Document(preamble=preamble, sections=sections)


def get_section(markdown: str, name: str) -> Optional[Section]:
    return parse(markdown).find(name)


def section_titles(markdown: str) -> List[str]:
    return [section.title for section in parse(markdown).sections]


def replace_section(markdown: str, name: str, section: Section) -> str:
    """Replace the named section, or append it if the document lacks one."""
    document = parse(markdown)
    for index, existing in enumerate(document.sections):
        if heading_matches(existing.title, name):
            document.sections[index] = _with_trailing_gap(section, index < len(document.sections) - 1)
            return document.render()
    if document.sections:
        document.sections[-1] = _with_trailing_gap(document.sections[-1], True)
    elif document.preamble is not None and document.preamble.strip():
        document.preamble = document.preamble.rstrip('\n') + '\n'
    elif document.preamble is not None:
        document.preamble = None
    document.sections.append(section)
    return document.render()


def _with_trailing_gap(section: Section, needs_gap: bool) -> Section:
    body = section.body.rstrip('\n')
    if needs_gap:
        body += '\n'
    return Section(section.heading, body)


def _blocks(body: str) -> List[List]:
    """Split a body into [is_item, text] blocks; indented lines stay with their bullet."""
    blocks: List[List] = []
    for line in body.split('\n'):
        if BULLET_RE.match(line) and not line.startswith((' ', '\t')):
            blocks.append([True, line])
        elif blocks and blocks[-1][0] and line.strip() and line.startswith((' ', '\t')):
            blocks[-1][1] += '\n' + line
        else:
            blocks.append([False, line])
    return blocks


def bullet_items(body: str) -> List[str]:
    """Top-level bullet items of a section body."""
    return [text for is_item, text in _blocks(body) if is_item]


def _keep_items(body: str, keep: Callable[[int, str], bool]) -> str:
    blocks = _blocks(body)
    out = []
    item_index = 0
    for is_item, text in blocks:
        if is_item:
            if keep(item_index, text):
                out.append(text)
            item_index += 1
        else:
            out.append(text)
    return '\n'.join(out)


def keep_last_items(body: str, max_items: int) -> str:
    """Keep only the last `max_items` bullet items."""
    total = len(bullet_items(body))
    if total <= max_items:
        return body
    first_kept = total - max_items
    return _keep_items(body, lambda index, _: index >= first_kept)


def keep_recent_dates(body: str, max_dates: int) -> str:
    """Keep only bullets dated within the `max_dates` most recent distinct dates.

    Undated bullets are left alone.
    """
    dates = sorted({m.group(1) for m in (DATED_BULLET_RE.match(item) for item in bullet_items(body)) if m},
                   reverse=True)
    if len(dates) <= max_dates:
        return body
    allowed = set(dates[:max_dates])

    def keep(_: int, item: str) -> bool:
        match = DATED_BULLET_RE.match(item)
        return not match or match.group(1) in allowed

    return _keep_items(body, keep)


def restore_missing_items(old_body: str, new_body: str) -> str:
    """Re-insert bullet items present in `old_body` but dropped from `new_body`.

    Dropped items go back in their original relative order ahead of the new
    items, so an append-only ledger never shrinks.
    """
    present = {item.strip() for item in bullet_items(new_body)}
    missing = [item for item in bullet_items(old_body) if item.strip() not in present]
    if not missing:
        return new_body

    lines = new_body.split('\n')
    insert_at = next((i for i, line in enumerate(lines) if BULLET_RE.match(line)), None)
    if insert_at is None:
        # No bullets left: the placeholder text is replaced by the restored ledger
        trailing = '\n' if new_body.strip('\n') and new_body.endswith('\n') else ''
        return '\n' + '\n'.join(missing) + trailing
    return '\n'.join(lines[:insert_at] + missing + lines[insert_at:])
