"""
Reading list dashboard: reading-log updates and recommendation merges.

Both writers touch only their own sections of the dashboard, so a reading
log and a recommendation run that race never erase each other's work.
"""

import re
from typing import Optional

from ..models.core import Dashboard
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.json_utils import sanitize_markdown
from ..utils.logging_config import get_logger
from ..utils.markdown_sections import HEADING_RE, bullet_items, get_section, make_section, replace_section
from .dashboard_store import DashboardStore
from .dashboard_synthesizer import SynthesisError
from .domains import READING_LIST

logger = get_logger(__name__)

TOP_RECOMMENDATIONS = 'Top Recommendations'
CURRENT_READING = 'Current Reading'
ARCHIVE = 'Archive'
TITLE_RE = re.compile(r'^#(?!#)\s')

LOG_SYSTEM_PROMPT = """You are the Librarian. You manage the user's "Reading List" dashboard.
Return the **FULL** Markdown file content. Do not use markdown code blocks."""

LOG_PROMPT = """**Goal:** Update the dashboard based on the user's latest log entry.

**New Log Entry:** "{log}"

**Current Dashboard:**
{current}

**Instructions:**
1. **## 📖 Current Reading:**
    - If the user says they *started* reading a book, ADD it here.
    - Format: "- **Title:** [Title] by [Author]" (extract the author if possible).
    - If the user says they *stopped* or *finished* a book listed here, REMOVE it from this section.
2. **## 🗃️ Archive:**
    - If the user says they *finished* a book, ADD it here.
    - Format: "- **[{today}]** Finished: *[Title]* by [Author]".
    - Keep the list chronological (newest at top).
3. **## 🌟 Top Recommendations:**
    - Leave this section UNTOUCHED unless the user explicitly rejects a recommendation listed there. In that case, remove it."""


def merge_reading_log(current: str, generated: str) -> str:
    """
    Take only the reading-log sections from an oracle rewrite.

    Current Reading and Archive come from `generated`. Top Recommendations may
    only lose items; anything else the oracle did to it is ignored. All other
    content stays as in `current`.
    """
    result = current
    for name in (CURRENT_READING, ARCHIVE):
        section = get_section(generated, name)
        if section is not None:
            result = replace_section(result, name, section)

    old_recs = get_section(current, TOP_RECOMMENDATIONS)
    new_recs = get_section(generated, TOP_RECOMMENDATIONS)
    if old_recs is not None and new_recs is not None:
        old_items = {item.strip() for item in bullet_items(old_recs.body)}
        new_items = [item.strip() for item in bullet_items(new_recs.body)]
        if new_items and all(item in old_items for item in new_items) and len(new_items) < len(old_items):
            logger.info(f'Reading log removed {len(old_items) - len(new_items)} recommendation(s)')
            result = replace_section(result, TOP_RECOMMENDATIONS, new_recs)
    return result


def merge_recommendations(current: str, recommendations: str) -> str:
    """Replace only the Top Recommendations section with freshly generated picks."""
    existing = get_section(current, TOP_RECOMMENDATIONS)
    heading = existing.heading if existing is not None else '## 🌟 Top Recommendations'

    # The run title is dropped and book headings nest under this section
    lines = []
    for line in sanitize_markdown(recommendations).split('\n'):
        if TITLE_RE.match(line):
            continue
        lines.append('#' + line if HEADING_RE.match(line) else line)
    return replace_section(current, TOP_RECOMMENDATIONS, make_section(heading, '\n'.join(lines)))


class ReadingListService:
    """Targeted section updates of the reading_list dashboard."""

    def __init__(self, llm: Optional[BedrockLLM] = None, dashboards: Optional[DashboardStore] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.dashboards = dashboards or DashboardStore()

        logger.info('Initialized ReadingListService')

    def apply_log(self, user_id: str, log: str, today: str) -> Dashboard:
        """
        Fold a reading log ("Started X", "Finished Y, 4/5") into the dashboard.

        Raises:
            SynthesisError: If the oracle fails
            DashboardWriteError: If the dashboard could not be stored
        """

        def merge(current: str) -> str:
            prompt = LOG_PROMPT.format(log=log, current=current, today=today)
            try:
                response = self.llm.generate(prompt, system_prompt=LOG_SYSTEM_PROMPT)
            except BedrockLLMError as e:
                raise SynthesisError(f'Reading list update failed: {e}') from e
            generated = sanitize_markdown(response)
            if not generated:
                raise SynthesisError('Reading list update returned an empty document')
            return merge_reading_log(current, generated)

        return self.dashboards.read_merge_write(user_id, READING_LIST, merge, today)

    def apply_recommendations(self, user_id: str, recommendations: str, today: str) -> Dashboard:
        """
        Replace the Top Recommendations section, leaving reading progress alone.

        Raises:
            DashboardWriteError: If the dashboard could not be stored
        """
        return self.dashboards.read_merge_write(user_id, READING_LIST,
                                                lambda current: merge_recommendations(current, recommendations),
                                                today)
