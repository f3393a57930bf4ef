"""
Knowledge domain catalogue.

Every domain runs the same ingestion state machine; what differs is data:
its vector namespace, its dashboard template and persona, and the
section-level update rules the synthesizer enforces.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class Trigger(str, Enum):
    ALWAYS = 'always'
    ON_NEW_FACT = 'on_new_fact'
    ON_SPECIFIC_TAG = 'on_specific_tag'


class MergeRule(str, Enum):
    APPEND_BOUNDED = 'append-bounded'
    REWRITE_NARRATIVE = 'rewrite-narrative'
    EXTRACT_FACTS_ONLY = 'extract-facts-only'
    PRESERVE = 'preserve-unless-explicit-override'


class UnknownDomainError(ValueError):
    """Raised when a domain name is not in the catalogue."""
    pass


@dataclass(frozen=True)
class SectionRule:
    """Update policy for one `## ` section of a dashboard."""
    section: str
    trigger: Trigger
    merge_rule: MergeRule
    max_items: Optional[int] = None
    bound_by: str = 'count'  # 'count' or 'date'
    trigger_tags: Tuple[str, ...] = ()
    instructions: str = ''

    def fires(self, has_entry: bool, tag: Optional[str]) -> bool:
        if self.trigger == Trigger.ALWAYS:
            return True
        if self.trigger == Trigger.ON_NEW_FACT:
            return has_entry
        return has_entry and tag is not None and tag.upper() in self.trigger_tags

    @property
    def is_ledger(self) -> bool:
        """Append-only: items are never pruned by ordinary updates."""
        return self.merge_rule == MergeRule.APPEND_BOUNDED and self.max_items is None


@dataclass(frozen=True)
class DomainConfig:
    name: str
    namespace: str
    persona: str = ''
    goal: str = ''
    template: Optional[str] = None
    section_rules: Tuple[SectionRule, ...] = ()
    tags: Tuple[str, ...] = ()
    tag_guidance: Dict[str, str] = field(default_factory=dict)
    constraints: Tuple[str, ...] = ()
    recall_top_k: int = 5
    history_active_days: int = 0
    denormalize_text: bool = True
    archive_file: Optional[str] = None

    @property
    def has_dashboard(self) -> bool:
        return self.template is not None

    @property
    def default_tag(self) -> Optional[str]:
        return self.tags[0] if self.tags else None

    def resolve_tag(self, tag: Optional[str]) -> Optional[str]:
        """Normalize a caller-supplied tag; unknown tags fall back to the default."""
        if tag and tag.upper() in self.tags:
            return tag.upper()
        return self.default_tag

    def render_template(self, today: str) -> str:
        return (self.template or '').replace('{today}', today)


LIFE_LOG_TEMPLATE = """# 🧬 Life Log: The Current Chapter
*A living snapshot of where you are right now.*

## 📊 State of Mind
- **Mood:** Neutral
- **Focus:** Just getting started.
- **Active Themes:** Setting up the system.

## 🕯️ Recovered Memories
*(No memories logged yet.)*

## 💓 The Daily Pulse
- **{today}:** The story begins here. The user has just initialized their Life Log, ready to capture the unfolding journey of their life."""

STORY_BIBLE_TEMPLATE = """# 📖 Story Bible
*The current state of the universe.*

## 🦸 Characters
(Protagonists, Antagonists, Relationships)

## 🗺️ World & Locations
(Settings, Rules, History)

## 🧶 Active Plot Threads
(Open loops, Conflicts)

## 🎬 Recent Scenes
(Chronological log of drafted scenes)

## ⚠️ Conflicts / Questions
(Potential plot holes)

## 💡 Unsorted Ideas
(Fragments, Dialogue snippets)"""

DREAM_ANALYSIS_TEMPLATE = """# 🌙 Dream Journal Analysis
*Recurring symbols and the currents beneath them.*

## 🔮 Recurring Symbols
*(No symbols recorded yet.)*

## 🌊 Emotional Landscape
*(Awaiting the first dream.)*

## 🧵 Narrative Threads
*(None yet.)*"""

SONG_SEEDS_TEMPLATE = """# 🎵 Song Seeds
*Waiting for inspiration...*

## 🎸 Emerging Songs
(Clusters of lines that form a structure)

## 📦 Thematic Bins
(Lines grouped by vibe)

## 📥 Inbox
(Orphans)

## 🪦 Used / Archived
(Finished songs)"""

IDEA_GARDEN_TEMPLATE = """# 🧠 The Idea Garden
*A living synthesis of your intellectual evolution.*

## 🔭 Current Obsessions
- **Focus:** Exploring the system.
- **Key Concepts:** None yet.

## 🧩 The Synthesis (Current Theory)
The user has begun cultivating their garden of ideas. The soil is fresh, waiting for the first seeds of thought to be planted.

## ❓ Open Questions
*(No questions posed yet.)*"""

READING_LIST_TEMPLATE = """# 📚 The Reading List
*Curated wisdom for your journey.*

## 🌟 Top Recommendations
*(No recommendations generated yet.)*

## 📖 Current Reading
*(Nothing in progress.)*

## 🗃️ Archive
*(Empty)*"""

LIFE_LOG = DomainConfig(
    name='life_log',
    namespace='biography',
    persona='You are The Biographer. You are rewriting the current chapter of the user\'s autobiography.',
    goal=('Update the "Life Log" to reflect the user\'s *current* state of mind and weave the new entry into a '
          'cohesive narrative. Do NOT just append text; reformulate the existing text so it flows with the new '
          'information.'),
    template=LIFE_LOG_TEMPLATE,
    section_rules=(
        SectionRule('State of Mind',
                    Trigger.ALWAYS,
                    MergeRule.REWRITE_NARRATIVE,
                    instructions=('Update **Mood** and **Focus** from the new entry and the recent history. '
                                  'Consolidate **Active Themes**: drop themes that no longer apply, add new ones.')),
        SectionRule('Recovered Memories',
                    Trigger.ON_SPECIFIC_TAG,
                    MergeRule.APPEND_BOUNDED,
                    max_items=8,
                    trigger_tags=('MEMORY', ),
                    instructions='Add a concise summary of the memory. Do NOT prefix entries with "[Current]".'),
        SectionRule('The Daily Pulse',
                    Trigger.ALWAYS,
                    MergeRule.APPEND_BOUNDED,
                    max_items=5,
                    bound_by='date',
                    instructions=('Chronological log built from the **Recent History** only. One bullet per date, '
                                  'formatted "- **YYYY-MM-DD:** summary of that day". Never write "Today".')),
    ),
    tags=('JOURNAL', 'MEMORY'),
    recall_top_k=5,
    history_active_days=5,
    archive_file='00_Life_Log.md',
)

STORY_BIBLE = DomainConfig(
    name='story_bible',
    namespace='fiction',
    persona='You are the Continuity Editor of a work of fiction.',
    goal='Integrate the new material into the Story Bible without losing established canon.',
    template=STORY_BIBLE_TEMPLATE,
    section_rules=(
        SectionRule('Characters', Trigger.ON_NEW_FACT, MergeRule.EXTRACT_FACTS_ONLY),
        SectionRule('World & Locations', Trigger.ON_NEW_FACT, MergeRule.EXTRACT_FACTS_ONLY),
        SectionRule('Active Plot Threads', Trigger.ON_NEW_FACT, MergeRule.REWRITE_NARRATIVE),
        SectionRule('Recent Scenes',
                    Trigger.ON_SPECIFIC_TAG,
                    MergeRule.APPEND_BOUNDED,
                    max_items=10,
                    trigger_tags=('SCENE', ),
                    instructions='Add a one-line entry describing the scene.'),
        SectionRule('Conflicts / Questions',
                    Trigger.ON_NEW_FACT,
                    MergeRule.APPEND_BOUNDED,
                    instructions=('If the new material contradicts established facts (e.g. the bible says '
                                  '"Jack is dead" but the new text has Jack eating), log the contradiction here.')),
        SectionRule('Unsorted Ideas',
                    Trigger.ON_SPECIFIC_TAG,
                    MergeRule.REWRITE_NARRATIVE,
                    trigger_tags=('IDEA', ),
                    instructions='Keep fragments and dialogue snippets that do not belong elsewhere yet.'),
    ),
    tags=('IDEA', 'SCENE', 'CHARACTER'),
    tag_guidance={
        'SCENE': ('This is a draft scene. Do NOT summarize the scene text in the main sections. Extract the facts '
                  'it establishes (e.g. "Protagonist has a scar") and record those.'),
        'IDEA': 'Do not delete established facts unless the new information explicitly says it is a retcon.',
        'CHARACTER': 'Do not delete established facts unless the new information explicitly says it is a retcon.',
    },
    recall_top_k=10,
    archive_file='00_Story_Bible.md',
)

DREAM_ANALYSIS = DomainConfig(
    name='dream_analysis',
    namespace='dreams',
    persona='You are a Jungian Analyst maintaining a running analysis of the user\'s dreams.',
    goal=('Interpret the new dream in the context of similar past dreams. Focus on recurring symbols (water, '
          'falling, animals, specific people), emotional themes and narrative threads.'),
    template=DREAM_ANALYSIS_TEMPLATE,
    section_rules=(
        SectionRule('Recurring Symbols', Trigger.ON_NEW_FACT, MergeRule.REWRITE_NARRATIVE),
        SectionRule('Emotional Landscape', Trigger.ON_NEW_FACT, MergeRule.REWRITE_NARRATIVE),
        SectionRule('Narrative Threads', Trigger.ON_NEW_FACT, MergeRule.REWRITE_NARRATIVE),
    ),
    tags=('DREAM', ),
    constraints=('If a new major theme emerges, add a new section for it.',
                 'Keep the analysis concise and focused on symbolic meaning.'),
    recall_top_k=5,
    archive_file='00_Dream_Journal_Analysis.md',
)

SONG_SEEDS = DomainConfig(
    name='song_seeds',
    namespace='lyrics',
    persona='You are an expert Songwriting Assistant.',
    goal=('Analyze the new line for meter, rhyme scheme and imagery, and see whether it combines with related '
          'fragments into a couplet, verse or chorus.'),
    template=SONG_SEEDS_TEMPLATE,
    section_rules=(
        SectionRule('Emerging Songs',
                    Trigger.ON_NEW_FACT,
                    MergeRule.REWRITE_NARRATIVE,
                    instructions='Create or update clusters of lines that belong together, with working titles.'),
        SectionRule('Thematic Bins',
                    Trigger.ON_NEW_FACT,
                    MergeRule.REWRITE_NARRATIVE,
                    instructions='Group remaining lines by strong imagery (e.g. "Nature", "Heartbreak").'),
        SectionRule('Inbox',
                    Trigger.ON_NEW_FACT,
                    MergeRule.REWRITE_NARRATIVE,
                    instructions='Place the new line here if it fits nowhere else.'),
        SectionRule('Used / Archived', Trigger.ON_SPECIFIC_TAG, MergeRule.PRESERVE, trigger_tags=('ARCHIVE', )),
    ),
    tags=('LYRIC', 'ARCHIVE'),
    constraints=('Do not alter the raw text of the lyrics. Only group and arrange them.', ),
    recall_top_k=15,
    archive_file='00_Song_Seeds.md',
)

IDEA_GARDEN = DomainConfig(
    name='idea_garden',
    namespace='ideas',
    persona='You are The Architect, the intellectual biographer of the user.',
    goal=('Evolve the narrative of the user\'s intellectual journey. Do NOT just append text; weave the new '
          'idea into the bigger picture.'),
    template=IDEA_GARDEN_TEMPLATE,
    section_rules=(
        SectionRule('Current Obsessions',
                    Trigger.ALWAYS,
                    MergeRule.REWRITE_NARRATIVE,
                    instructions='Update **Focus** and **Key Concepts**; reflect any shift in interest.'),
        SectionRule('The Synthesis',
                    Trigger.ON_NEW_FACT,
                    MergeRule.REWRITE_NARRATIVE,
                    instructions=('The core narrative, 3-4 paragraphs max. Connect the dots: how does the new '
                                  'idea modify, reinforce or contradict previous ones?')),
        SectionRule('Open Questions',
                    Trigger.ON_NEW_FACT,
                    MergeRule.REWRITE_NARRATIVE,
                    instructions='Add questions the new thought raises; remove questions it answers.'),
    ),
    tags=('THOUGHT', ),
    recall_top_k=5,
    archive_file='00_Idea_Garden.md',
)

READING_LIST = DomainConfig(
    name='reading_list',
    namespace='reading',
    persona='You are the Librarian. You manage the user\'s "Reading List" dashboard.',
    goal='Keep the reading list accurate and well formatted.',
    template=READING_LIST_TEMPLATE,
    section_rules=(
        SectionRule('Top Recommendations', Trigger.ON_SPECIFIC_TAG, MergeRule.PRESERVE,
                    trigger_tags=('RECOMMENDATION', )),
        SectionRule('Current Reading', Trigger.ON_SPECIFIC_TAG, MergeRule.PRESERVE, trigger_tags=('READING', )),
        SectionRule('Archive', Trigger.ON_SPECIFIC_TAG, MergeRule.PRESERVE, trigger_tags=('READING', )),
    ),
    tags=('READING', ),
    recall_top_k=5,
    archive_file='00_Reading_List.md',
)

INBOX = DomainConfig(
    name='inbox',
    namespace='inbox',
    recall_top_k=10,
    denormalize_text=False,
)

DOMAINS: Dict[str, DomainConfig] = {
    domain.name: domain
    for domain in (INBOX, LIFE_LOG, STORY_BIBLE, DREAM_ANALYSIS, SONG_SEEDS, IDEA_GARDEN, READING_LIST)
}


def get_domain(name: str) -> DomainConfig:
    try:
        return DOMAINS[name]
    except KeyError:
        raise UnknownDomainError(f'Unknown domain {name!r}. Available domains: {", ".join(DOMAINS)}') from None


def all_namespaces() -> Tuple[str, ...]:
    return tuple(domain.namespace for domain in DOMAINS.values())


def dashboard_files() -> Dict[str, str]:
    """Well-known archive file name per dashboard id."""
    return {domain.name: domain.archive_file for domain in DOMAINS.values() if domain.archive_file}
