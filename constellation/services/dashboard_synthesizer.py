"""
Dashboard synthesis: asks the oracle for a full rewrite of a dashboard and
then enforces the domain's section rules on what came back.
"""

from typing import Optional

from ..models.core import Entry
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.json_utils import sanitize_markdown
from ..utils.logging_config import get_logger
from ..utils.markdown_sections import (Section, get_section, keep_last_items, keep_recent_dates, parse,
                                       replace_section, restore_missing_items)
from .domains import DomainConfig, MergeRule, SectionRule, Trigger

logger = get_logger(__name__)

INGEST = 'ingest'
REFRESH = 'refresh'

OUTPUT_RULES = """**Output:**
- Return the **FULL** Markdown file content, starting with the title.
- Keep every existing `## ` section heading exactly as written.
- Do not wrap the document in code blocks and do not add commentary."""

_MERGE_RULE_TEXT = {
    MergeRule.REWRITE_NARRATIVE: 'Rewrite this section so the new information is woven into a cohesive whole.',
    MergeRule.EXTRACT_FACTS_ONLY: ('Record only the concrete facts the new material establishes. Never paste or '
                                   'summarize the raw text here.'),
    MergeRule.PRESERVE: 'Leave this section exactly as it is unless the new entry explicitly overrides it.',
}


class SynthesisError(Exception):
    """Raised when the oracle fails or returns an unusable dashboard."""
    pass


def _rule_text(rule: SectionRule, fired: bool) -> str:
    if not fired:
        return 'Leave this section UNCHANGED for this update.'

    if rule.merge_rule == MergeRule.APPEND_BOUNDED:
        if rule.max_items is None:
            text = 'Append-only: add new items, never remove or reword existing ones.'
        elif rule.bound_by == 'date':
            text = f'Keep at most the {rule.max_items} most recent dates.'
        else:
            text = f'Add new items; keep at most {rule.max_items} items, pruning the oldest.'
    else:
        text = _MERGE_RULE_TEXT[rule.merge_rule]

    if rule.instructions:
        text = f'{text} {rule.instructions}'
    return text


def build_update_prompt(domain: DomainConfig,
                        current: str,
                        entry: Entry,
                        tag: Optional[str],
                        context: str,
                        history: str,
                        today: str) -> str:
    """Prompt for folding one new entry into a dashboard."""
    lines = [
        f'**Goal:** {domain.goal}',
        '',
        '**Input Data:**',
        f'- **Current Date:** {today}',
        f'- **New Entry ({tag or "ENTRY"}):** "{entry.content}"',
    ]
    if domain.history_active_days:
        lines.append(f'- **Recent History (last {domain.history_active_days} active days):**')
        lines.append(history or 'No recent history.')
    lines.append('- **Context (similar past entries):**')
    lines.append(context or 'No related entries found.')
    lines.extend(['', '**Current Dashboard State:**', current, '', '**Instructions for Updates:**'])

    for number, rule in enumerate(domain.section_rules, start=1):
        lines.append(f'{number}. **## {rule.section}:** {_rule_text(rule, rule.fires(True, tag))}')

    guidance = domain.tag_guidance.get(tag or '')
    if guidance:
        lines.extend(['', f'**Handling {tag}:** {guidance}'])
    if domain.constraints:
        lines.extend(['', '**Constraints:**'])
        lines.extend(f'- {constraint}' for constraint in domain.constraints)
    return '\n'.join(lines)


def build_refresh_prompt(domain: DomainConfig, current: str, history: str, today: str) -> str:
    """Prompt for polishing a dashboard without adding new content."""
    lines = [
        'Refine and polish the dashboard below. Fix formatting errors, remove duplication and make the '
        'sections flow. Do NOT add new facts or new entries.',
        '',
        f'- **Current Date:** {today}',
    ]
    if domain.history_active_days:
        lines.append('- **Recent History (fact-check against this):**')
        lines.append(history or 'No recent history.')
    lines.extend(['', '**Current Dashboard State:**', current, '', '**Section Rules:**'])
    for rule in domain.section_rules:
        lines.append(f'- **## {rule.section}:** {_rule_text(rule, rule.fires(False, None))}')
    if domain.constraints:
        lines.extend(f'- {constraint}' for constraint in domain.constraints)
    return '\n'.join(lines)


def enforce_section_rules(previous: str,
                          generated: str,
                          domain: DomainConfig,
                          tag: Optional[str] = None,
                          mode: str = INGEST) -> str:
    """
    Apply the domain's section rules to an oracle-generated dashboard.

    - A section present before but missing from the output is restored.
    - A preserve-unless-override section whose trigger did not fire is restored.
    - In ingest mode, a tag-triggered section whose tag did not fire is restored.
    - An append-only ledger never loses items.
    - A bounded section is truncated to its limit.

    Raises:
        SynthesisError: If the output has lost every section of the previous dashboard
    """
    previous_doc = parse(previous)
    generated_doc = parse(generated)
    if previous_doc.sections and not generated_doc.sections:
        raise SynthesisError('Synthesized dashboard has no sections; refusing to replace the current one')

    result = generated
    for old_section in previous_doc.sections:
        if generated_doc.find(old_section.title) is None:
            logger.warning(f'Restoring section "{old_section.title}" dropped by synthesis')
            result = replace_section(result, old_section.title, old_section)

    has_entry = mode == INGEST
    for rule in domain.section_rules:
        old = get_section(previous, rule.section)
        new = get_section(result, rule.section)
        fired = rule.fires(has_entry, tag)

        restore = (rule.merge_rule == MergeRule.PRESERVE
                   or (mode == INGEST and rule.trigger == Trigger.ON_SPECIFIC_TAG)) and not fired
        if restore and old is not None:
            if new is None or new.text != old.text:
                logger.debug(f'Section "{rule.section}" is not open for this update; keeping previous content')
            result = replace_section(result, rule.section, old)
            new = old

        if new is None:
            continue

        body = new.body
        if rule.is_ledger and old is not None:
            body = restore_missing_items(old.body, body)
        if rule.max_items:
            if rule.bound_by == 'date':
                body = keep_recent_dates(body, rule.max_items)
            else:
                body = keep_last_items(body, rule.max_items)
        if body != new.body:
            result = replace_section(result, rule.section, Section(new.heading, body))

    return result


class DashboardSynthesizer:
    """Full-document dashboard rewrite through the oracle."""

    def __init__(self, llm: Optional[BedrockLLM] = None):
        """Initialize the dashboard synthesizer."""
        self.llm = llm or BedrockLLM(config.bedrock_llm)

        logger.info('Initialized DashboardSynthesizer')

    def synthesize(self,
                   current: str,
                   domain: DomainConfig,
                   entry: Entry,
                   today: str,
                   tag: Optional[str] = None,
                   context: str = '',
                   history: str = '') -> str:
        """
        Fold a new entry into a dashboard.

        Args:
            current: Current dashboard markdown (or the domain template)
            domain: Domain whose rules apply
            entry: The newly saved entry
            today: Current date, 'YYYY-MM-DD'
            tag: Resolved domain tag of the entry
            context: Formatted similar past entries
            history: Formatted recent history

        Returns:
            The complete new dashboard markdown

        Raises:
            SynthesisError: If the oracle fails or returns an unusable document
        """
        prompt = build_update_prompt(domain, current, entry, tag, context, history, today)
        generated = self._generate(domain, prompt)
        return enforce_section_rules(current, generated, domain, tag=tag, mode=INGEST)

    def refresh(self, current: str, domain: DomainConfig, today: str, history: str = '') -> str:
        """
        Re-synthesize a dashboard without a new entry.

        Raises:
            SynthesisError: If the oracle fails or returns an unusable document
        """
        prompt = build_refresh_prompt(domain, current, history, today)
        generated = self._generate(domain, prompt)
        return enforce_section_rules(current, generated, domain, mode=REFRESH)

    def _generate(self, domain: DomainConfig, prompt: str) -> str:
        system_prompt = f'{domain.persona}\n\n{OUTPUT_RULES}'
        try:
            response = self.llm.generate(prompt, system_prompt=system_prompt)
        except BedrockLLMError as e:
            logger.error(f'Dashboard synthesis failed for {domain.name}: {e}')
            raise SynthesisError(f'Dashboard synthesis failed: {e}') from e

        document = sanitize_markdown(response)
        if not document:
            raise SynthesisError(f'Dashboard synthesis for {domain.name} returned an empty document')
        return document
