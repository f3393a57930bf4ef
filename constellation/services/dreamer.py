"""
The Dreamer: a serendipity job that links two distant entries into a Spark.
"""

import random
from typing import Optional

from ..models.core import Entry, entry_sk, user_pk
from ..utils.bedrock_embed import BedrockEmbedError
from ..utils.bedrock_llm import BedrockLLMError
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import new_entry_id, now_iso
from .domains import INBOX, all_namespaces
from .ingestion_orchestrator import IngestionOrchestrator

logger = get_logger(__name__)

SPARK_SOURCE_TITLE = 'The Dreamer (Serendipity Engine)'
SPARK_TAGS = ['spark', 'serendipity', 'dreamer']
NEIGHBOURHOOD_SIZE = 50
MIN_CANDIDATES = 5

SPARK_SYSTEM_PROMPT = """
You are a serendipity engine. You are shown two seemingly disparate entries from the user's second brain.
Find a creative, insightful or surprising connection between them.

1. Identify the core concept of each.
2. Find a "bridge" concept that links them: metaphorical, structural or thematic.
3. Write a short "Spark" entry (1-2 paragraphs) synthesizing this new insight.
4. Give it a title starting with "Spark: ".
"""


class DreamerError(Exception):
    """Raised when a Spark could not be generated or saved."""
    pass


class Dreamer:
    """Pick a random anchor, find a distant relative, and save the bridge between them."""

    def __init__(self, orchestrator: Optional[IngestionOrchestrator] = None, rng: Optional[random.Random] = None):
        self.orchestrator = orchestrator or IngestionOrchestrator()
        self.rng = rng or random.Random()

    def dream(self, user_id: str) -> Optional[Entry]:
        """
        Generate and save one Spark for a user.

        Returns:
            The saved Spark entry, or None when there is not enough material

        Raises:
            DreamerError: If the oracle fails
            StorageWriteError: If the Spark could not be saved
        """
        recall = self.orchestrator.recall
        namespaces = all_namespaces()

        random_vector = [self.rng.uniform(-1.0, 1.0) for _ in range(config.bedrock_embed.dimension)]
        seeds = recall.recall_across(user_id, random_vector, namespaces, top_k=1, cap=1)
        if not seeds:
            logger.info(f'Dreamer found no entries for {user_id}')
            return None

        seed = self._load(user_id, seeds[0].id)
        if seed is None:
            logger.info(f'Dreamer seed {seeds[0].id} has no stored record')
            return None

        try:
            seed_vector = self.orchestrator.embed.embed_document(seed.content)
        except BedrockEmbedError as e:
            raise DreamerError(f'Could not embed seed entry: {e}') from e

        neighbours = recall.recall_across(user_id, seed_vector, namespaces, top_k=NEIGHBOURHOOD_SIZE,
                                          cap=NEIGHBOURHOOD_SIZE)
        candidates = [hit for hit in neighbours if hit.id != seed.id]
        if len(candidates) < MIN_CANDIDATES:
            logger.info(f'Dreamer needs {MIN_CANDIDATES} related entries, found {len(candidates)}')
            return None

        # Connected but not obvious: a relative from the bottom half of the ranking
        distant_hit = candidates[self.rng.randint(len(candidates) // 2, len(candidates) - 1)]
        distant = self._load(user_id, distant_hit.id)
        if distant is None:
            logger.info(f'Dreamer satellite {distant_hit.id} has no stored record')
            return None
        logger.debug(f'Dreamer anchor {seed.id}, satellite {distant.id} (score {distant_hit.score:.3f})')

        prompt = f'**Entry A (The Anchor):**\n{seed.content}\n\n**Entry B (The Satellite):**\n{distant.content}'
        try:
            spark = self.orchestrator.llm.generate(prompt, system_prompt=SPARK_SYSTEM_PROMPT).strip()
        except BedrockLLMError as e:
            raise DreamerError(f'Could not generate a Spark: {e}') from e
        if not spark:
            raise DreamerError('Spark generation returned no text')

        timestamp = now_iso()
        entry = Entry(id=new_entry_id(),
                      user_id=user_id,
                      domain=INBOX.name,
                      content=spark,
                      created_at=timestamp,
                      updated_at=timestamp,
                      is_original=True,
                      media_type='text',
                      tags=list(SPARK_TAGS),
                      source_title=SPARK_SOURCE_TITLE,
                      last_accessed=timestamp)
        self.orchestrator.persist_entry(entry, INBOX)
        logger.info(f'Dreamer saved Spark {entry.id} for {user_id}')
        return entry

    def _load(self, user_id: str, entry_id: str) -> Optional[Entry]:
        item = self.orchestrator.store.get_item(user_pk(user_id), entry_sk(entry_id))
        return Entry.from_item(item) if item else None
