"""
Intent router: classifies raw input and extracts attribution.
"""

import json
from typing import Optional

from pydantic import ValidationError

from ..models.schemas import RouterOutput
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.json_utils import extract_json
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

ROUTER_SYSTEM_PROMPT = """
You are a hyper-efficient data processing engine for a 'Second Brain' application. Your sole purpose is to receive a piece of content, analyze it, and return a structured JSON object.

**RULES:**
1. **Determine Intent:**
    * If the input asks a question about the user's own past notes or life (e.g. "What did I think about X?"), set 'intent: "query"'.
    * If the input reports progress on, finishing, or abandoning a book (e.g. "Finished Dune, 4/5"), set 'intent: "log_reading"'.
    * Otherwise set 'intent: "save"'.
2. **Determine Originality:**
    * If the content appears to be the user's own thoughts, set 'isOriginal: true'.
    * If it contains quotes, is a direct paste from a web article, or is a URL, set 'isOriginal: false'.
3. **Extract Source (if 'isOriginal: false'):**
    * If a URL is present, populate 'sourceURL'.
    * Attempt to identify 'sourceTitle' and 'sourceAuthor' from the text if available.
4. **Process Multimedia:**
    * **For Audio:** Assume the input is a transcription. Extract the core message into 'content'. Generate 'tags' describing the emotional tone (e.g. "emotional_tone: excited"). Set 'mediaType: "audio"'.
    * **For Images:** Assume the input is a description of an image. Summarize the description into 'content'. Generate 'tags' describing the key visual concepts (e.g. "concept: UML Diagram"). Set 'mediaType: "image"'.
    * **For Text:** The input is the content; copy it into 'content' unchanged. Set 'mediaType: "text"'.
5. **Output JSON ONLY:** Your entire response MUST be a single, valid JSON object. Do not include any explanations or conversational text.

**JSON OUTPUT FORMAT:**
{
  "intent": "save" | "query" | "log_reading",
  "isOriginal": boolean,
  "sourceURL": string | null,
  "sourceTitle": string | null,
  "sourceAuthor": string | null,
  "content": string,
  "tags": string[],
  "mediaType": "text" | "audio" | "image"
}
"""


class ClassificationError(Exception):
    """Raised when the router output cannot be turned into a valid classification."""
    pass


class IntentRouterService:
    """Turn raw input into a validated RouterOutput."""

    def __init__(self, llm: Optional[BedrockLLM] = None, model_id: Optional[str] = None):
        """Initialize the intent router."""
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.model_id = model_id or config.bedrock_llm.router_model_id

        logger.info('Initialized IntentRouterService')

    def classify(self, raw_input: str, media_type: Optional[str] = None) -> RouterOutput:
        """
        Classify one raw input.

        The declared media type always wins over the router's guess; an
        undeclared one means text. For text the content is the caller's raw
        input regardless of what the router returns.

        Args:
            raw_input: Text, transcription or image description as submitted
            media_type: Media type declared by the caller (text when omitted)

        Returns:
            Validated RouterOutput

        Raises:
            ClassificationError: If the oracle fails or its output is not valid
        """
        media_type = media_type or 'text'
        prompt = f'INPUT:\n{raw_input}'
        if media_type != 'text':
            prompt = f'INPUT ({media_type}):\n{raw_input}'

        try:
            response = self.llm.generate(prompt, system_prompt=ROUTER_SYSTEM_PROMPT, model_id=self.model_id)
        except BedrockLLMError as e:
            logger.error(f'Intent router call failed: {e}')
            raise ClassificationError(f'Intent router unavailable: {e}') from e

        try:
            payload = extract_json(response)
        except json.JSONDecodeError as e:
            logger.error(f'Intent router returned non-JSON output: {response[:200]!r}')
            raise ClassificationError('Intent router returned non-JSON output') from e

        if not isinstance(payload, dict):
            raise ClassificationError(f'Intent router returned {type(payload).__name__}, expected an object')

        payload['mediaType'] = media_type
        if media_type == 'text':
            payload['content'] = raw_input

        try:
            result = RouterOutput.model_validate(payload)
        except ValidationError as e:
            logger.error(f'Intent router output failed validation: {e}')
            raise ClassificationError(f'Intent router output failed validation: {e}') from e

        logger.debug(f'Classified input as {result.intent} (original={result.is_original}, media={result.media_type})')
        return result
