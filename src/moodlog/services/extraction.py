"""Locate the JSON payload inside a model transcript.

Models wrap their structured answer in prose and markdown fencing. The
extractor works on the fully reassembled content (never on single tokens), so
fence markers split across tokens are found like any other text.
"""

import re
from dataclasses import dataclass
from typing import Optional

from moodlog.utils.logging import get_logger


logger = get_logger(__name__)

JSON_FENCE_OPEN = "```json"
JSON_FENCE_CLOSE = "```"

_OPEN_FENCE = re.compile(re.escape(JSON_FENCE_OPEN), re.IGNORECASE)
_FENCED_JSON = re.compile(
    re.escape(JSON_FENCE_OPEN) + r"([\s\S]*?)" + re.escape(JSON_FENCE_CLOSE),
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ExtractionResult:
    """A candidate JSON string and how it was found."""

    candidate: str
    method: str  # "fenced", "fenced_unterminated" or "braces"


def extract_json_candidate(content: str) -> Optional[ExtractionResult]:
    """
    Find the JSON object candidate in accumulated content.

    Order of preference, first match wins:
    1. A fenced ```json block: the text strictly between the markers, trimmed.
       When the opening marker arrived but the closing one never did (the
       stream was cut short), everything after the opening marker.
    2. The greedy span from the first ``{`` to the last ``}``.
    3. Nothing: prose-only answers are a valid outcome, not an error.

    Args:
        content: Finalized content transcript

    Returns:
        ExtractionResult, or None when no candidate exists

    Example:
        >>> extract_json_candidate('Sure!\\n```json\\n{"a": 1}\\n```')
        ExtractionResult(candidate='{"a": 1}', method='fenced')
    """
    if not content:
        return None

    match = _FENCED_JSON.search(content)
    if match:
        candidate = match.group(1).strip()
        if candidate:
            logger.debug("extraction_fenced_block", length=len(candidate))
            return ExtractionResult(candidate=candidate, method="fenced")

    open_fence = _OPEN_FENCE.search(content)
    if open_fence and not match:
        tail = content[open_fence.end():].strip()
        if "{" in tail:
            logger.debug("extraction_unterminated_fence", length=len(tail))
            return ExtractionResult(candidate=tail, method="fenced_unterminated")

    start = content.find("{")
    end = content.rfind("}")
    if start != -1 and end > start:
        candidate = content[start:end + 1]
        logger.debug("extraction_brace_span", start=start, end=end)
        return ExtractionResult(candidate=candidate, method="braces")

    return None
