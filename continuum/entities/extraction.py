"""
Entity extraction for Continuum.

Finds companies, assets and people in report or message text. The language
model does the heavy lifting; a pattern-based pass is the fallback whenever
the model is unavailable or answers with something unparseable.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from ..agents.base import TextGenerator
from ..agents.runner import strip_code_fences
from ..config import config
from ..errors import ContinuumError
from ..models import EntityMention


# Wider vocabulary used by extraction prompts, folded onto the stored types
_TYPE_ALIASES = {
    "company": "company",
    "corporation": "company",
    "stock": "asset",
    "asset": "asset",
    "cryptocurrency": "asset",
    "crypto": "asset",
    "commodity": "asset",
    "index": "asset",
    "etf": "asset",
    "mutual_fund": "asset",
    "currency": "asset",
    "person": "person",
    "sector": "sector",
    "industry": "sector",
}

_TICKER_PATTERN = re.compile(r'\$([A-Z]{1,5})\b')
_COMPANY_PATTERNS = [
    re.compile(r'\b([A-Z][a-z]+ (?:Inc|Corp|Corporation|LLC|Ltd|Company|Co\.))'),
    re.compile(r'\b(Apple|Google|Microsoft|Amazon|Tesla|Meta|Netflix|Nvidia)\b', re.IGNORECASE),
]
_SNIPPET_RADIUS = 50


def normalize_entity_type(raw: Any) -> str:
    """
    Map an extractor's type label onto company, asset, person, sector or other.

    Args:
        raw: Label such as "STOCK", "Company" or "mutual fund"

    Returns:
        One of the five stored entity types
    """
    if not isinstance(raw, str):
        return "other"
    label = raw.strip().lower().replace(" ", "_").replace("-", "_")
    return _TYPE_ALIASES.get(label, "other")


def _clamp(value: Any, low: float, high: float) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(low, min(high, float(value)))


def parse_entities_json(response: str) -> List[Dict[str, Any]]:
    """
    Pull the entity list out of a model response.

    Args:
        response: Raw model output, possibly fenced or wrapped in prose

    Returns:
        Entity dictionaries that carry both a name and a type

    Raises:
        ValueError: If no JSON array can be parsed from the response
    """
    match = re.search(r'\[[\s\S]*\]', strip_code_fences(response))
    if not match:
        raise ValueError("No JSON array found in response")

    entities = json.loads(match.group(0))
    return [
        e for e in entities
        if isinstance(e, dict) and e.get("name") and e.get("type")
    ]


def _snippet(text: str, start: int, end: int) -> str:
    return text[max(0, start - _SNIPPET_RADIUS):min(len(text), end + _SNIPPET_RADIUS)]


class EntityExtractor:
    """
    Turns free text into unresolved entity mentions.
    """

    def __init__(self, generator: Optional[TextGenerator] = None,
                 char_limit: Optional[int] = None):
        """
        Initialize the extractor.

        Args:
            generator: Model used for extraction; None means patterns only
            char_limit: How much of the text is sent to the model (defaults to config value)
        """
        self.generator = generator
        self.char_limit = char_limit or config.extraction_char_limit

    async def extract(self, text: str, source_id: Optional[str] = None,
                      source_type: str = "report", thread_id: Optional[str] = None,
                      title: Optional[str] = None) -> List[EntityMention]:
        """
        Extract mentions from a report or message.

        Args:
            text: Source text
            source_id: Revision or message id the mentions belong to
            source_type: "report" or "message"
            thread_id: Owning thread (optional)
            title: Report title passed to the model (optional)

        Returns:
            Unresolved mentions in the order they were found
        """
        if not text or not text.strip():
            return []

        extracted: List[Dict[str, Any]] = []
        if self.generator is not None:
            try:
                extracted = await self._extract_with_ai(text, title)
            except (ContinuumError, ValueError) as e:
                logging.warning(f"AI entity extraction failed, using pattern fallback: {e}")

        if not extracted:
            extracted = self.extract_simple(text)

        return [
            EntityMention(
                name=str(item["name"]).strip(),
                entity_type=normalize_entity_type(item.get("type")),
                ticker=str(item["ticker"]).strip().upper() if item.get("ticker") else None,
                source_id=source_id,
                source_type=source_type,
                thread_id=thread_id,
                sentiment=_clamp(item.get("sentiment"), -1.0, 1.0),
                relevance=_clamp(item.get("relevance"), 0.0, 1.0),
                context=str(item.get("context") or "")
            )
            for item in extracted
        ]

    async def _extract_with_ai(self, text: str, title: Optional[str]) -> List[Dict[str, Any]]:
        prompt = f"""Extract entities from the following financial text.

Title: {title or 'N/A'}

Content:
{text[:self.char_limit]}

Extract all important entities. Return only a valid JSON array."""

        response = await self.generator.generate(None, prompt)
        return parse_entities_json(response)

    def extract_simple(self, text: str) -> List[Dict[str, Any]]:
        """
        Pattern-based extraction of $TICKER symbols and company names.

        Args:
            text: Source text

        Returns:
            Entity dictionaries, deduplicated by name and type
        """
        found: List[Dict[str, Any]] = []

        for match in _TICKER_PATTERN.finditer(text):
            found.append({
                "name": match.group(1),
                "type": "STOCK",
                "ticker": match.group(1),
                "context": _snippet(text, match.start(), match.end()),
            })

        for pattern in _COMPANY_PATTERNS:
            for match in pattern.finditer(text):
                found.append({
                    "name": match.group(1),
                    "type": "COMPANY",
                    "context": _snippet(text, match.start(), match.end()),
                })

        unique: Dict[tuple, Dict[str, Any]] = {}
        for item in found:
            key = (item["name"].casefold(), item["type"])
            unique.setdefault(key, item)
        return list(unique.values())
