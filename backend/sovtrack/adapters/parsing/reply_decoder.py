"""
Model Reply Decoder
Turns free-text model replies into string lists.

A reply goes through an ordered list of shape matchers. Each matcher either
returns the decoded list or None to let the next one try. When strict JSON
parsing fails, or no matcher accepts the parsed payload, quoted substrings are
salvaged from the raw text. The last resort is a caller-supplied fallback.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Sequence


class ReplyShape(str, Enum):
    """How a reply was decoded"""
    STRING_ARRAY = "string_array"              # ["a", "b"]
    NESTED_OBJECT_ARRAY = "nested_object_array"  # [{"competitors": ["a"]}]
    KEYED_OBJECT = "keyed_object"              # {"competitors": ["a"]}
    OBJECT_FIELD_ARRAY = "object_field_array"  # [{"query": "a"}, {"query": "b"}]
    SALVAGED = "salvaged"                      # quoted strings pulled from text
    FALLBACK = "fallback"                      # deterministic default
    EMPTY = "empty"                            # nothing usable, no fallback given


@dataclass
class DecodedReply:
    """Result of decoding one model reply"""
    items: List[str]
    shape: ReplyShape
    raw_count: int = 0  # entries before cleaning/capping
    dropped: List[Any] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.shape in (ReplyShape.FALLBACK, ReplyShape.EMPTY)


ShapeMatcher = Callable[[Any], Optional[List[Any]]]

QUOTED_STRING_PATTERN = re.compile(r'"([^"]+)"')
CODE_FENCE_PATTERN = re.compile(r"^```(?:json|JSON)?\s*(.*?)\s*```$", re.DOTALL)

_NOT_JSON = object()


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, if any"""
    cleaned = (text or "").strip()
    match = CODE_FENCE_PATTERN.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def load_json(text: str) -> Any:
    """Strict JSON parse; returns a sentinel on failure"""
    try:
        return json.loads(strip_code_fences(text))
    except (ValueError, TypeError):
        return _NOT_JSON


def salvage_quoted_strings(text: str) -> List[str]:
    """Pull every double-quoted substring out of malformed JSON-like text"""
    return QUOTED_STRING_PATTERN.findall(text or "")


def clean_items(items: Iterable[Any], limit: Optional[int] = None) -> List[str]:
    """Keep non-empty strings, trimmed and de-duplicated in order, capped at limit"""
    cleaned: List[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        value = item.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    if limit is not None:
        cleaned = cleaned[:limit]
    return cleaned


# ============================================================================
# SHAPE MATCHERS
# ============================================================================

def match_string_array(payload: Any) -> Optional[List[Any]]:
    """A flat array; non-string entries are dropped later"""
    if not isinstance(payload, list):
        return None
    if payload and not any(isinstance(item, str) for item in payload):
        return None
    return payload


def match_nested_object_array(key: str) -> ShapeMatcher:
    """An array whose first object carries a list under key"""
    def matcher(payload: Any) -> Optional[List[Any]]:
        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            value = payload[0].get(key)
            if isinstance(value, list):
                return value
        return None
    return matcher


def match_keyed_object(key: str) -> ShapeMatcher:
    """A single object carrying a list under key"""
    def matcher(payload: Any) -> Optional[List[Any]]:
        if isinstance(payload, dict):
            value = payload.get(key)
            if isinstance(value, list):
                return value
        return None
    return matcher


def match_object_field_array(fields: Sequence[str]) -> ShapeMatcher:
    """An array of objects each holding the text under one of fields"""
    def matcher(payload: Any) -> Optional[List[Any]]:
        if not isinstance(payload, list) or not payload:
            return None
        if not all(isinstance(item, dict) for item in payload):
            return None
        values = []
        for item in payload:
            for name in fields:
                if isinstance(item.get(name), str):
                    values.append(item[name])
                    break
        return values or None
    return matcher


class ReplyDecoder:
    """
    Ordered shape-matcher decoder.

    Usage:
        decoder = ReplyDecoder(
            matchers=[
                (ReplyShape.STRING_ARRAY, match_string_array),
                (ReplyShape.KEYED_OBJECT, match_keyed_object("categories")),
            ],
            limit=4,
        )
        decoded = decoder.decode(reply_text, fallback=lambda: [...])
    """

    def __init__(
        self,
        matchers: Sequence[tuple],
        limit: Optional[int] = None,
        salvage: bool = True,
        salvage_ignore: Iterable[str] = (),
    ):
        self.matchers = list(matchers)
        self.limit = limit
        self.salvage = salvage
        # JSON keys that salvage would otherwise take for items
        self.salvage_ignore = {s.lower() for s in salvage_ignore}

    def _finish(self, raw: List[Any], shape: ReplyShape) -> DecodedReply:
        items = clean_items(raw, self.limit)
        dropped = [item for item in raw if not isinstance(item, str) or not item.strip()]
        return DecodedReply(items=items, shape=shape, raw_count=len(raw), dropped=dropped)

    def match(self, payload: Any) -> Optional[DecodedReply]:
        """Run the shape matchers over an already-parsed payload"""
        for shape, matcher in self.matchers:
            matched = matcher(payload)
            if matched is not None:
                return self._finish(matched, shape)
        return None

    def decode(
        self,
        text: Optional[str],
        fallback: Optional[Callable[[], List[str]]] = None,
    ) -> DecodedReply:
        """
        Decode a model reply.

        An accepted JSON shape is returned as-is even when it holds no usable
        entries; salvage runs only when parsing fails or no shape matches.
        """
        payload = load_json(text or "")
        if payload is not _NOT_JSON:
            decoded = self.match(payload)
            if decoded is not None:
                return decoded

        if self.salvage:
            salvaged = [
                s for s in salvage_quoted_strings(text or "")
                if s.strip().lower() not in self.salvage_ignore
            ]
            if salvaged:
                decoded = self._finish(salvaged, ReplyShape.SALVAGED)
                if decoded.items:
                    return decoded

        if fallback is not None:
            return self._finish(list(fallback()), ReplyShape.FALLBACK)
        return DecodedReply(items=[], shape=ReplyShape.EMPTY)
