"""
Brand Matching Engine
Detects brand and competitor presence in model replies
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz, process


@dataclass
class BrandMatch:
    """A company found in a reply"""
    mentioned_text: str          # Exact text found in response
    normalized_name: str         # Canonical candidate name
    character_offset: int        # Character position of the first occurrence
    context_snippet: str         # Surrounding context
    match_type: str              # "exact", "alias", "fuzzy"
    match_confidence: float      # 0.0 - 1.0
    is_own_brand: bool           # True if this is the tracked brand
    occurrences: int = 1         # How often it appeared; informational only


@dataclass
class BrandConfig:
    """A candidate company to match"""
    name: str
    aliases: List[str] = field(default_factory=list)
    is_own_brand: bool = False


def domain_aliases(domain: Optional[str]) -> List[str]:
    """
    Brand aliases derived from a domain.

    "www.acme-widgets.com" -> ["acme-widgets.com", "acme-widgets"]
    """
    if not domain:
        return []
    host = domain.lower().strip()
    host = re.sub(r"^https?://", "", host).split("/")[0]
    if host.startswith("www."):
        host = host[4:]
    aliases = [host]
    stem = host.split(".")[0]
    if stem and stem != host:
        aliases.append(stem)
    return aliases


class BrandMatcher:
    """
    Matches candidate names in text:
    1. Exact match (case-insensitive, word boundaries)
    2. Alias match
    3. Fuzzy match (optional, for typos and variations)

    Matching is presence-based: each candidate yields at most one BrandMatch
    per text, however many times it appears. When a shorter name sits inside
    a longer candidate's match ("Acme" inside "Acme Rival"), the longer one
    claims that span.
    """

    # Minimum fuzzy match score to consider a match
    FUZZY_THRESHOLD = 85

    # Context window size (characters before/after match)
    CONTEXT_WINDOW = 100

    def __init__(
        self,
        candidates: List[BrandConfig],
        fuzzy: bool = False,
        fuzzy_threshold: Optional[int] = None,
    ):
        self.candidates = candidates
        self.fuzzy = fuzzy
        self.fuzzy_threshold = fuzzy_threshold or self.FUZZY_THRESHOLD
        self._build_match_index()

    def _build_match_index(self):
        """Lowercase surface form -> (candidate, is_alias)"""
        self.exact_matches: Dict[str, Tuple[BrandConfig, bool]] = {}
        self.all_brand_names: List[Tuple[str, BrandConfig]] = []

        for brand in self.candidates:
            key = brand.name.strip().lower()
            if key and key not in self.exact_matches:
                self.exact_matches[key] = (brand, False)
                self.all_brand_names.append((brand.name, brand))

            for alias in brand.aliases:
                key = alias.strip().lower()
                if key and key not in self.exact_matches:
                    self.exact_matches[key] = (brand, True)
                    self.all_brand_names.append((alias, brand))

    def _get_context(self, text: str, start: int, end: int) -> str:
        """Extract context around a match"""
        context_start = max(0, start - self.CONTEXT_WINDOW)
        context_end = min(len(text), end + self.CONTEXT_WINDOW)

        context = text[context_start:context_end]

        if context_start > 0:
            context = "..." + context
        if context_end < len(text):
            context = context + "..."

        return context.strip()

    def _find_exact_matches(self, text: str) -> List[Tuple[str, int, BrandConfig, bool]]:
        """Every word-bounded occurrence of every surface form"""
        matches = []
        text_lower = text.lower()

        for match_text, (brand, is_alias) in self.exact_matches.items():
            start = 0
            while True:
                pos = text_lower.find(match_text, start)
                if pos == -1:
                    break

                before_ok = pos == 0 or not text_lower[pos - 1].isalnum()
                after_ok = (pos + len(match_text) >= len(text_lower) or
                            not text_lower[pos + len(match_text)].isalnum())

                if before_ok and after_ok:
                    actual_text = text[pos:pos + len(match_text)]
                    matches.append((actual_text, pos, brand, is_alias))

                start = pos + 1

        return matches

    @staticmethod
    def _claim_spans(
        matches: List[Tuple[str, int, BrandConfig, bool]]
    ) -> Tuple[List[Tuple[str, int, BrandConfig, bool]], List[Tuple[int, int]]]:
        """Longest surface forms claim their spans first"""
        claimed: List[Tuple[int, int]] = []
        kept = []
        for match in sorted(matches, key=lambda m: (-len(m[0]), m[1])):
            start, end = match[1], match[1] + len(match[0])
            if any(s < end and start < e for s, e in claimed):
                continue
            claimed.append((start, end))
            kept.append(match)
        return kept, claimed

    def _find_fuzzy_matches(
        self,
        text: str,
        exclude_positions: List[Tuple[int, int]]
    ) -> List[Tuple[str, int, BrandConfig, float]]:
        """Find fuzzy matches for candidate names"""
        matches = []

        # Capitalized words/phrases are the plausible company names
        pattern = r'\b[A-Z][a-zA-Z0-9]*(?:\s+[A-Z][a-zA-Z0-9]*)*\b'
        brand_names = [name for name, _ in self.all_brand_names]
        if not brand_names:
            return matches

        for match in re.finditer(pattern, text):
            candidate = match.group()
            start, end = match.span()

            if any(s < end and start < e for s, e in exclude_positions):
                continue

            result = process.extractOne(
                candidate,
                brand_names,
                scorer=fuzz.ratio,
                score_cutoff=self.fuzzy_threshold
            )

            if result:
                _, score, index = result
                _, brand = self.all_brand_names[index]
                matches.append((candidate, start, brand, score / 100.0))

        return matches

    def find_mentions(self, text: str) -> List[BrandMatch]:
        """
        Find the companies present in text.

        Args:
            text: The model reply to analyze

        Returns:
            One BrandMatch per candidate found, ordered by first occurrence
        """
        if not text:
            return []

        found: Dict[str, BrandMatch] = {}

        exact_matches, claimed = self._claim_spans(self._find_exact_matches(text))
        for match_text, pos, brand, is_alias in sorted(exact_matches, key=lambda m: m[1]):
            existing = found.get(brand.name)
            if existing:
                existing.occurrences += 1
                continue
            found[brand.name] = BrandMatch(
                mentioned_text=match_text,
                normalized_name=brand.name,
                character_offset=pos,
                context_snippet=self._get_context(text, pos, pos + len(match_text)),
                match_type="alias" if is_alias else "exact",
                match_confidence=1.0,
                is_own_brand=brand.is_own_brand,
            )

        if self.fuzzy:
            for match_text, pos, brand, confidence in self._find_fuzzy_matches(text, claimed):
                existing = found.get(brand.name)
                if existing:
                    existing.occurrences += 1
                    continue
                found[brand.name] = BrandMatch(
                    mentioned_text=match_text,
                    normalized_name=brand.name,
                    character_offset=pos,
                    context_snippet=self._get_context(text, pos, pos + len(match_text)),
                    match_type="fuzzy",
                    match_confidence=confidence,
                    is_own_brand=brand.is_own_brand,
                )

        return sorted(found.values(), key=lambda m: m.character_offset)

    def get_own_brand_mentions(self, mentions: List[BrandMatch]) -> List[BrandMatch]:
        """Filter to only own brand mentions"""
        return [m for m in mentions if m.is_own_brand]

    def get_competitor_mentions(self, mentions: List[BrandMatch]) -> List[BrandMatch]:
        """Filter to only competitor mentions"""
        return [m for m in mentions if not m.is_own_brand]


def build_candidates(
    brand_name: str,
    competitors: Iterable[str],
    brand_aliases: Sequence[str] = (),
) -> List[BrandConfig]:
    """Brand first, then competitors; a competitor equal to the brand is dropped"""
    candidates = [BrandConfig(name=brand_name, aliases=list(brand_aliases), is_own_brand=True)]
    seen = {brand_name.strip().lower()}
    for name in competitors:
        if not isinstance(name, str) or not name.strip():
            continue
        key = name.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        candidates.append(BrandConfig(name=name.strip()))
    return candidates


def detect_companies(
    text: str,
    brand_name: str,
    competitors: Iterable[str],
    brand_aliases: Sequence[str] = (),
    fuzzy: bool = False,
    threshold: int = BrandMatcher.FUZZY_THRESHOLD,
) -> List[BrandMatch]:
    """One match per company present in text; no I/O"""
    matcher = BrandMatcher(
        build_candidates(brand_name, competitors, brand_aliases),
        fuzzy=fuzzy,
        fuzzy_threshold=threshold,
    )
    return matcher.find_mentions(text)
