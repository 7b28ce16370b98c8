"""
Competitor Extractor
Five named competitors for a brand
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sovtrack import prompts
from sovtrack.adapters.llm import BaseLLMAdapter
from sovtrack.adapters.parsing import (
    DecodedReply,
    ReplyDecoder,
    ReplyShape,
    match_keyed_object,
    match_nested_object_array,
    match_string_array,
)
from sovtrack.config import PLACEHOLDER_COMPETITORS
from sovtrack.models import Brand, CompetitorSeed
from .base import LLMStage
from .exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass
class CompetitorExtraction:
    """Competitors plus the description used to find them"""
    competitors: List[str]
    brand_description: str
    shape: ReplyShape = ReplyShape.FALLBACK
    seeds: List[CompetitorSeed] = field(default_factory=list)

    @property
    def is_placeholder(self) -> bool:
        return self.competitors == PLACEHOLDER_COMPETITORS


class CompetitorExtractor(LLMStage):
    """
    Two model calls: a short business description that enriches the
    context, then the extraction itself.

    Accepted reply shapes, in order:
        ["A", "B"]
        [{"competitors": ["A", "B"]}]
        {"competitors": ["A", "B"]}
    then quoted-string salvage, then the five placeholders.
    """

    stage_name = "competitor_extraction"

    def __init__(self, db: AsyncSession, adapter: BaseLLMAdapter):
        super().__init__(adapter)
        self.db = db
        self.decoder = ReplyDecoder(
            matchers=[
                (ReplyShape.STRING_ARRAY, match_string_array),
                (ReplyShape.NESTED_OBJECT_ARRAY, match_nested_object_array("competitors")),
                (ReplyShape.KEYED_OBJECT, match_keyed_object("competitors")),
            ],
            limit=self.settings.MAX_COMPETITORS,
            salvage_ignore=["competitors"],
        )

    def decode(self, reply: str) -> DecodedReply:
        return self.decoder.decode(reply, fallback=lambda: list(PLACEHOLDER_COMPETITORS))

    async def describe_brand(self, brand_name: str, domain: str) -> str:
        """Enrichment call; degrades to a one-line description"""
        try:
            description = await self._complete(
                prompts.render("competitor_description", brand_name=brand_name, domain=domain),
                self.settings.COMPETITOR_MODEL,
            )
        except UpstreamUnavailable as e:
            logger.warning("Brand description failed for %s: %s", brand_name, e)
            description = ""

        description = description.strip()
        if not description:
            description = prompts.render("competitor_description_fallback", brand_name=brand_name, domain=domain)
        return description

    def build_context(self, description: str, website_content: Optional[str] = None) -> str:
        context = description
        if website_content:
            trimmed = self.adapter.truncate_to_tokens(
                website_content.strip(),
                self.settings.COMPETITOR_CONTEXT_MAX_TOKENS,
            )
            context = f"{context}\nWebsite Content: {trimmed}"
        return context

    async def extract_competitors(
        self,
        brand: Brand,
        website_content: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> CompetitorExtraction:
        """Never raises for model or parsing problems; at most five names"""
        description = await self.describe_brand(brand.brand_name, brand.domain)
        context = self.build_context(description, website_content)

        try:
            reply = await self._complete(
                prompts.render(
                    "competitor_extraction",
                    brand_name=brand.brand_name,
                    domain=brand.domain,
                    brand_context=context,
                ),
                self.settings.COMPETITOR_MODEL,
                system_prompt=prompts.system_prompt("competitor_extraction"),
            )
        except UpstreamUnavailable as e:
            logger.warning("Using placeholder competitors for %s: %s", brand.brand_name, e)
            return CompetitorExtraction(
                competitors=list(PLACEHOLDER_COMPETITORS),
                brand_description=description,
            )

        decoded = self.decode(reply)
        competitors = decoded.items
        shape = decoded.shape
        if shape == ReplyShape.FALLBACK:
            self._malformed(reply, "competitor")
        if not competitors:
            # A well-formed but empty answer still gets placeholders
            competitors = list(PLACEHOLDER_COMPETITORS)
            shape = ReplyShape.FALLBACK

        extraction = CompetitorExtraction(
            competitors=competitors,
            brand_description=description,
            shape=shape,
        )
        logger.info(
            "Competitors for %s (%s): %s",
            brand.brand_name, shape.value, ", ".join(competitors),
        )

        if not extraction.is_placeholder:
            extraction.seeds = await self.save_seeds(brand, competitors, session_id)
        return extraction

    async def save_seeds(
        self,
        brand: Brand,
        competitors: List[str],
        session_id: Optional[str] = None,
    ) -> List[CompetitorSeed]:
        seeds = []
        for name in competitors:
            seed = CompetitorSeed(
                brand_id=brand.id,
                competitor_name=name,
                mention_count=1,
                sentiment="neutral",
                analysis_session_id=session_id,
            )
            self.db.add(seed)
            seeds.append(seed)
        await self.db.flush()
        return seeds
