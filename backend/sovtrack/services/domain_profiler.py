"""
Domain Profiler
Business overview and short description for a domain
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from sovtrack import prompts
from .base import LLMStage
from .exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)

OVERVIEW_PATTERN = re.compile(r"OVERVIEW:\s*(.*?)(?=DESCRIPTION:|$)", re.DOTALL)
DESCRIPTION_PATTERN = re.compile(r"DESCRIPTION:\s*(.*?)$", re.DOTALL)
SENTENCE_SPLIT_PATTERN = re.compile(r"[.!?]+")

MAX_DESCRIPTION_LENGTH = 200


@dataclass
class DomainProfile:
    """What downstream stages know about a domain"""
    domain: str
    profile_text: str
    description: str
    is_fallback: bool = False


def normalize_domain(domain: str) -> str:
    """'https://www.Acme-Widgets.com/about' -> 'acme-widgets.com'"""
    v = (domain or "").lower().strip()
    v = re.sub(r"^https?://", "", v)
    if v.startswith("www."):
        v = v[4:]
    return v.split("/")[0].rstrip(".")


def display_name_from_domain(domain: str) -> str:
    """'https://www.acme-widgets.com' -> 'Acme-widgets'"""
    stem = normalize_domain(domain).split(".")[0]
    if not stem:
        return ""
    return stem[0].upper() + stem[1:].lower()


def shorten_description(description: str) -> str:
    """Cut long descriptions to two sentences, or 200 characters"""
    description = description.strip()
    if len(description) <= MAX_DESCRIPTION_LENGTH:
        return description

    sentences = [s.strip() for s in SENTENCE_SPLIT_PATTERN.split(description) if s.strip()]
    if len(sentences) >= 2:
        return ". ".join(sentences[:2]) + "."

    shortened = description[:MAX_DESCRIPTION_LENGTH].strip()
    if not shortened.endswith("."):
        shortened += "..."
    return shortened


def parse_profile_reply(reply: str) -> Tuple[str, str]:
    """
    Split a reply on its OVERVIEW:/DESCRIPTION: labels.

    Without labels the whole reply serves as both fields.
    """
    text = (reply or "").strip()
    overview_match = OVERVIEW_PATTERN.search(text)
    description_match = DESCRIPTION_PATTERN.search(text)

    overview = (overview_match.group(1).strip() if overview_match else "") or text
    if description_match:
        description = shorten_description(description_match.group(1))
    else:
        description = overview

    return overview, description or overview


def fallback_profile(domain: str) -> DomainProfile:
    overview = prompts.render("domain_profile_fallback_overview", domain=domain)
    description = prompts.render("domain_profile_fallback_description", domain=domain)
    return DomainProfile(
        domain=domain,
        profile_text=f"OVERVIEW: {overview}\nDESCRIPTION: {description}",
        description=description,
        is_fallback=True,
    )


class DomainProfiler(LLMStage):
    """
    Asks the model what a domain's business does.

    Holds no state between calls; results are returned to the caller.
    """

    stage_name = "domain_profile"

    async def profile(self, domain: str) -> DomainProfile:
        """Profile a domain; never raises for model problems"""
        try:
            reply = await self._complete(
                prompts.render("domain_profile", domain=domain),
                self.settings.PROFILE_MODEL,
            )
        except UpstreamUnavailable as e:
            logger.warning("Using fallback profile for %s: %s", domain, e)
            return fallback_profile(domain)

        if not reply.strip():
            logger.warning("Empty profile reply for %s, using fallback", domain)
            return fallback_profile(domain)

        overview, description = parse_profile_reply(reply)
        return DomainProfile(domain=domain, profile_text=overview, description=description)

    async def extract_location(self, description: Optional[str]) -> Optional[str]:
        """Primary operating location named in a description, if any"""
        if not description:
            return None

        try:
            reply = await self._complete(
                prompts.render("location", description=description),
                self.settings.LOCATION_MODEL,
                temperature=0.1,
                max_tokens=self.settings.LOCATION_MAX_TOKENS,
            )
        except UpstreamUnavailable as e:
            logger.warning("Location extraction failed: %s", e)
            return None

        location = reply.strip().strip('"').strip()
        if not location or location.lower() in ("null", "none"):
            return None
        return location
