"""
Response Parsing Adapters
"""

from .brand_matcher import (
    BrandMatcher,
    BrandMatch,
    BrandConfig,
    build_candidates,
    detect_companies,
    domain_aliases,
)
from .reply_decoder import (
    ReplyDecoder,
    ReplyShape,
    DecodedReply,
    clean_items,
    salvage_quoted_strings,
    strip_code_fences,
    match_string_array,
    match_nested_object_array,
    match_keyed_object,
    match_object_field_array,
)

__all__ = [
    "BrandMatcher",
    "BrandMatch",
    "BrandConfig",
    "build_candidates",
    "detect_companies",
    "domain_aliases",
    "ReplyDecoder",
    "ReplyShape",
    "DecodedReply",
    "clean_items",
    "salvage_quoted_strings",
    "strip_code_fences",
    "match_string_array",
    "match_nested_object_array",
    "match_keyed_object",
    "match_object_field_array",
]
