"""Data normalization module for entityintel."""

from .names import normalize_entity_name, match_prefix, MATCH_PREFIX_LENGTH

__all__ = [
    "normalize_entity_name",
    "match_prefix",
    "MATCH_PREFIX_LENGTH",
]
