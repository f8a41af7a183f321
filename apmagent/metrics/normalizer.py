"""
APM Agent Transaction Segment Normalizer

Collapses high-cardinality path segments of transaction names using the
``transaction_segment_terms`` rules delivered by the collector:

    {"prefix": "WebTransaction/Uri/store", "terms": ["checkout", "cart"]}

After the prefix, every segment not in ``terms`` becomes ``*`` and runs of
``*`` collapse into one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class NormalizationResult:
    matched: bool
    value: str


@dataclass
class SegmentTermsRule:
    prefix: str
    terms: List[str] = field(default_factory=list)


class TxSegmentNormalizer:
    """Applies segment term rules to full transaction names."""

    def __init__(self):
        self.terms: List[SegmentTermsRule] = []

    def load(self, rules: Any) -> None:
        """Replace the rule set. Anything but a list is ignored."""
        if not isinstance(rules, list):
            logger.warning(
                "Segment terms must be a list, ignoring",
                value_type=type(rules).__name__,
            )
            return

        self.terms = _filter_rules(rules)
        logger.debug("Segment terms loaded", rule_count=len(self.terms))

    def normalize(self, path: str) -> NormalizationResult:
        for rule in self.terms:
            if not path.startswith(rule.prefix):
                continue

            parts = path[len(rule.prefix):].split("/")
            result: List[str] = []
            previous = None

            for i, segment in enumerate(parts):
                if segment == "" and i + 1 == len(parts):
                    break

                if segment not in rule.terms:
                    if previous == "*":
                        continue
                    previous = "*"
                else:
                    previous = segment
                result.append(previous)

            normalized = rule.prefix + "/".join(result)
            logger.debug("Transaction name normalized", original=path, normalized=normalized)
            return NormalizationResult(matched=True, value=normalized)

        return NormalizationResult(matched=False, value=path)


def _filter_rules(rules: List[Any]) -> List[SegmentTermsRule]:
    """Validate rules; later rules for the same prefix replace earlier ones."""
    by_prefix: Dict[str, SegmentTermsRule] = {}

    for rule in rules:
        if not isinstance(rule, dict):
            logger.debug("Segment terms rule is not an object, skipping")
            continue

        prefix = rule.get("prefix")
        terms = rule.get("terms")
        if not isinstance(prefix, str) or not prefix:
            logger.debug("Segment terms rule has no prefix, skipping")
            continue
        if not isinstance(terms, list) or not all(isinstance(t, str) for t in terms):
            logger.debug("Segment terms rule has invalid terms, skipping", prefix=prefix)
            continue

        if not prefix.endswith("/"):
            prefix += "/"

        segments = prefix[:-1].split("/")
        if len(segments) < 2 or not all(segments):
            logger.debug("Segment terms prefix is malformed, skipping", prefix=prefix)
            continue

        by_prefix[prefix] = SegmentTermsRule(prefix=prefix, terms=list(terms))

    return list(by_prefix.values())
