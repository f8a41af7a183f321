"""
APM Agent Attribute Filter

Decides which attributes may leave the process for each destination.

Rules come from configuration as plain strings. A rule ending in ``*`` is a
wildcard (prefix) rule, anything else is an exact rule. Every rule list is
compiled into two regular expressions that share common dotted prefixes:

    ["foo.bar", "foo.bang"]  ->  (?:foo\\.(?:bar|bang))

The wildcard expression is left open at the end; how far it matched is the
strength of the match. Exact matches are absolute, otherwise the strongest
rule wins.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Pattern, Tuple, Union

import structlog

from apmagent.types import (
    DESTINATION_DETAILS,
    SEGMENT_SCOPE_DETAILS,
    TRANS_SCOPE_DETAILS,
    Destination,
    DestinationDetail,
)

logger = structlog.get_logger(__name__)

NO_MATCH = 0
EXACT_MATCH = math.inf

# Filter verdicts; None means no rule applied to the key.
Verdict = Optional[bool]


@dataclass
class _RuleNode:
    token: str
    children: List["_RuleNode"] = field(default_factory=list)


@dataclass
class CompiledRules:
    """Exact and wildcard matchers for one include or exclude list."""
    exact: Optional[Pattern[str]] = None
    wildcard: Optional[Pattern[str]] = None


@dataclass
class RuleSet:
    include: CompiledRules = field(default_factory=CompiledRules)
    exclude: CompiledRules = field(default_factory=CompiledRules)


class AttributeFilter:
    """
    Tests attribute keys against the global and per-destination rules.

    The filter subscribes to configuration changes for every rule list it
    reads and recompiles itself (dropping its cache) whenever one changes.
    """

    def __init__(self, config):
        self.config = config
        self._rules: Dict[str, RuleSet] = {"global": RuleSet()}
        self._cache: Dict[Tuple[str, str], Verdict] = {}
        self._enabled_destinations = Destination.NONE

        config.subscribe("attributes.enabled", self._on_rules_changed)
        config.subscribe("attributes.include_enabled", self._on_rules_changed)
        config.subscribe("attributes.include", self._on_rules_changed)
        config.subscribe("attributes.exclude", self._on_rules_changed)

        for dest in DESTINATION_DETAILS:
            config.subscribe(f"{dest.name}.attributes.enabled", self._on_rules_changed)
            config.subscribe(f"{dest.name}.attributes.include", self._on_rules_changed)
            config.subscribe(f"{dest.name}.attributes.exclude", self._on_rules_changed)
            self._rules[dest.name] = RuleSet()

        self.update()

    def _on_rules_changed(self, _value=None) -> None:
        self.update()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @property
    def enabled_destinations(self) -> Destination:
        return self._enabled_destinations

    # === Rule Compilation ===

    def update(self) -> None:
        """Recompile every rule set from configuration and clear the cache."""
        attrs = self.config.attributes
        include_enabled = attrs.include_enabled

        self._rules["global"] = RuleSet(
            include=import_rules(attrs.include if include_enabled else []),
            exclude=import_rules(attrs.exclude),
        )
        self._cache = {}

        enabled = Destination.NONE
        for dest in DESTINATION_DETAILS:
            dest_attrs = getattr(self.config, dest.name).attributes
            if not dest_attrs.enabled:
                self._rules[dest.name] = RuleSet()
                continue

            enabled |= dest.id
            self._rules[dest.name] = RuleSet(
                include=import_rules(dest_attrs.include if include_enabled else []),
                exclude=import_rules(dest_attrs.exclude),
            )
        self._enabled_destinations = enabled

        logger.debug(
            "Attribute rules updated",
            enabled_destinations=int(enabled),
        )

    # === Testing ===

    def test(self, destination: Union[Destination, str], key: str) -> bool:
        """Return True if ``key`` may be attached to ``destination``."""
        if not self.config.attributes.enabled:
            return False

        dest = _resolve_destination(destination)
        if not (self._enabled_destinations & dest.id):
            return False

        return self._verdict(dest, key) is not False

    def filter_transaction(self, destinations: Destination, key: str) -> Destination:
        """Apply transaction-scope destination rules to ``destinations``."""
        return self._filter(TRANS_SCOPE_DETAILS, destinations, key)

    def filter_segment(self, destinations: Destination, key: str) -> Destination:
        """Apply segment-scope destination rules to ``destinations``."""
        return self._filter(SEGMENT_SCOPE_DETAILS, destinations, key)

    def filter_all(self, destinations: Destination, key: str) -> Destination:
        """Apply the rules of every destination to ``destinations``."""
        return self._filter(DESTINATION_DETAILS, destinations, key)

    def _filter(
        self,
        scope: Iterable[DestinationDetail],
        destinations: Destination,
        key: str,
    ) -> Destination:
        if not self.config.attributes.enabled:
            return Destination.NONE

        destinations = Destination(destinations)
        for dest in scope:
            if not (self._enabled_destinations & dest.id):
                destinations &= ~dest.id
                continue

            verdict = self._verdict(dest, key)
            if verdict is None:
                continue
            if verdict:
                destinations |= dest.id
            else:
                destinations &= ~dest.id

        return destinations

    def _verdict(self, dest: DestinationDetail, key: str) -> Verdict:
        cache_key = (dest.name, key)
        if cache_key in self._cache:
            return self._cache[cache_key]

        glob = self._rules["global"]
        result = _do_test(
            match_rules(glob.include, key),
            match_rules(glob.exclude, key),
            self._rules[dest.name],
            key,
        )

        if len(self._cache) < self.config.attributes.filter_cache_limit:
            self._cache[cache_key] = result

        return result


def _resolve_destination(destination: Union[Destination, str]) -> DestinationDetail:
    for dest in DESTINATION_DETAILS:
        if destination == dest.id or destination == dest.name or destination == dest.key:
            return dest
    raise ValueError(f"Unknown attribute destination: {destination!r}")


def _do_test(
    global_include: float,
    global_exclude: float,
    dest_rules: RuleSet,
    key: str,
) -> Verdict:
    """Combine global and destination match strengths into a verdict."""
    if global_exclude == EXACT_MATCH:
        return False
    dest_exclude = match_rules(dest_rules.exclude, key)
    if dest_exclude == EXACT_MATCH:
        return False

    if global_include == EXACT_MATCH:
        return True
    dest_include = match_rules(dest_rules.include, key)
    if dest_include == EXACT_MATCH:
        return True

    if (
        global_exclude == NO_MATCH
        and global_include == NO_MATCH
        and dest_exclude == NO_MATCH
        and dest_include == NO_MATCH
    ):
        return None

    if global_exclude == NO_MATCH and dest_exclude == NO_MATCH:
        return True

    return (
        (dest_include > dest_exclude and dest_include >= global_exclude)
        or (global_include > dest_exclude and global_include > global_exclude)
    )


def match_rules(rules: CompiledRules, key: str) -> float:
    """
    Strength of the best match of ``key`` against ``rules``.

    Returns ``NO_MATCH`` (0), ``EXACT_MATCH`` (inf), or for a wildcard match
    the length of the matched prefix plus one.
    """
    if rules.exact is not None and rules.exact.fullmatch(key):
        return EXACT_MATCH

    if rules.wildcard is None:
        return NO_MATCH

    match = rules.wildcard.match(key)
    return match.end() + 1 if match else NO_MATCH


def import_rules(rules: Iterable[str]) -> CompiledRules:
    """Compile raw rule strings into exact and wildcard matchers."""
    exact_rules: List[str] = []
    wildcard_rules: List[str] = []
    for rule in rules:
        if rule.endswith("*"):
            wildcard_rules.append(rule)
        else:
            exact_rules.append(rule)

    compiled = CompiledRules()
    if exact_rules:
        compiled.exact = re.compile(rules_to_regex(exact_rules))
    if wildcard_rules:
        compiled.wildcard = re.compile(rules_to_regex(wildcard_rules))
    return compiled


def _rule_sort_key(rule: str) -> Tuple[bool, int]:
    # exact first, then longest wildcard first
    return (rule.endswith("*"), -len(rule))


def rules_to_regex(rules: Iterable[str]) -> str:
    """
    Compose rules into one regular expression string.

    ``["foo.bar", "foo.bang*"]`` shares the ``foo\\.`` branch; the trailing
    ``*`` of a wildcard rule is dropped since the expression is left open.
    """
    tree: List[_RuleNode] = []

    for rule in sorted(rules, key=_rule_sort_key):
        parts = rule.split(".")
        level = tree
        for i, part in enumerate(parts):
            if i < len(parts) - 1:
                token = re.escape(part) + r"\."
            else:
                token = re.escape(part[:-1] if part.endswith("*") else part)

            node = next((n for n in level if n.token == token), None)
            if node is None:
                node = _RuleNode(token)
                level.append(node)
            level = node.children

    return "(?:" + "|".join(_render(node) for node in tree) + ")"


def _render(node: _RuleNode) -> str:
    if not node.children:
        return node.token
    return node.token + "(?:" + "|".join(_render(child) for child in node.children) + ")"
