"""Cheap, network-free classification of a URL's rendering complexity."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Mapping
from urllib.parse import SplitResult, urlsplit

from websnap.gate import HIGH_POLICY, LOW_POLICY, MEDIUM_POLICY, ResourcePolicy
from websnap.settings import Settings, StageBudgets

__all__ = [
    "ComplexityTier",
    "TierTemplate",
    "ComplexityProfile",
    "ProfilePolicy",
    "HostPredicate",
    "classify_url",
    "build_profile_policy",
    "load_profile_policy",
]

HostPredicate = Callable[[SplitResult], bool]


class ComplexityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True, slots=True)
class TierTemplate:
    """Budgets and filtering applied to every URL landing in one tier."""

    navigation_timeout_ms: int
    stage_budgets: StageBudgets
    resource_policy: ResourcePolicy
    quality_ceiling: int
    dom_ready_states: tuple[str, ...]
    lazy_scroll_max_steps: int


@dataclass(frozen=True, slots=True)
class ComplexityProfile:
    """Per-request budgets derived from the target URL."""

    tier: ComplexityTier
    navigation_timeout_ms: int
    readiness_budget_ms: int
    stage_budgets: StageBudgets
    resource_policy: ResourcePolicy
    quality_ceiling: int
    dom_ready_states: tuple[str, ...]
    lazy_scroll_max_steps: int

    @property
    def resource_filter_aggressiveness(self) -> str:
        return self.resource_policy.name


@dataclass(frozen=True, slots=True)
class ProfilePolicy:
    """Injectable classification table.

    ``heavy_host_patterns`` accepts exact hosts or ``*.suffix`` wildcards.
    ``predicates`` may force the high tier for URLs no host list can express.
    """

    templates: Mapping[ComplexityTier, TierTemplate]
    heavy_host_patterns: tuple[str, ...] = ()
    predicates: tuple[HostPredicate, ...] = field(default=())
    long_query_threshold: int = 100
    version: str = "settings"


def classify_url(url: str, policy: ProfilePolicy) -> ComplexityProfile:
    """Return the complexity profile for ``url``; pure and idempotent."""

    parts = urlsplit(url)
    tier = _tier_for(parts, policy)
    template = policy.templates[tier]
    return ComplexityProfile(
        tier=tier,
        navigation_timeout_ms=template.navigation_timeout_ms,
        readiness_budget_ms=template.stage_budgets.total_ms,
        stage_budgets=template.stage_budgets,
        resource_policy=template.resource_policy,
        quality_ceiling=template.quality_ceiling,
        dom_ready_states=template.dom_ready_states,
        lazy_scroll_max_steps=template.lazy_scroll_max_steps,
    )


def _tier_for(parts: SplitResult, policy: ProfilePolicy) -> ComplexityTier:
    host = (parts.hostname or "").lower()
    if any(_host_matches_pattern(host, pattern.lower()) for pattern in policy.heavy_host_patterns):
        return ComplexityTier.HIGH
    if any(predicate(parts) for predicate in policy.predicates):
        return ComplexityTier.HIGH
    if len(parts.query) > policy.long_query_threshold or parts.fragment:
        return ComplexityTier.MEDIUM
    return ComplexityTier.LOW


def _host_matches_pattern(host: str, pattern: str) -> bool:
    if not pattern:
        return False
    if pattern.startswith("*."):
        suffix = pattern[1:]
        return host.endswith(suffix) or host == pattern[2:]
    return host == pattern


def _default_templates(settings: Settings) -> dict[ComplexityTier, TierTemplate]:
    readiness = settings.readiness
    navigation = settings.navigation
    return {
        ComplexityTier.LOW: TierTemplate(
            navigation_timeout_ms=navigation.timeout_ms_low,
            stage_budgets=readiness.low,
            resource_policy=LOW_POLICY,
            quality_ceiling=100,
            dom_ready_states=("complete",),
            lazy_scroll_max_steps=readiness.scroll_max_steps,
        ),
        ComplexityTier.MEDIUM: TierTemplate(
            navigation_timeout_ms=navigation.timeout_ms_medium,
            stage_budgets=readiness.medium,
            resource_policy=MEDIUM_POLICY,
            quality_ceiling=100,
            dom_ready_states=("complete",),
            lazy_scroll_max_steps=readiness.scroll_max_steps,
        ),
        ComplexityTier.HIGH: TierTemplate(
            navigation_timeout_ms=navigation.timeout_ms_high,
            stage_budgets=readiness.high,
            resource_policy=HIGH_POLICY,
            quality_ceiling=settings.capture.high_tier_quality_ceiling,
            dom_ready_states=("interactive", "complete"),
            lazy_scroll_max_steps=readiness.scroll_max_steps_high,
        ),
    }


def build_profile_policy(
    settings: Settings,
    *,
    predicates: Iterable[HostPredicate] = (),
) -> ProfilePolicy:
    """Assemble the policy from settings, merging the optional JSON policy file."""

    if settings.profiler.policy_path is not None:
        policy = load_profile_policy(settings.profiler.policy_path, settings)
    else:
        policy = ProfilePolicy(
            templates=_default_templates(settings),
            heavy_host_patterns=settings.profiler.heavy_hosts,
            long_query_threshold=settings.profiler.long_query_threshold,
        )
    extra = tuple(predicates)
    if not extra:
        return policy
    return ProfilePolicy(
        templates=policy.templates,
        heavy_host_patterns=policy.heavy_host_patterns,
        predicates=policy.predicates + extra,
        long_query_threshold=policy.long_query_threshold,
        version=policy.version,
    )


def load_profile_policy(path: Path, settings: Settings) -> ProfilePolicy:
    """Parse a JSON policy file.

    Expected shape::

        {"version": "2025-01", "heavy_hosts": ["*.example.net"], "long_query_threshold": 120}

    Hosts listed in settings are merged with the file's list.
    """

    data = json.loads(Path(path).read_text("utf-8"))
    hosts = tuple(settings.profiler.heavy_hosts) + tuple(data.get("heavy_hosts", []))
    deduped: dict[str, None] = {host.strip().lower(): None for host in hosts if host.strip()}
    return ProfilePolicy(
        templates=_default_templates(settings),
        heavy_host_patterns=tuple(deduped.keys()),
        long_query_threshold=int(data.get("long_query_threshold", settings.profiler.long_query_threshold)),
        version=str(data.get("version", "unknown")),
    )
