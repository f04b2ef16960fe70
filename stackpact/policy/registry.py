"""
Rule registry: the queryable set of invariants a deployment is checked against.
"""

from typing import Dict, Iterable, List, Optional
import logging

from ..config import Settings
from .base import PolicyRule
from .rules import (
    ArmGateRule,
    BridgedMountRule,
    DeterministicImageRule,
    FrontDoorRule,
    HardcodedHostRule,
    LabelDiscoveryRule,
    LiteralSecretRule,
    NamespacingRule,
    SecretSourceRule,
    VolumeNamespacingRule,
)

logger = logging.getLogger(__name__)


class RuleRegistry:
    """Named collection of policy rules.

    New invariants are added by registering a rule; callers never change.
    """

    def __init__(self, rules: Optional[Iterable[PolicyRule]] = None):
        self._rules: Dict[str, PolicyRule] = {}
        for rule in rules or []:
            self.register(rule)

    def register(self, rule: PolicyRule) -> PolicyRule:
        if not rule.name or not rule.violation_class:
            raise ValueError(f"Rule {rule.__class__.__name__} must define name and violation_class")
        if rule.name in self._rules:
            raise ValueError(f"Rule already registered: {rule.name}")
        self._rules[rule.name] = rule
        logger.debug(f"Registered rule {rule.name} ({rule.violation_class})")
        return rule

    def unregister(self, name: str) -> PolicyRule:
        try:
            return self._rules.pop(name)
        except KeyError:
            raise KeyError(f"Unknown rule: {name}") from None

    def get(self, name: str) -> Optional[PolicyRule]:
        return self._rules.get(name)

    def names(self) -> List[str]:
        return sorted(self._rules)

    def rules(self) -> List[PolicyRule]:
        return [self._rules[name] for name in self.names()]

    def __contains__(self, name: str) -> bool:
        return name in self._rules

    def __len__(self) -> int:
        return len(self._rules)


def default_rules(settings: Optional[Settings] = None) -> List[PolicyRule]:
    """The canonical rule set, configured from settings when given."""
    front_door = FrontDoorRule()
    bridged = BridgedMountRule()
    if settings is not None:
        front_door = FrontDoorRule(
            edge_ports=settings.edge_ports,
            role_label=settings.ingress_role_label,
            ingress_role=settings.ingress_role_value,
        )
        bridged = BridgedMountRule(settings.bridged_prefixes)

    return [
        NamespacingRule(),
        HardcodedHostRule(),
        SecretSourceRule(),
        LiteralSecretRule(),
        front_door,
        LabelDiscoveryRule(),
        bridged,
        VolumeNamespacingRule(),
        DeterministicImageRule(),
        ArmGateRule(),
    ]


def default_registry(settings: Optional[Settings] = None) -> RuleRegistry:
    """
    Build the default registry.

    Rules named in ``settings.disabled_rules`` are left out, except the
    production gate, which cannot be disabled.
    """
    registry = RuleRegistry()
    disabled = set(settings.disabled_rules) if settings else set()
    for rule in default_rules(settings):
        if rule.name in disabled and rule.name != ArmGateRule.name:
            logger.warning(f"Policy rule disabled by config: {rule.name}")
            continue
        registry.register(rule)
    return registry
