"""
Base rule interface and the evaluation context.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from ..binding import Binding
from ..identity import StackIdentity
from ..inventory import RuntimeInventorySnapshot
from ..templates.model import RenderedArtifact


@dataclass(frozen=True)
class Violation:
    """One failed invariant."""
    rule: str                   # registry name, e.g. "deterministic-image"
    violation_class: str        # e.g. "FloatingImageTag"
    value: str                  # offending value
    reason: str                 # human-readable explanation
    location: Optional[str] = None
    advisory: bool = False      # reported but not blocking

    def sort_key(self) -> Tuple[str, str, str, str]:
        return (self.rule, self.location or "", self.value, self.reason)

    def as_advisory(self) -> "Violation":
        return replace(self, advisory=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "class": self.violation_class,
            "value": self.value,
            "reason": self.reason,
            "location": self.location,
            "advisory": self.advisory,
        }


@dataclass(frozen=True)
class PolicyContext:
    """Everything a rule may look at. Immutable for the duration of validation."""
    identity: StackIdentity
    binding: Binding
    artifacts: Tuple[RenderedArtifact, ...] = ()
    inventory: Optional[RuntimeInventorySnapshot] = None
    wants_apply: bool = False
    gate_open: bool = False


class PolicyRule(ABC):
    """Abstract base class for policy rules.

    Rules must be side-effect free and must not depend on other rules having
    run, so the registry can evaluate them in any order.
    """

    name: str = ""
    violation_class: str = ""
    description: str = ""
    requires_inventory: bool = False

    @abstractmethod
    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        """
        Evaluate the rule.

        Args:
            ctx: Policy context

        Returns:
            Violations found; empty when the rule passes
        """
        pass

    def violation(self, value: str, reason: str, location: Optional[str] = None) -> Violation:
        return Violation(
            rule=self.name,
            violation_class=self.violation_class,
            value=value,
            reason=reason,
            location=location,
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "class": self.violation_class,
            "description": self.description,
            "inventory": self.requires_inventory,
        }
