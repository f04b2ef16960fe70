"""
Deployment policy: rules, the rule registry and the validator.
"""

from .base import PolicyContext, PolicyRule, Violation
from .registry import RuleRegistry, default_registry, default_rules
from .validate import blocking, evaluate, validate

__all__ = [
    "PolicyContext",
    "PolicyRule",
    "Violation",
    "RuleRegistry",
    "default_registry",
    "default_rules",
    "blocking",
    "evaluate",
    "validate",
]
