"""
Policy evaluation.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence
import logging

from ..binding import Binding
from ..config import Settings
from ..inventory import RuntimeInventorySnapshot
from ..templates.model import RenderedArtifact
from .base import PolicyContext, PolicyRule, Violation
from .registry import RuleRegistry, default_registry
from .rules import INVENTORY_PREFIX

logger = logging.getLogger(__name__)


def _run_rule(rule: PolicyRule, ctx: PolicyContext) -> List[Violation]:
    if rule.requires_inventory and ctx.inventory is None:
        logger.debug(f"Skipping {rule.name}: no inventory supplied")
        return []
    return list(rule.evaluate(ctx))


def evaluate(
    ctx: PolicyContext,
    registry: Optional[RuleRegistry] = None,
    parallel: bool = False,
    inventory_advisory: Optional[bool] = None,
    settings: Optional[Settings] = None,
) -> List[Violation]:
    """
    Evaluate every registered rule against a context.

    Args:
        ctx: Policy context
        registry: Rules to evaluate; the default set when omitted
        parallel: Evaluate rules on a thread pool
        inventory_advisory: Mark violations found in live inventory as
            advisory; defaults to True unless apply was requested
        settings: Settings for the default registry when none is given

    Returns:
        All violations, sorted so that rule order never changes the result
    """
    if registry is None:
        registry = default_registry(settings)
    rules = registry.rules()

    if parallel and len(rules) > 1:
        with ThreadPoolExecutor(max_workers=min(8, len(rules))) as pool:
            results = list(pool.map(lambda r: _run_rule(r, ctx), rules))
    else:
        results = [_run_rule(rule, ctx) for rule in rules]

    if inventory_advisory is None:
        inventory_advisory = not ctx.wants_apply

    violations = []
    for found in results:
        for v in found:
            if inventory_advisory and (v.location or "").startswith(INVENTORY_PREFIX):
                v = v.as_advisory()
            violations.append(v)

    violations.sort(key=Violation.sort_key)
    for v in violations:
        logger.info(f"{'ADVISORY' if v.advisory else 'VIOLATION'} {v.violation_class} {v.value}: {v.reason}")
    return violations


def validate(
    binding: Binding,
    artifacts: Sequence[RenderedArtifact] = (),
    inventory: Optional[RuntimeInventorySnapshot] = None,
    wants_apply: bool = False,
    gate_open: bool = False,
    registry: Optional[RuleRegistry] = None,
    parallel: bool = False,
    settings: Optional[Settings] = None,
) -> List[Violation]:
    """
    Diagnose a binding and its rendered artifacts. Never mutates or applies anything.

    Returns:
        Violations; an empty list means the deployment passes
    """
    ctx = PolicyContext(
        identity=binding.identity,
        binding=binding,
        artifacts=tuple(artifacts),
        inventory=inventory,
        wants_apply=wants_apply,
        gate_open=gate_open,
    )
    return evaluate(ctx, registry=registry, parallel=parallel, settings=settings)


def blocking(violations: Iterable[Violation]) -> List[Violation]:
    return [v for v in violations if not v.advisory]
