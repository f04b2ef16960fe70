"""
Deployment gate and orchestrator.

Sequences resolve -> render -> validate -> gate -> apply for one request:

    RESOLVING -> RENDERING -> VALIDATING -> FAILED
                                         -> BLOCKED
                                         -> APPLYING -> DONE | FAILED
                                         -> DONE (no apply requested)

Nothing is applied unless validation produced no blocking violation and,
for production, the authorization toggle is armed.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .adapters.base import ApplyResult, RuntimeAdapter
from .binding import Binding, build_binding
from .config import Settings
from .errors import (
    ApplyError,
    ApplyTimedOut,
    GateBlocked,
    IdentityError,
    PolicyFailed,
    RenderError,
    StackpactError,
)
from .events import EventLog, EventTypes
from .gate import AuthorizationToggle
from .identity import StackIdentity, resolve
from .ids import new_run_id
from .inventory import RuntimeInventorySnapshot
from .policy import PolicyContext, RuleRegistry, Violation, default_registry, evaluate
from .policy.rules import ArmGateRule
from .templates import ArtifactTemplate, RenderedArtifact, render_all

logger = logging.getLogger(__name__)


class RunState(Enum):
    RESOLVING = "RESOLVING"
    RENDERING = "RENDERING"
    VALIDATING = "VALIDATING"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"
    APPLYING = "APPLYING"
    DONE = "DONE"


@dataclass(frozen=True, eq=False)
class DeploymentRequest:
    """One invocation. Immutable; discarded when the run completes."""
    inputs: Mapping[str, str]
    environment: str
    templates: Tuple[ArtifactTemplate, ...]
    adapter: Optional[RuntimeAdapter] = None
    wants_apply: bool = False
    project_name: Optional[str] = None
    file_inputs: Mapping[str, str] = field(default_factory=dict)
    inventory: Optional[RuntimeInventorySnapshot] = None
    live_inventory: bool = False
    apply_timeout: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))
        object.__setattr__(self, "file_inputs", MappingProxyType(dict(self.file_inputs)))
        object.__setattr__(self, "templates", tuple(self.templates))

    def raw_inputs(self) -> Dict[str, str]:
        """Env-file values overlaid by operator inputs."""
        return {**self.file_inputs, **self.inputs}


@dataclass
class RunResult:
    run_id: str
    state: RunState = RunState.RESOLVING
    identity: Optional[StackIdentity] = None
    rendered: List[RenderedArtifact] = field(default_factory=list)
    applied: bool = False
    violations: List[Violation] = field(default_factory=list)
    error: Optional[StackpactError] = None
    apply_result: Optional[ApplyResult] = None
    events: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is RunState.DONE

    @property
    def blocking_violations(self) -> List[Violation]:
        return [v for v in self.violations if not v.advisory]

    @property
    def advisories(self) -> List[Violation]:
        return [v for v in self.violations if v.advisory]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "stack": self.identity.stack if self.identity else None,
            "environment": self.identity.environment.value if self.identity else None,
            "app_host": self.identity.app_host if self.identity else None,
            "rendered": [{"name": a.name, "runtime": a.runtime, "sha256": a.digest} for a in self.rendered],
            "applied": self.applied,
            "violations": [v.to_dict() for v in self.violations],
            "error": self.error.to_dict() if self.error else None,
            "apply_result": self.apply_result.to_dict() if self.apply_result else None,
        }


def prepare(request: DeploymentRequest) -> Tuple[StackIdentity, Binding, List[RenderedArtifact]]:
    """
    Resolve the identity, build the binding and render every template.

    Raises:
        IdentityError: Identity cannot be resolved
        RenderError: A template cannot be rendered
    """
    identity = resolve(request.raw_inputs(), request.environment, request.project_name)
    binding = build_binding(identity, request.inputs, request.file_inputs)
    rendered = render_all(request.templates, binding)
    return identity, binding, rendered


def _apply_with_timeout(adapter: RuntimeAdapter, artifacts: Sequence[RenderedArtifact], timeout: Optional[float], run_id: str) -> ApplyResult:
    box: Dict[str, Any] = {}

    def target():
        try:
            box["result"] = adapter.apply(list(artifacts))
        except Exception as e:
            box["error"] = e

    # daemon thread: a hung apply must not keep the process alive; no rollback
    worker = threading.Thread(target=target, name=f"apply-{run_id}", daemon=True)
    worker.start()
    worker.join(timeout if timeout and timeout > 0 else None)

    if worker.is_alive():
        raise ApplyTimedOut(adapter.name or adapter.__class__.__name__, timeout)

    error = box.get("error")
    if isinstance(error, ApplyError):
        raise error
    if error is not None:
        raise ApplyError(adapter.name or adapter.__class__.__name__, str(error)) from error

    applied = box.get("result")
    if not isinstance(applied, ApplyResult):
        raise ApplyError(
            adapter.name or adapter.__class__.__name__,
            f"adapter returned {type(applied).__name__} instead of ApplyResult",
        )
    return applied


class Orchestrator:
    """Runs deployment requests against one settings/toggle/registry combination."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        toggle: Optional[AuthorizationToggle] = None,
        registry: Optional[RuleRegistry] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.toggle = toggle or AuthorizationToggle.from_settings(self.settings)
        self.registry = default_registry(self.settings) if registry is None else registry

    def run(self, request: DeploymentRequest) -> RunResult:
        """
        Execute one request.

        Configuration and policy problems end in FAILED, a closed production
        gate ends in BLOCKED. Neither ever reaches the adapter.
        """
        result = RunResult(run_id=new_run_id())
        log = EventLog(result.run_id, self.settings.events_dir)
        result.events = log.events

        def enter(state: RunState, **data):
            result.state = state
            log.emit(state.value, data)
            logger.info(f"[{result.run_id}] {state.value} {data if data else ''}".rstrip())

        enter(RunState.RESOLVING, environment=str(request.environment))
        try:
            identity = resolve(request.raw_inputs(), request.environment, request.project_name)
            binding = build_binding(identity, request.inputs, request.file_inputs)
            result.identity = identity
            log.emit(EventTypes.RESOLVED, {"stack": identity.stack, "app_host": identity.app_host})

            enter(RunState.RENDERING, templates=len(request.templates))
            result.rendered = render_all(request.templates, binding)
            log.emit(EventTypes.RENDERED, {"artifacts": {a.name: a.digest for a in result.rendered}})
        except (IdentityError, RenderError) as e:
            result.error = e
            enter(RunState.FAILED, code=e.code, message=str(e))
            return result

        enter(RunState.VALIDATING, rules=self.registry.names())
        inventory = request.inventory
        if inventory is None and request.live_inventory and request.adapter is not None:
            inventory = request.adapter.inventory()

        # the toggle is external input, read at most once per run
        gate_open = False
        if request.wants_apply and identity.is_production:
            gate_open = self.toggle.is_open()

        ctx = PolicyContext(
            identity=identity,
            binding=binding,
            artifacts=tuple(result.rendered),
            inventory=inventory,
            wants_apply=request.wants_apply,
            gate_open=gate_open,
        )
        result.violations = evaluate(ctx, self.registry)
        for v in result.violations:
            log.emit(EventTypes.ADVISORY if v.advisory else EventTypes.VIOLATION, v.to_dict())

        blocking = result.blocking_violations
        gate = [v for v in blocking if v.violation_class == ArmGateRule.violation_class]
        defects = [v for v in blocking if v.violation_class != ArmGateRule.violation_class]

        if defects:
            result.error = PolicyFailed(defects)
            enter(RunState.FAILED, code=result.error.code, violations=len(defects))
            return result

        # the gate holds even when the arm-gate rule is not registered
        if gate or (request.wants_apply and identity.is_production and not gate_open):
            result.error = GateBlocked(identity.stack, identity.environment.value)
            enter(RunState.BLOCKED, code=result.error.code, toggle=self.toggle.describe())
            return result

        if not request.wants_apply:
            enter(RunState.DONE, applied=False)
            return result

        if request.adapter is None:
            result.error = ApplyError("none", "apply requested but no runtime adapter was given")
            enter(RunState.FAILED, code=result.error.code)
            return result

        timeout = request.apply_timeout if request.apply_timeout is not None else self.settings.apply_timeout
        enter(RunState.APPLYING, adapter=request.adapter.name, timeout=timeout)
        try:
            result.apply_result = _apply_with_timeout(request.adapter, result.rendered, timeout, result.run_id)
        except ApplyError as e:
            result.error = e
            log.emit(EventTypes.APPLY_ERROR, {"code": e.code, "message": str(e)})
            enter(RunState.FAILED, code=e.code)
            return result

        result.applied = True
        log.emit(EventTypes.APPLY_DONE, {"changed": result.apply_result.changed})
        enter(RunState.DONE, applied=True)
        return result


def run(
    request: DeploymentRequest,
    settings: Optional[Settings] = None,
    toggle: Optional[AuthorizationToggle] = None,
    registry: Optional[RuleRegistry] = None,
) -> RunResult:
    """Run a single request with a one-off orchestrator."""
    return Orchestrator(settings=settings, toggle=toggle, registry=registry).run(request)
