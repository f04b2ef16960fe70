"""
The canonical deployment policy rules.
"""

import re
from typing import Iterable, List, Optional, Sequence

from .. import artifacts as inspect
from ..config import DEFAULT_BRIDGED_PREFIXES, DEFAULT_EDGE_PORTS
from ..identity import COMPOSE_PROJECT_LABEL, STACK_LABEL
from .base import PolicyContext, PolicyRule, Violation

INVENTORY_PREFIX = "inventory:"


def _inventory_location(name: str) -> str:
    return f"{INVENTORY_PREFIX}{name}"


class NamespacingRule(PolicyRule):
    name = "namespacing"
    violation_class = "MissingNamespace"
    description = "Externally visible names carry the stack token"

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        stack = ctx.identity.stack.lower()
        return [
            self.violation(ref.value, f"name does not contain stack token {ctx.identity.stack!r}", ref.location)
            for ref in inspect.external_names(ctx.artifacts)
            if stack not in ref.value.lower()
        ]


class HardcodedHostRule(PolicyRule):
    name = "no-hardcoded-host"
    violation_class = "HardcodedHost"
    description = "Ingress hosts are the derived app host or a subdomain of it"

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        app_host = ctx.identity.app_host.lower()
        found = []
        for ref in inspect.host_literals(ctx.artifacts):
            host = ref.value.strip().lower().rstrip(".")
            if host == app_host or host.endswith("." + app_host):
                continue
            found.append(self.violation(ref.value, f"host is not derived from the stack; expected {ctx.identity.app_host}", ref.location))
        return found


class SecretSourceRule(PolicyRule):
    name = "secret-source"
    violation_class = "ForbiddenSecretFile"
    description = "Production secrets never come from file-based injection"

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        if not ctx.identity.is_production:
            return []
        found = [
            self.violation(entry.key, "secret is sourced from a file in prod; use a platform secret reference", f"binding:{entry.key}")
            for entry in ctx.binding.entries()
            if entry.secret and entry.file_based
        ]
        found.extend(
            self.violation(ref.value, "file-based secret declared in a prod artifact", ref.location)
            for ref in inspect.file_secrets(ctx.artifacts)
        )
        return found


class LiteralSecretRule(PolicyRule):
    name = "literal-secret"
    violation_class = "LiteralSecret"
    description = "Production secret values are references, never literal material"

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        if not ctx.identity.is_production:
            return []
        # the value itself is never echoed back
        return [
            self.violation(entry.key, "secret holds literal material in prod; bind a secret reference instead", f"binding:{entry.key}")
            for entry in ctx.binding.entries()
            if entry.literal_secret
        ]


class FrontDoorRule(PolicyRule):
    name = "single-front-door"
    violation_class = "FrontDoorViolation"
    description = "Exactly one ingress process owns the shared edge ports"
    requires_inventory = True

    def __init__(self, edge_ports: Sequence[int] = DEFAULT_EDGE_PORTS, role_label: str = "stackpact.role", ingress_role: str = "ingress"):
        self.edge_ports = tuple(edge_ports)
        self.role_label = role_label
        self.ingress_role = ingress_role

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        if ctx.inventory is None:
            return []
        ports = ",".join(str(p) for p in self.edge_ports)
        binders = ctx.inventory.bound_to(self.edge_ports)
        if not binders:
            return [self.violation("<none>", f"no process is bound to edge ports {ports}", _inventory_location("edge"))]

        labelled = [r for r in binders if r.role(self.role_label) == self.ingress_role]
        # an unlabelled lone binder is taken to be the front door
        front = labelled or binders
        found = []
        if len(front) > 1:
            names = ", ".join(sorted(r.name for r in front))
            found.append(self.violation(names, f"{len(front)} processes bound to edge ports {ports}; expected exactly one", _inventory_location("edge")))

        for r in binders:
            role = r.role(self.role_label)
            if r not in front or (role is not None and role != self.ingress_role):
                found.append(self.violation(r.name, f"non-ingress process (role={role}) bound directly to edge ports {ports}", _inventory_location(r.name)))
        return found


class LabelDiscoveryRule(PolicyRule):
    name = "label-discovery"
    violation_class = "AncestryBasedLookup"
    description = "Resources are found by ownership labels, never by image ancestry"

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        found = [
            self.violation(ref.value, "lookup selects resources by image identity; select by ownership labels", ref.location)
            for ref in inspect.lookup_filters(ctx.artifacts)
        ]
        if ctx.inventory is not None:
            stack = ctx.identity.stack.lower()
            for r in ctx.inventory.resources:
                if stack not in r.name.lower():
                    continue
                if STACK_LABEL in r.labels or COMPOSE_PROJECT_LABEL in r.labels:
                    continue
                found.append(self.violation(r.name, "running resource has no ownership labels and can only be found by image", _inventory_location(r.name)))
        return found


class BridgedMountRule(PolicyRule):
    name = "bridged-mount"
    violation_class = "BridgedMount"
    description = "No bind mounts across bridged or virtualized drives"

    def __init__(self, prefixes: Iterable[str] = DEFAULT_BRIDGED_PREFIXES):
        self.prefixes = tuple(prefixes)
        self._patterns = [re.compile(p) for p in self.prefixes]

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        return [
            self.violation(ref.value, "bind mount crosses a bridged drive boundary", ref.location)
            for ref in inspect.bind_mounts(ctx.artifacts)
            if any(p.search(ref.value) for p in self._patterns)
        ]


class VolumeNamespacingRule(PolicyRule):
    name = "volume-namespacing"
    violation_class = "UnscopedVolume"
    description = "Persistent volume names are prefixed by the project or stack"

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        prefixes = tuple(
            f"{token.lower()}{sep}"
            for token in {ctx.identity.project_name, ctx.identity.stack}
            for sep in ("_", "-")
        )
        return [
            self.violation(ref.value, f"volume name is not scoped by {ctx.identity.project_name!r}", ref.location)
            for ref in inspect.volume_names(ctx.artifacts)
            if not ref.value.lower().startswith(prefixes)
        ]


class DeterministicImageRule(PolicyRule):
    name = "deterministic-image"
    violation_class = "FloatingImageTag"
    description = "Images are pinned to an explicit version tag or digest"

    @staticmethod
    def floating_reason(image: str) -> Optional[str]:
        _, tag, digest = inspect.split_image(image)
        if digest:
            return None
        if tag is None:
            return "image has no explicit version tag"
        if tag == "latest":
            return "image uses the floating 'latest' tag"
        return None

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        refs = list(inspect.image_refs(ctx.artifacts))
        refs.extend(
            inspect.Ref(entry.value, f"binding:{entry.key}")
            for entry in ctx.binding.entries()
            if entry.key == "IMAGE" or entry.key.endswith("_IMAGE")
        )
        seen = set()
        found = []
        for ref in refs:
            if ref.value in seen:
                continue
            seen.add(ref.value)
            reason = self.floating_reason(ref.value)
            if reason:
                found.append(self.violation(ref.value, reason, ref.location))
        return found


class ArmGateRule(PolicyRule):
    name = "arm-gate"
    violation_class = "ProductionGateClosed"
    description = "Production apply requires the authorization toggle"

    def evaluate(self, ctx: PolicyContext) -> List[Violation]:
        if ctx.identity.is_production and ctx.wants_apply and not ctx.gate_open:
            return [self.violation(ctx.identity.stack, "production apply requested but the authorization toggle is absent", "gate")]
        return []
