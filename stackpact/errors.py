"""
Error taxonomy for the resolve -> render -> validate -> gate -> apply pipeline.
"""

from typing import List, Optional, Sequence


class StackpactError(Exception):
    """Base class for all stackpact errors."""

    code = "stackpact_error"
    hint = ""

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "hint": self.hint}


class IdentityError(StackpactError):
    code = "identity_error"
    hint = "Check STACK and the domain variables for the selected environment"


class InvalidIdentity(IdentityError):
    code = "invalid_identity"

    def __init__(self, value: Optional[str], reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid stack identity {value!r}: {reason}")


class UnknownEnvironment(IdentityError):
    code = "unknown_environment"

    def __init__(self, environment: str, known: Sequence[str]):
        self.environment = environment
        super().__init__(f"Unknown environment {environment!r}. Expected one of: {', '.join(known)}")


class MissingDomainSuffix(IdentityError):
    code = "missing_domain_suffix"

    def __init__(self, key: str, environment: str):
        self.key = key
        self.environment = environment
        super().__init__(f"{key} is required for environment {environment!r}")


class DerivedFieldOverridden(IdentityError):
    code = "derived_field_overridden"
    hint = "Derived fields are computed from STACK and the domain; remove the explicit value"

    def __init__(self, field: str, supplied: str, derived: str):
        self.field = field
        self.supplied = supplied
        self.derived = derived
        super().__init__(f"{field}={supplied!r} conflicts with derived value {derived!r}")


class RenderError(StackpactError):
    code = "render_error"
    hint = "Fix the template or supply the missing variables"


class UnresolvedPlaceholder(RenderError):
    code = "unresolved_placeholder"

    def __init__(self, names: Sequence[str], template: Optional[str] = None):
        self.names: List[str] = list(names)
        self.name = self.names[0] if self.names else ""
        self.template = template
        where = f" in template {template!r}" if template else ""
        super().__init__(f"Unresolved placeholder(s){where}: {', '.join(self.names)}")


class MalformedTemplate(RenderError):
    code = "malformed_template"

    def __init__(self, reason: str, template: Optional[str] = None):
        self.reason = reason
        self.template = template
        where = f"Template {template!r}" if template else "Template"
        super().__init__(f"{where} is malformed: {reason}")


class PolicyFailed(StackpactError):
    code = "policy_failed"
    hint = "Fix every listed violation; nothing was applied"

    def __init__(self, violations):
        self.violations = list(violations)
        classes = sorted({v.violation_class for v in self.violations})
        super().__init__(f"{len(self.violations)} policy violation(s): {', '.join(classes)}")


class GateBlocked(StackpactError):
    """Production apply requested while the authorization toggle is absent.

    Not a defect: the operator has to arm the gate before retrying.
    """

    code = "gate_blocked"
    hint = "Arm the production gate (STACKPACT_ARMED=1 or the sentinel file) and retry"

    def __init__(self, stack: str, environment: str):
        self.stack = stack
        self.environment = environment
        super().__init__(f"Apply of stack {stack!r} to {environment} blocked: authorization toggle is absent")


class ApplyError(StackpactError):
    code = "apply_error"
    hint = "See the runtime adapter output; no rollback was attempted"

    def __init__(self, adapter: str, message: str):
        self.adapter = adapter
        self.message = message
        super().__init__(message)


class ApplyTimedOut(ApplyError):
    code = "apply_timed_out"

    def __init__(self, adapter: str, timeout: float):
        self.timeout = timeout
        super().__init__(adapter, f"Apply via {adapter} did not finish within {timeout:g}s")
