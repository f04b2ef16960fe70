"""
Stack identity resolution.

Every externally visible name, host and label of a deployment is derived
from the stack token and the environment's domain suffix.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional

from .errors import (
    DerivedFieldOverridden,
    InvalidIdentity,
    MissingDomainSuffix,
    UnknownEnvironment,
)

STACK_TOKEN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")
DOMAIN_SUFFIX = re.compile(r"^(?=.{1,253}$)[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$")

STACK_LABEL = "stackpact.stack"
ENVIRONMENT_LABEL = "stackpact.environment"
COMPOSE_PROJECT_LABEL = "com.docker.compose.project"


class Environment(Enum):
    """Deployment tiers."""
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"

    @classmethod
    def parse(cls, value) -> "Environment":
        if isinstance(value, cls):
            return value
        for env in cls:
            if env.value == str(value).strip().lower():
                return env
        raise UnknownEnvironment(str(value), [e.value for e in cls])


# Which input names the domain suffix for each tier
DOMAIN_KEYS: Dict[Environment, str] = {
    Environment.DEV: "LOCAL_DOMAIN",
    Environment.STAGING: "STAGING_DOMAIN",
    Environment.PROD: "BASE_DOMAIN",
}


@dataclass(frozen=True)
class StackIdentity:
    """The unit of namespacing for one deployment."""
    stack: str
    environment: Environment
    domain_suffix: str
    project_name: str

    @property
    def app_host(self) -> str:
        return f"{self.stack}.{self.domain_suffix}"

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PROD

    def labels(self) -> Dict[str, str]:
        """Ownership labels every rendered resource carries."""
        return {
            STACK_LABEL: self.stack,
            ENVIRONMENT_LABEL: self.environment.value,
            COMPOSE_PROJECT_LABEL: self.project_name,
        }

    def scoped(self, name: str) -> str:
        return f"{self.project_name}_{name}"

    def as_values(self) -> Dict[str, str]:
        """Derived binding values."""
        return {
            "STACK": self.stack,
            "STACK_ENV": self.environment.value,
            "DOMAIN_SUFFIX": self.domain_suffix,
            "APP_HOST": self.app_host,
            "COMPOSE_PROJECT_NAME": self.project_name,
        }


def _check_token(value: Optional[str], what: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidIdentity(value, f"{what} is required")
    if not STACK_TOKEN.match(value):
        raise InvalidIdentity(
            value,
            f"{what} must be 1-63 letters, digits or hyphens, not starting or ending with a hyphen",
        )
    return value


def resolve(raw_inputs: Mapping[str, str], environment, project_name: Optional[str] = None) -> StackIdentity:
    """
    Resolve the stack identity from raw inputs.

    Args:
        raw_inputs: Flat mapping of input variables (STACK, LOCAL_DOMAIN, ...)
        environment: Environment enum member or its name
        project_name: Explicit runtime-scoping token; must contain the stack

    Returns:
        StackIdentity

    Raises:
        InvalidIdentity: STACK missing or malformed
        UnknownEnvironment: Environment is not a known tier
        MissingDomainSuffix: The tier's domain variable is missing or malformed
        DerivedFieldOverridden: APP_HOST/COMPOSE_PROJECT_NAME conflict with derivation
    """
    env = Environment.parse(environment)
    stack = _check_token(raw_inputs.get("STACK"), "STACK")

    domain_key = DOMAIN_KEYS[env]
    domain = (raw_inputs.get(domain_key) or "").strip().strip(".")
    if not domain or not DOMAIN_SUFFIX.match(domain):
        raise MissingDomainSuffix(domain_key, env.value)

    if project_name is not None:
        _check_token(project_name, "project name")
        if stack.lower() not in project_name.lower():
            raise DerivedFieldOverridden("COMPOSE_PROJECT_NAME", project_name, stack)
    project = project_name or stack

    identity = StackIdentity(stack=stack, environment=env, domain_suffix=domain, project_name=project)

    supplied_host = raw_inputs.get("APP_HOST")
    if supplied_host is not None and supplied_host.strip().lower() != identity.app_host.lower():
        raise DerivedFieldOverridden("APP_HOST", supplied_host, identity.app_host)

    supplied_project = raw_inputs.get("COMPOSE_PROJECT_NAME")
    if supplied_project is not None and supplied_project.strip() != project:
        raise DerivedFieldOverridden("COMPOSE_PROJECT_NAME", supplied_project, project)

    return identity
