"""
Runtime adapters: the pluggable apply/inventory capability.
"""

from typing import Callable, Dict, List
import logging

from .base import ApplyResult, RuntimeAdapter
from .compose import ComposeAdapter
from .dryrun import DryRunAdapter
from .kubernetes import KubernetesAdapter
from .serverless import ServerlessAdapter

logger = logging.getLogger(__name__)

# Registry of adapter factories, keyed by CLI target name
AVAILABLE_ADAPTERS: Dict[str, Callable[..., RuntimeAdapter]] = {
    "compose": ComposeAdapter,
    "kubernetes": KubernetesAdapter,
    "serverless": ServerlessAdapter,
    "dry-run": DryRunAdapter,
}

# Artifact runtime each target consumes
TARGET_RUNTIMES: Dict[str, str] = {
    "compose": "compose",
    "kubernetes": "kubernetes",
    "serverless": "serverless",
}


def get_adapter(name: str, **kwargs) -> RuntimeAdapter:
    """
    Build an adapter by target name.

    Raises:
        ValueError: Unknown target
    """
    factory = AVAILABLE_ADAPTERS.get(name)
    if factory is None:
        raise ValueError(f"Unknown target {name!r}. Expected one of: {', '.join(list_adapters())}")
    logger.debug(f"Creating {name} adapter with {sorted(kwargs)}")
    return factory(**kwargs)


def list_adapters() -> List[str]:
    return sorted(AVAILABLE_ADAPTERS)


__all__ = [
    "ApplyResult",
    "RuntimeAdapter",
    "ComposeAdapter",
    "DryRunAdapter",
    "KubernetesAdapter",
    "ServerlessAdapter",
    "AVAILABLE_ADAPTERS",
    "TARGET_RUNTIMES",
    "get_adapter",
    "list_adapters",
]
