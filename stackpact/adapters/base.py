"""
Runtime adapter interface.

The core never talks to a runtime directly: applying artifacts and reading
live inventory are delegated to an adapter.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..inventory import RuntimeInventorySnapshot
from ..templates.model import RenderedArtifact


@dataclass
class ApplyResult:
    """Outcome of a delegated apply."""
    adapter: str
    changed: bool
    applied: List[str] = field(default_factory=list)      # artifact names
    output: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adapter": self.adapter,
            "changed": self.changed,
            "applied": list(self.applied),
            "output": self.output,
            "details": dict(self.details),
        }


class RuntimeAdapter(ABC):
    """Abstract base class for runtime adapters."""

    name: str = ""
    runtime: str = ""       # artifact runtime this adapter consumes

    @abstractmethod
    def apply(self, artifacts: Sequence[RenderedArtifact]) -> ApplyResult:
        """
        Apply artifacts to the target runtime.

        Must be declarative: applying the same artifacts to an unchanged
        target leaves it in the same end state.

        Args:
            artifacts: Rendered, validated artifacts

        Returns:
            ApplyResult
        """
        pass

    def inventory(self) -> Optional[RuntimeInventorySnapshot]:
        """Read-only snapshot of running resources, if the runtime exposes one."""
        return None

    def select(self, artifacts: Sequence[RenderedArtifact]) -> List[RenderedArtifact]:
        return [a for a in artifacts if not self.runtime or a.runtime == self.runtime]
