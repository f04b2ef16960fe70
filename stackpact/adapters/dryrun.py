"""
In-memory adapter that records desired state instead of touching a runtime.
"""

from typing import Dict, Optional, Sequence
import logging

from ..inventory import RuntimeInventorySnapshot
from ..templates.model import RenderedArtifact
from .base import ApplyResult, RuntimeAdapter

logger = logging.getLogger(__name__)


class DryRunAdapter(RuntimeAdapter):
    """Records the digest of every applied artifact, keyed by runtime/name."""

    name = "dry-run"

    def __init__(self, snapshot: Optional[RuntimeInventorySnapshot] = None):
        self.state: Dict[str, str] = {}
        self.calls = 0
        self.snapshot = snapshot

    def apply(self, artifacts: Sequence[RenderedArtifact]) -> ApplyResult:
        self.calls += 1
        changed = []
        for artifact in artifacts:
            key = f"{artifact.runtime}/{artifact.name}"
            if self.state.get(key) != artifact.digest:
                changed.append(key)
            self.state[key] = artifact.digest

        logger.info(f"Dry run apply #{self.calls}: {len(artifacts)} artifact(s), {len(changed)} changed")
        return ApplyResult(
            adapter=self.name,
            changed=bool(changed),
            applied=[a.name for a in artifacts],
            output="\n".join(f"would apply {key}" for key in changed),
            details={"state": dict(self.state)},
        )

    def inventory(self) -> Optional[RuntimeInventorySnapshot]:
        return self.snapshot
