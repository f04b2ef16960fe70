import hashlib
from dataclasses import dataclass
from typing import Any, List, Optional

import yaml

RUNTIMES = ("compose", "kubernetes", "serverless")
YAML_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass(frozen=True)
class ArtifactTemplate:
    """Declarative document with ${NAME} placeholders."""
    name: str                   # file name, e.g. "docker-compose.yaml"
    runtime: str                # one of RUNTIMES
    text: str
    path: Optional[str] = None

    @property
    def structured(self) -> bool:
        return self.name.endswith(YAML_SUFFIXES)


@dataclass(frozen=True)
class RenderedArtifact:
    """A template with every placeholder substituted."""
    name: str
    runtime: str
    text: str

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()

    @property
    def structured(self) -> bool:
        return self.name.endswith(YAML_SUFFIXES)

    @property
    def documents(self) -> List[Any]:
        # Parsed on every access so rules cannot leak mutations to each other
        if not self.structured:
            return []
        return [doc for doc in yaml.safe_load_all(self.text) if doc is not None]
