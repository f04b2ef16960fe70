"""
Serverless adapter for AWS Lambda.

Artifact shape::

    function:
      name: acctdemo-api
      image: 123456789012.dkr.ecr.us-west-2.amazonaws.com/api:1.4.2
      memory: 512
      timeout: 30
      environment:
        DB_HOST: acctdemo-db.internal
"""

from typing import Any, Dict, Sequence
import logging

import boto3
from botocore.exceptions import ClientError, WaiterError

from ..templates.model import RenderedArtifact
from .base import ApplyResult, RuntimeAdapter

logger = logging.getLogger(__name__)


class ServerlessAdapter(RuntimeAdapter):
    name = "serverless"
    runtime = "serverless"

    def __init__(self, region: str = "us-west-2", client=None):
        self.region = region
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("lambda", region_name=self.region)
        return self._client

    @staticmethod
    def desired_config(fn: Dict[str, Any]) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            "Environment": {"Variables": {str(k): str(v) for k, v in (fn.get("environment") or {}).items()}},
        }
        if fn.get("memory"):
            config["MemorySize"] = int(fn["memory"])
        if fn.get("timeout"):
            config["Timeout"] = int(fn["timeout"])
        return config

    @staticmethod
    def current_config(current: Dict[str, Any]) -> Dict[str, Any]:
        """Normalize a GetFunctionConfiguration response to the desired_config shape.

        Lambda omits ``Environment`` when a function has no variables.
        """
        config: Dict[str, Any] = {
            "Environment": {"Variables": dict((current.get("Environment") or {}).get("Variables") or {})},
        }
        for key in ("MemorySize", "Timeout"):
            if key in current:
                config[key] = current[key]
        return config

    def _wait_updated(self, name: str):
        # a second update while LastUpdateStatus is InProgress fails with ResourceConflictException
        self.client.get_waiter("function_updated_v2").wait(FunctionName=name)

    def _apply_function(self, fn: Dict[str, Any]) -> bool:
        name = fn.get("name")
        if not name:
            raise RuntimeError("serverless artifact is missing function.name")

        current = self.current_config(self.client.get_function_configuration(FunctionName=name))
        desired = self.desired_config(fn)
        changed = False

        drift = {k: v for k, v in desired.items() if current.get(k) != v}
        if drift:
            logger.info(f"Updating configuration of {name}: {sorted(drift)}")
            self.client.update_function_configuration(FunctionName=name, **desired)
            self._wait_updated(name)
            changed = True

        image = fn.get("image")
        if image:
            code = self.client.get_function(FunctionName=name).get("Code", {})
            if code.get("ImageUri") != image:
                logger.info(f"Updating image of {name} to {image}")
                self.client.update_function_code(FunctionName=name, ImageUri=image)
                self._wait_updated(name)
                changed = True

        return changed

    def apply(self, artifacts: Sequence[RenderedArtifact]) -> ApplyResult:
        selected = self.select(artifacts)
        changed = []
        try:
            for artifact in selected:
                for doc in artifact.documents:
                    fn = doc.get("function") if isinstance(doc, dict) else None
                    if isinstance(fn, dict) and self._apply_function(fn):
                        changed.append(str(fn["name"]))
        except (ClientError, WaiterError) as e:
            raise RuntimeError(f"Lambda update failed: {e}")

        return ApplyResult(
            adapter=self.name,
            changed=bool(changed),
            applied=[a.name for a in selected],
            output="\n".join(f"updated {name}" for name in changed),
            details={"region": self.region, "updated": changed},
        )
