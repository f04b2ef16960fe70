"""
Runtime-aware inspection of rendered artifacts.

Each extractor returns ``Ref`` records (value plus a location string such as
``docker-compose.yaml:services.web.image``) so rules can report exactly where
an offending value lives. Unknown document shapes yield nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .templates.model import RenderedArtifact

HOST_RULE = re.compile(r"Host\(([^)]*)\)")
BACKTICKED = re.compile(r"`([^`]+)`")
WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")
HOST_ENV_KEYS = {"VIRTUAL_HOST", "LETSENCRYPT_HOST", "APP_HOST"}
POD_KINDS = {"Deployment", "StatefulSet", "DaemonSet", "ReplicaSet", "Job"}


@dataclass(frozen=True)
class Ref:
    value: str
    location: str


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _kv_pairs(value: Any) -> Iterator[Tuple[str, str]]:
    """Compose labels/environment come as a mapping or a list of "k=v"."""
    if isinstance(value, dict):
        for k, v in value.items():
            yield str(k), "" if v is None else str(v)
    elif isinstance(value, list):
        for item in value:
            k, _, v = str(item).partition("=")
            yield k, v


def _walk_strings(node: Any, path: str) -> Iterator[Tuple[str, str]]:
    if isinstance(node, dict):
        for k, v in node.items():
            yield from _walk_strings(v, f"{path}.{k}")
    elif isinstance(node, list):
        for i, v in enumerate(node):
            yield from _walk_strings(v, f"{path}[{i}]")
    elif isinstance(node, str):
        yield path, node


def _documents(artifact: RenderedArtifact) -> Iterator[Tuple[str, Dict[str, Any]]]:
    docs = artifact.documents
    for i, doc in enumerate(docs):
        if isinstance(doc, dict):
            prefix = artifact.name if len(docs) == 1 else f"{artifact.name}#{i}"
            yield prefix, doc


# -- compose -----------------------------------------------------------------

def _services(doc: Dict[str, Any]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    for name, svc in _as_dict(doc.get("services")).items():
        yield str(name), _as_dict(svc)


def _compose_names(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    if doc.get("name"):
        yield Ref(str(doc["name"]), f"{prefix}:name")
    for name, svc in _services(doc):
        if svc.get("container_name"):
            yield Ref(str(svc["container_name"]), f"{prefix}:services.{name}.container_name")
    for name, net in _as_dict(doc.get("networks")).items():
        net = _as_dict(net)
        # shared external networks (the edge network) are not owned by the stack
        if net.get("external"):
            continue
        if net.get("name"):
            yield Ref(str(net["name"]), f"{prefix}:networks.{name}.name")


def _compose_hosts(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    for name, svc in _services(doc):
        for key, value in _kv_pairs(svc.get("labels")):
            for rule in HOST_RULE.findall(value):
                for host in BACKTICKED.findall(rule):
                    yield Ref(host, f"{prefix}:services.{name}.labels.{key}")
        for key, value in _kv_pairs(svc.get("environment")):
            if key in HOST_ENV_KEYS:
                for host in value.split(","):
                    if host.strip():
                        yield Ref(host.strip(), f"{prefix}:services.{name}.environment.{key}")


def _compose_images(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    for name, svc in _services(doc):
        if svc.get("image"):
            yield Ref(str(svc["image"]), f"{prefix}:services.{name}.image")


def _bind_source(spec: str) -> Optional[str]:
    """Source path of a short-syntax volume spec, or None for named volumes."""
    if WINDOWS_DRIVE.match(spec):
        rest = spec[2:]
        return spec[:2] + rest.split(":", 1)[0]
    source = spec.split(":", 1)[0] if ":" in spec else None
    if source and (source.startswith(("/", ".", "~", "\\\\"))):
        return source
    return None


def _compose_mounts(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    for name, svc in _services(doc):
        for i, vol in enumerate(_as_list(svc.get("volumes"))):
            where = f"{prefix}:services.{name}.volumes[{i}]"
            if isinstance(vol, str):
                source = _bind_source(vol)
                if source:
                    yield Ref(source, where)
            elif isinstance(vol, dict) and vol.get("type") == "bind" and vol.get("source"):
                yield Ref(str(vol["source"]), where)


def _compose_volumes(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    for key, vol in _as_dict(doc.get("volumes")).items():
        vol = _as_dict(vol)
        # key-only volumes are prefixed with the project name by compose itself
        if vol.get("name"):
            yield Ref(str(vol["name"]), f"{prefix}:volumes.{key}.name")
        elif vol.get("external"):
            yield Ref(str(key), f"{prefix}:volumes.{key}")


def _compose_file_secrets(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    for key, secret in _as_dict(doc.get("secrets")).items():
        secret = _as_dict(secret)
        if secret.get("file"):
            yield Ref(str(key), f"{prefix}:secrets.{key}.file")


# -- kubernetes --------------------------------------------------------------

def _pod_spec(doc: Dict[str, Any]) -> Dict[str, Any]:
    kind = doc.get("kind")
    spec = _as_dict(doc.get("spec"))
    if kind == "Pod":
        return spec
    if kind in POD_KINDS:
        return _as_dict(_as_dict(spec.get("template")).get("spec"))
    if kind == "CronJob":
        job = _as_dict(_as_dict(spec.get("jobTemplate")).get("spec"))
        return _as_dict(_as_dict(job.get("template")).get("spec"))
    return {}


def _k8s_names(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    if doc.get("kind") in ("PersistentVolumeClaim", "PersistentVolume"):
        return
    meta = _as_dict(doc.get("metadata"))
    kind = doc.get("kind", "?")
    if meta.get("name"):
        yield Ref(str(meta["name"]), f"{prefix}:{kind}.metadata.name")
    if meta.get("namespace"):
        yield Ref(str(meta["namespace"]), f"{prefix}:{kind}.metadata.namespace")


def _k8s_hosts(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    if doc.get("kind") != "Ingress":
        return
    spec = _as_dict(doc.get("spec"))
    for i, rule in enumerate(_as_list(spec.get("rules"))):
        host = _as_dict(rule).get("host")
        if host:
            yield Ref(str(host), f"{prefix}:Ingress.spec.rules[{i}].host")
    for i, tls in enumerate(_as_list(spec.get("tls"))):
        for host in _as_list(_as_dict(tls).get("hosts")):
            yield Ref(str(host), f"{prefix}:Ingress.spec.tls[{i}].hosts")


def _k8s_images(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    pod = _pod_spec(doc)
    kind = doc.get("kind", "?")
    for group in ("initContainers", "containers"):
        for c in _as_list(pod.get(group)):
            c = _as_dict(c)
            if c.get("image"):
                yield Ref(str(c["image"]), f"{prefix}:{kind}.{group}.{c.get('name', '?')}.image")


def _k8s_mounts(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    pod = _pod_spec(doc)
    kind = doc.get("kind", "?")
    for vol in _as_list(pod.get("volumes")):
        vol = _as_dict(vol)
        path = _as_dict(vol.get("hostPath")).get("path")
        if path:
            yield Ref(str(path), f"{prefix}:{kind}.volumes.{vol.get('name', '?')}.hostPath")


def _k8s_volumes(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    if doc.get("kind") == "PersistentVolumeClaim":
        name = _as_dict(doc.get("metadata")).get("name")
        if name:
            yield Ref(str(name), f"{prefix}:PersistentVolumeClaim.metadata.name")


def _k8s_lookups(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    selector = _as_dict(_as_dict(doc.get("spec")).get("selector"))
    labels = _as_dict(selector.get("matchLabels")) or selector
    for key in labels:
        if "image" in str(key).lower():
            yield Ref(str(key), f"{prefix}:{doc.get('kind', '?')}.spec.selector")


# -- serverless --------------------------------------------------------------

def _function(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _as_dict(doc.get("function"))


def _fn_names(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    fn = _function(doc)
    if fn.get("name"):
        yield Ref(str(fn["name"]), f"{prefix}:function.name")


def _fn_hosts(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    fn = _function(doc)
    if fn.get("domain"):
        yield Ref(str(fn["domain"]), f"{prefix}:function.domain")
    for key, value in _kv_pairs(fn.get("environment")):
        if key in HOST_ENV_KEYS and value:
            yield Ref(value, f"{prefix}:function.environment.{key}")


def _fn_images(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    fn = _function(doc)
    if fn.get("image"):
        yield Ref(str(fn["image"]), f"{prefix}:function.image")


def _none(prefix: str, doc: Dict[str, Any]) -> Iterator[Ref]:
    return iter(())


Extractor = Callable[[str, Dict[str, Any]], Iterable[Ref]]

_EXTRACTORS: Dict[str, Dict[str, Extractor]] = {
    "compose": {
        "names": _compose_names,
        "hosts": _compose_hosts,
        "images": _compose_images,
        "mounts": _compose_mounts,
        "volumes": _compose_volumes,
        "file_secrets": _compose_file_secrets,
        "lookups": _none,
    },
    "kubernetes": {
        "names": _k8s_names,
        "hosts": _k8s_hosts,
        "images": _k8s_images,
        "mounts": _k8s_mounts,
        "volumes": _k8s_volumes,
        "file_secrets": _none,
        "lookups": _k8s_lookups,
    },
    "serverless": {
        "names": _fn_names,
        "hosts": _fn_hosts,
        "images": _fn_images,
        "mounts": _none,
        "volumes": _none,
        "file_secrets": _none,
        "lookups": _none,
    },
}


def _extract(kind: str, artifacts: Iterable[RenderedArtifact]) -> List[Ref]:
    refs: List[Ref] = []
    for artifact in artifacts:
        extractor = _EXTRACTORS.get(artifact.runtime, {}).get(kind, _none)
        for prefix, doc in _documents(artifact):
            refs.extend(extractor(prefix, doc))
    return refs


def external_names(artifacts: Iterable[RenderedArtifact]) -> List[Ref]:
    return _extract("names", artifacts)


def host_literals(artifacts: Iterable[RenderedArtifact]) -> List[Ref]:
    return _extract("hosts", artifacts)


def image_refs(artifacts: Iterable[RenderedArtifact]) -> List[Ref]:
    return _extract("images", artifacts)


def bind_mounts(artifacts: Iterable[RenderedArtifact]) -> List[Ref]:
    return _extract("mounts", artifacts)


def volume_names(artifacts: Iterable[RenderedArtifact]) -> List[Ref]:
    return _extract("volumes", artifacts)


def file_secrets(artifacts: Iterable[RenderedArtifact]) -> List[Ref]:
    return _extract("file_secrets", artifacts)


def lookup_filters(artifacts: Iterable[RenderedArtifact]) -> List[Ref]:
    """Resource lookups keyed on image ancestry rather than labels."""
    artifacts = list(artifacts)
    refs = _extract("lookups", artifacts)
    for artifact in artifacts:
        for prefix, doc in _documents(artifact):
            for path, value in _walk_strings(doc, prefix + ":"):
                if "ancestor=" in value:
                    refs.append(Ref(value, path.replace(":.", ":", 1)))
    return refs


def split_image(ref: str) -> Tuple[str, Optional[str], Optional[str]]:
    """
    Split an image reference into (repository, tag, digest).

    Handles registries with ports, e.g. ``localhost:5000/app:1.2``.
    """
    digest = None
    if "@" in ref:
        ref, digest = ref.split("@", 1)
    last = ref.rsplit("/", 1)[-1]
    if ":" in last:
        repo, tag = ref.rsplit(":", 1)
        return repo, tag or None, digest
    return ref, None, digest
