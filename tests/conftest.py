"""
Shared fixtures for stackpact tests.
"""

import textwrap

import pytest

from stackpact.binding import build_binding
from stackpact.identity import resolve
from stackpact.templates import ArtifactTemplate, RenderedArtifact


DEV_INPUTS = {"STACK": "acctdemo", "LOCAL_DOMAIN": "localhost"}
PROD_INPUTS = {"STACK": "acctdemo", "BASE_DOMAIN": "example.com"}

COMPOSE_TEMPLATE = textwrap.dedent("""\
    name: ${COMPOSE_PROJECT_NAME}
    services:
      web:
        image: ${WEB_IMAGE}
        container_name: ${COMPOSE_PROJECT_NAME}-web
        environment:
          APP_HOST: ${APP_HOST}
        labels:
          stackpact.stack: ${STACK}
          traefik.http.routers.${STACK}.rule: Host(`${APP_HOST}`)
    volumes:
      data:
        name: ${COMPOSE_PROJECT_NAME}_data
""")


def compose(text: str, name: str = "docker-compose.yaml") -> RenderedArtifact:
    """A rendered compose artifact from literal YAML."""
    return RenderedArtifact(name=name, runtime="compose", text=textwrap.dedent(text))


def kube(text: str, name: str = "app.yaml") -> RenderedArtifact:
    return RenderedArtifact(name=name, runtime="kubernetes", text=textwrap.dedent(text))


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep every test away from the real home, arm state and config file."""
    monkeypatch.setenv("STACKPACT_HOME", str(tmp_path / "home"))
    for var in ("STACKPACT_ARMED", "STACKPACT_ARM_FILE", "STACKPACT_CONFIG",
                "STACKPACT_EVENTS_DIR", "STACKPACT_APPLY_TIMEOUT",
                "STACK", "LOCAL_DOMAIN", "STAGING_DOMAIN", "BASE_DOMAIN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def dev_identity():
    return resolve(DEV_INPUTS, "dev")


@pytest.fixture
def prod_identity():
    return resolve(PROD_INPUTS, "prod")


@pytest.fixture
def dev_binding(dev_identity):
    return build_binding(dev_identity, dict(DEV_INPUTS, WEB_IMAGE="ghcr.io/acme/web:1.4.2"))


@pytest.fixture
def compose_template():
    return ArtifactTemplate(name="docker-compose.yaml", runtime="compose", text=COMPOSE_TEMPLATE)


@pytest.fixture
def templates_dir(tmp_path):
    """A template tree with one compose template."""
    root = tmp_path / "templates"
    (root / "compose").mkdir(parents=True)
    (root / "compose" / "docker-compose.yaml").write_text(COMPOSE_TEMPLATE)
    return root
