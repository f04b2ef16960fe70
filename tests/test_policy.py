"""
Tests for the policy rules, registry and evaluation.
"""

from typing import List

import pytest

from stackpact.binding import build_binding
from stackpact.config import Settings
from stackpact.inventory import RuntimeInventorySnapshot, RuntimeResource
from stackpact.policy import (
    PolicyContext,
    PolicyRule,
    RuleRegistry,
    Violation,
    blocking,
    default_registry,
    default_rules,
    evaluate,
    validate,
)
from stackpact.policy.rules import (
    ArmGateRule,
    DeterministicImageRule,
    FrontDoorRule,
    LabelDiscoveryRule,
)

from conftest import DEV_INPUTS, PROD_INPUTS, compose


CLEAN = compose("""\
    name: acctdemo
    services:
      web:
        image: ghcr.io/acme/web:1.4.2
        container_name: acctdemo-web
        labels:
          traefik.http.routers.acctdemo.rule: Host(`acctdemo.localhost`)
    volumes:
      data:
        name: acctdemo_data
""")


def classes(violations: List[Violation]) -> List[str]:
    return [v.violation_class for v in violations]


def inventory(*resources):
    return RuntimeInventorySnapshot(resources=tuple(resources), source="test")


def proxy(name="edge-proxy", role="ingress", ports=(80, 443)):
    labels = {"stackpact.role": role} if role else {}
    return RuntimeResource(name=name, labels=labels, bound_ports=tuple(ports))


class TestCleanStack:
    """A well-formed stack passes every rule."""

    def test_no_violations(self, dev_binding):
        assert validate(dev_binding, [CLEAN]) == []

    def test_with_healthy_inventory(self, dev_binding):
        snap = inventory(proxy(), RuntimeResource(name="acctdemo-web", labels={"stackpact.stack": "acctdemo"}))
        assert validate(dev_binding, [CLEAN], inventory=snap) == []


class TestNamespacing:
    """Externally visible names carry the stack token."""

    def test_unscoped_container_name(self, dev_binding):
        artifact = compose("""\
            name: acctdemo
            services:
              web:
                image: nginx:1.25.3
                container_name: web
        """)
        found = validate(dev_binding, [artifact])
        assert classes(found) == ["MissingNamespace"]
        assert found[0].value == "web"
        assert found[0].location == "docker-compose.yaml:services.web.container_name"

    def test_case_insensitive(self, dev_binding):
        artifact = compose("name: AcctDemo-stack\n")
        assert validate(dev_binding, [artifact]) == []


class TestHardcodedHost:
    """Ingress hosts must be derived."""

    def test_literal_host(self, dev_binding):
        artifact = compose("""\
            services:
              acctdemo:
                image: nginx:1.25.3
                environment:
                  VIRTUAL_HOST: shop.example.org
        """)
        found = validate(dev_binding, [artifact])
        assert classes(found) == ["HardcodedHost"]
        assert found[0].value == "shop.example.org"

    def test_subdomain_allowed(self, dev_binding):
        artifact = compose("""\
            services:
              acctdemo:
                image: nginx:1.25.3
                environment:
                  VIRTUAL_HOST: api.acctdemo.localhost
        """)
        assert validate(dev_binding, [artifact]) == []


class TestSecretSource:
    """Production secrets never come from files."""

    def test_prod_secret_file_reported_once(self, prod_identity):
        binding = build_binding(prod_identity, dict(PROD_INPUTS, DB_PASSWORD_FILE="/run/secrets/db_password"))
        found = validate(binding)
        assert classes(found) == ["ForbiddenSecretFile"]
        assert found[0].value == "DB_PASSWORD_FILE"

    def test_dev_secret_file_allowed(self, dev_identity):
        binding = build_binding(dev_identity, dict(DEV_INPUTS, DB_PASSWORD_FILE="/run/secrets/db_password"))
        assert validate(binding) == []

    def test_env_file_secret_in_prod(self, prod_identity):
        binding = build_binding(prod_identity, PROD_INPUTS, {"API_TOKEN": "vault:kv/api"})
        assert classes(validate(binding)) == ["ForbiddenSecretFile"]

    def test_compose_file_secret_in_prod(self, prod_identity):
        binding = build_binding(prod_identity, PROD_INPUTS)
        artifact = compose("""\
            secrets:
              db_password:
                file: ./db_password.txt
        """)
        found = validate(binding, [artifact])
        assert classes(found) == ["ForbiddenSecretFile"]
        assert found[0].location == "docker-compose.yaml:secrets.db_password.file"


class TestLiteralSecret:
    """Production secrets are references."""

    def test_literal_in_prod(self, prod_identity):
        binding = build_binding(prod_identity, dict(PROD_INPUTS, DB_PASSWORD="hunter2"))
        found = validate(binding)
        assert classes(found) == ["LiteralSecret"]
        assert "hunter2" not in found[0].value
        assert "hunter2" not in found[0].reason

    def test_reference_in_prod(self, prod_identity):
        binding = build_binding(prod_identity, dict(PROD_INPUTS, DB_PASSWORD="ssm:/acctdemo/db"))
        assert validate(binding) == []


class TestFrontDoor:
    """Exactly one ingress process owns the edge ports."""

    def test_two_binders(self, dev_binding):
        snap = inventory(proxy("edge-proxy"), proxy("acctdemo-nginx", role=None))
        found = [v for v in validate(dev_binding, inventory=snap, wants_apply=True) if v.rule == FrontDoorRule.name]
        assert found
        assert {v.value for v in found} == {"acctdemo-nginx"}
        assert all(not v.advisory for v in found)

    def test_single_ingress(self, dev_binding):
        snap = inventory(proxy("edge-proxy"))
        assert validate(dev_binding, inventory=snap, wants_apply=True) == []

    def test_single_unlabelled_binder(self, dev_binding):
        snap = inventory(proxy("edge-proxy", role=None))
        assert validate(dev_binding, inventory=snap, wants_apply=True) == []

    def test_single_binder_with_app_role(self, dev_binding):
        snap = inventory(proxy("web-1", role="app"))
        found = validate(dev_binding, inventory=snap, wants_apply=True)
        assert classes(found) == ["FrontDoorViolation"]
        assert found[0].value == "web-1"

    def test_two_unlabelled_binders(self, dev_binding):
        snap = inventory(proxy("a", role=None), proxy("b", role=None, ports=(443,)))
        found = validate(dev_binding, inventory=snap, wants_apply=True)
        assert classes(found) == ["FrontDoorViolation"]
        assert found[0].value == "a, b"

    def test_no_binder(self, dev_binding):
        snap = inventory(RuntimeResource(name="acctdemo-web", labels={"stackpact.stack": "acctdemo"}))
        assert classes(validate(dev_binding, inventory=snap, wants_apply=True)) == ["FrontDoorViolation"]

    def test_advisory_without_apply(self, dev_binding):
        snap = inventory(proxy("edge-proxy"), proxy("acctdemo-nginx", role="app"))
        found = validate(dev_binding, inventory=snap)
        assert found
        assert all(v.advisory for v in found)
        assert blocking(found) == []

    def test_skipped_without_inventory(self, dev_binding):
        assert validate(dev_binding, wants_apply=True) == []

    def test_custom_edge_ports(self, dev_binding):
        rule = FrontDoorRule(edge_ports=(8443,))
        ctx = PolicyContext(identity=dev_binding.identity, binding=dev_binding, inventory=inventory(proxy(ports=(8443,))))
        assert rule.evaluate(ctx) == []


class TestLabelDiscovery:
    """Resources are found by labels."""

    def test_ancestor_filter(self, dev_binding):
        artifact = compose("""\
            services:
              acctdemo-ops:
                image: docker:27.1
                command: docker ps -q --filter ancestor=acctdemo-web
        """)
        assert classes(validate(dev_binding, [artifact])) == ["AncestryBasedLookup"]

    def test_unlabelled_inventory_resource(self, dev_binding):
        snap = inventory(proxy(), RuntimeResource(name="acctdemo-web-1"))
        found = validate(dev_binding, inventory=snap, wants_apply=True)
        assert classes(found) == ["AncestryBasedLookup"]
        assert found[0].location == "inventory:acctdemo-web-1"

    def test_foreign_resource_ignored(self, dev_binding):
        snap = inventory(proxy(), RuntimeResource(name="billing-web"))
        assert validate(dev_binding, inventory=snap, wants_apply=True) == []


class TestBridgedMount:
    """No bind mounts across bridged drives."""

    @pytest.mark.parametrize("source", ["/mnt/c/Users/dev/app", "C:\\\\Users\\\\dev", "/run/desktop/mnt/host/c/app", "/host_mnt/Users/dev"])
    def test_bridged(self, dev_binding, source):
        artifact = compose(f"""\
            services:
              acctdemo:
                image: nginx:1.25.3
                volumes:
                  - type: bind
                    source: "{source}"
                    target: /app
        """)
        assert classes(validate(dev_binding, [artifact])) == ["BridgedMount"]

    def test_native_path(self, dev_binding):
        artifact = compose("""\
            services:
              acctdemo:
                image: nginx:1.25.3
                volumes:
                  - /srv/acctdemo:/app
        """)
        assert validate(dev_binding, [artifact]) == []


class TestVolumeNamespacing:
    """Persistent volumes are scoped."""

    def test_unscoped(self, dev_binding):
        artifact = compose("""\
            volumes:
              data:
                name: pgdata
        """)
        found = validate(dev_binding, [artifact])
        assert classes(found) == ["UnscopedVolume"]

    @pytest.mark.parametrize("name", ["acctdemo_pgdata", "acctdemo-pgdata", "AcctDemo_pgdata"])
    def test_scoped(self, dev_binding, name):
        artifact = compose(f"""\
            volumes:
              data:
                name: {name}
        """)
        assert validate(dev_binding, [artifact]) == []


class TestDeterministicImage:
    """Images are pinned."""

    def test_untagged_vs_pinned(self, dev_binding):
        artifact = compose("""\
            services:
              acctdemo-a:
                image: nginx
              acctdemo-b:
                image: nginx:1.25.3
        """)
        found = validate(dev_binding, [artifact])
        assert classes(found) == ["FloatingImageTag"]
        assert found[0].value == "nginx"

    @pytest.mark.parametrize("image,floating", [
        ("nginx", True),
        ("nginx:latest", True),
        ("nginx:1.25.3", False),
        ("nginx@sha256:0123abcd", False),
        ("localhost:5000/web", True),
        ("localhost:5000/web:2.1", False),
    ])
    def test_floating_reason(self, image, floating):
        assert (DeterministicImageRule.floating_reason(image) is not None) == floating

    def test_binding_image(self, dev_identity):
        binding = build_binding(dev_identity, dict(DEV_INPUTS, WEB_IMAGE="ghcr.io/acme/web:latest"))
        found = validate(binding)
        assert classes(found) == ["FloatingImageTag"]
        assert found[0].location == "binding:WEB_IMAGE"


class TestArmGate:
    """Production apply needs the toggle."""

    def test_prod_apply_closed(self, prod_identity):
        binding = build_binding(prod_identity, PROD_INPUTS)
        found = validate(binding, wants_apply=True, gate_open=False)
        assert classes(found) == ["ProductionGateClosed"]

    def test_prod_apply_open(self, prod_identity):
        binding = build_binding(prod_identity, PROD_INPUTS)
        assert validate(binding, wants_apply=True, gate_open=True) == []

    def test_prod_validate_only(self, prod_identity):
        binding = build_binding(prod_identity, PROD_INPUTS)
        assert validate(binding) == []

    def test_dev_apply(self, dev_binding):
        assert validate(dev_binding, wants_apply=True) == []


class TestEvaluation:
    """Evaluation is order independent and extensible."""

    def messy(self):
        return compose("""\
            name: shop
            services:
              web:
                image: nginx
                container_name: web
                environment:
                  VIRTUAL_HOST: shop.example.org
                volumes:
                  - /mnt/c/app:/app
            volumes:
              data:
                name: data
        """)

    def test_order_independent(self, dev_binding):
        snap = inventory(proxy("a", role=None), proxy("b", role=None), RuntimeResource(name="acctdemo-x"))
        forward = RuleRegistry(default_rules())
        backward = RuleRegistry(list(reversed(default_rules())))
        ctx = PolicyContext(identity=dev_binding.identity, binding=dev_binding, artifacts=(self.messy(),), inventory=snap)

        first = evaluate(ctx, forward)
        assert first
        assert evaluate(ctx, backward) == first
        assert evaluate(ctx, forward, parallel=True) == first

    def test_all_reported(self, dev_binding):
        found = classes(validate(dev_binding, [self.messy()]))
        for expected in ("MissingNamespace", "HardcodedHost", "BridgedMount", "UnscopedVolume", "FloatingImageTag"):
            assert expected in found

    def test_empty_registry_evaluates_nothing(self, dev_binding):
        assert validate(dev_binding, [self.messy()], registry=RuleRegistry()) == []

    def test_settings_used_for_default_registry(self, dev_binding, tmp_path):
        settings = Settings(home=tmp_path, arm_file=tmp_path / "ARMED", disabled_rules=("deterministic-image",))
        found = classes(validate(dev_binding, [self.messy()], settings=settings))
        assert "FloatingImageTag" not in found
        assert "MissingNamespace" in found

    def test_custom_rule(self, dev_binding):
        class NoLocalhostRule(PolicyRule):
            name = "no-localhost"
            violation_class = "LocalhostReference"
            description = "No localhost URLs in values"

            def evaluate(self, ctx):
                return [
                    self.violation(k, "value points at localhost", f"binding:{k}")
                    for k, v in ctx.binding.items()
                    if "localhost:" in v
                ]

        registry = default_registry()
        registry.register(NoLocalhostRule())
        binding = build_binding(dev_binding.identity, {"API_URL": "http://localhost:8080"})
        found = validate(binding, registry=registry)
        assert classes(found) == ["LocalhostReference"]


class TestRegistry:
    """Test the rule registry."""

    def test_default_names(self):
        assert default_registry().names() == sorted([
            "arm-gate", "bridged-mount", "deterministic-image", "label-discovery", "literal-secret",
            "namespacing", "no-hardcoded-host", "secret-source", "single-front-door", "volume-namespacing",
        ])

    def test_duplicate_rejected(self):
        registry = default_registry()
        with pytest.raises(ValueError):
            registry.register(ArmGateRule())

    def test_unregister(self):
        registry = default_registry()
        registry.unregister(LabelDiscoveryRule.name)
        assert LabelDiscoveryRule.name not in registry
        with pytest.raises(KeyError):
            registry.unregister(LabelDiscoveryRule.name)

    def test_disabled_rules(self, tmp_path):
        settings = Settings(home=tmp_path, arm_file=tmp_path / "ARMED", disabled_rules=("label-discovery", "arm-gate"))
        registry = default_registry(settings)
        assert "label-discovery" not in registry
        assert "arm-gate" in registry
