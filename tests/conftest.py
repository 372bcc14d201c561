"""Shared fakes for the collaborators the stages drive."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest
import yaml

from turtles_e2e.cluster import ClusterHandle, ClusterProvisioner, ClusterRequest
from turtles_e2e.config import SuiteFlags, WaitInterval, resolve_run_configuration
from turtles_e2e.context import SuiteTools
from turtles_e2e.errors import ProvisioningError, ReadinessTimeoutError
from turtles_e2e.helm import ChartRelease
from turtles_e2e.kube import DeploymentRef, ServiceRef

Event = tuple[str, ...]

VARIABLES = {
    "KUBERNETES_MANAGEMENT_VERSION": "v1.30.2",
    "RANCHER_HOSTNAME": "rancher.example.test",
    "RANCHER_REPO_NAME": "rancher-latest",
    "RANCHER_URL": "https://releases.rancher.com/server-charts/latest",
    "RANCHER_PATH": "rancher-latest/rancher",
    "RANCHER_VERSION": "v2.9.1",
    "RANCHER_PASSWORD": "rancheradmin",
    "CERT_MANAGER_PATH": "jetstack/cert-manager",
    "CERT_MANAGER_URL": "https://charts.jetstack.io",
    "CERT_MANAGER_REPO_NAME": "jetstack",
    "NGROK_API_KEY": "api-key",
    "NGROK_AUTHTOKEN": "auth-token",
    "NGROK_PATH": "ngrok/kubernetes-ingress-controller",
    "NGROK_REPO_NAME": "ngrok",
    "NGROK_URL": "https://charts.ngrok.com",
    "GITEA_REPO_NAME": "gitea-charts",
    "GITEA_REPO_URL": "https://dl.gitea.com/charts/",
    "GITEA_CHART_NAME": "gitea",
    "GITEA_CHART_VERSION": "10.1.4",
    "GITEA_USER_NAME": "gitea",
    "GITEA_USER_PWD": "password",
}

PHASES = (
    "wait-rancher",
    "wait-controllers",
    "wait-gitea",
    "wait-gitea-service",
    "wait-gitea-uninstall",
    "wait-turtles-uninstall",
)


class FakeKubeClient:
    def __init__(self, events: list[Event], fail: set[str] | None = None) -> None:
        self.events = events
        self.fail = fail or set()
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.applied: list[str] = []
        self.patches: list[tuple[str, str, str]] = []
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}

    def _record(self, op: str, *args: str) -> None:
        self.events.append(("kube", op, *args))
        if op in self.fail:
            raise ProvisioningError(f"kubectl {op} failed")

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        return self.objects.get((kind, namespace, name))

    def apply(self, manifest: str, namespace: str | None = None) -> None:
        self._record("apply")
        self.applied.append(manifest)

    def patch(self, kind: str, name: str, patch: str, namespace: str | None = None) -> None:
        self._record("patch", kind, name)
        self.patches.append((kind, name, patch))

    def create_secret(self, name: str, namespace: str, literals: dict[str, str]) -> None:
        self._record("secret", name)
        self.secrets[(namespace, name)] = dict(literals)

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None:
        self._record("delete", kind, name)

    def copy_to_pod(self, namespace: str, selector: str, source: Path, target_dir: str) -> None:
        self._record("copy", namespace, source.name)

    def control_plane_ip(self) -> str:
        self._record("control_plane_ip")
        return "172.18.0.2"

    def dump_cluster_info(self, output_dir: Path) -> None:
        self._record("dump")


class FakeProvider:
    def __init__(
        self,
        events: list[Event],
        kubeconfig: Path,
        name: str = "turtles-e2e",
        fail_create: bool = False,
        fail_dispose: bool = False,
    ) -> None:
        self.events = events
        self.kubeconfig = kubeconfig
        self.name = name
        self.fail_create = fail_create
        self.fail_dispose = fail_dispose
        self.client = FakeKubeClient(events)
        self.requests: list[ClusterRequest] = []

    def create(self, request: ClusterRequest) -> ClusterHandle:
        self.events.append(("cluster", "create"))
        self.requests.append(request)
        if self.fail_create:
            raise ProvisioningError("k3d cluster create failed")
        return ClusterHandle(self.name, self.kubeconfig, self.client)

    def attach(self) -> ClusterHandle:
        self.events.append(("cluster", "attach"))
        return ClusterHandle(self.name, self.kubeconfig, self.client, existing=True)

    def dispose(self, handle: ClusterHandle) -> None:
        self.events.append(("cluster", "dispose"))
        if self.fail_dispose:
            raise ProvisioningError("cluster unreachable")


class FakeCharts:
    def __init__(self, events: list[Event], fail: set[tuple[str, str]] | None = None) -> None:
        self.events = events
        self.fail = fail or set()
        self.releases: dict[str, ChartRelease] = {}
        self.uninstall_waits: dict[str, WaitInterval | None] = {}

    def _record(self, op: str, name: str) -> None:
        self.events.append(("helm", op, name))
        if (op, name) in self.fail:
            raise ProvisioningError(f"helm {op} {name} failed")

    def add_repo(self, name: str, url: str) -> None:
        self._record("add_repo", name)

    def install(self, release: ChartRelease, wait: WaitInterval | None = None) -> None:
        self._record("install", release.name)
        self.releases[release.name] = release

    def upgrade(self, release: ChartRelease, wait: WaitInterval | None = None) -> None:
        self._record("upgrade", release.name)
        self.releases[release.name] = release

    def uninstall(self, name: str, namespace: str, wait: WaitInterval | None = None) -> None:
        self._record("uninstall", name)
        self.uninstall_waits[name] = wait


class FakeReadiness:
    """Records every wait; names in *fail* time out."""

    def __init__(self, events: list[Event], fail: set[str] | None = None) -> None:
        self.events = events
        self.fail = fail or set()
        self.intervals: dict[str, WaitInterval] = {}
        self.refs: list[DeploymentRef | ServiceRef] = []

    def _record(self, op: str, ref: DeploymentRef | ServiceRef, interval: WaitInterval) -> None:
        name = ref.name
        self.refs.append(ref)
        self.events.append(("wait", op, name))
        self.intervals[name] = interval
        if name in self.fail:
            raise ReadinessTimeoutError(name, interval.timeout)

    def wait_for_deployments_available(
        self, client: FakeKubeClient, deployment: DeploymentRef, interval: WaitInterval
    ) -> None:
        self._record("available", deployment, interval)

    def wait_for_rollout(self, client: FakeKubeClient, deployment: DeploymentRef, interval: WaitInterval) -> None:
        self._record("rollout", deployment, interval)

    def wait_for_service(self, client: FakeKubeClient, service: ServiceRef, interval: WaitInterval) -> dict[str, Any]:
        self._record("service", service, interval)
        obj = client.get("service", service.name, service.namespace)
        if obj is not None:
            return obj
        return {
            "spec": {"type": "NodePort", "ports": [{"port": 3000, "nodePort": 30080}]},
            "status": {},
        }


def index_of(events: list[Event], event: Event) -> int:
    """Position of the first occurrence of *event*."""
    return events.index(event)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("E2E_") or name in VARIABLES or name == "KUBECONFIG":
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def events() -> list[Event]:
    return []


@pytest.fixture
def e2e_config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config" / "operator.yaml"
    path.parent.mkdir()
    config = {
        "name": "turtles-e2e",
        "variables": dict(VARIABLES),
        "intervals": {f"default/{phase}": ["2s", "1s"] for phase in PHASES},
    }
    path.write_text(yaml.safe_dump(config))
    return path


@pytest.fixture
def suite_flags(tmp_path: Path, e2e_config_path: Path) -> SuiteFlags:
    helm = tmp_path / "bin" / "helm"
    helm.parent.mkdir()
    helm.write_text("#!/bin/sh\n")
    chart = tmp_path / "rancher-turtles-0.0.1.tgz"
    chart.write_bytes(b"chart")
    return SuiteFlags(
        config_path=e2e_config_path,
        artifacts_folder=tmp_path / "_artifacts",
        helm_binary_path=helm,
        chart_path=chart,
    )


@pytest.fixture
def run_config(suite_flags: SuiteFlags):
    return resolve_run_configuration(suite_flags)


@pytest.fixture
def provider(events: list[Event], tmp_path: Path) -> FakeProvider:
    return FakeProvider(events, tmp_path / "turtles-e2e.kubeconfig")


@pytest.fixture
def existing_provider(events: list[Event], tmp_path: Path) -> FakeProvider:
    return FakeProvider(events, tmp_path / "existing.kubeconfig", name="kind-existing")


@pytest.fixture
def charts(events: list[Event]) -> FakeCharts:
    return FakeCharts(events)


@pytest.fixture
def readiness(events: list[Event]) -> FakeReadiness:
    return FakeReadiness(events)


@pytest.fixture
def handle(provider: FakeProvider) -> ClusterHandle:
    return ClusterHandle(provider.name, provider.kubeconfig, provider.client)


@pytest.fixture
def tools(provider: FakeProvider, existing_provider: FakeProvider, charts: FakeCharts,
          readiness: FakeReadiness) -> SuiteTools:
    return SuiteTools(
        provisioner=ClusterProvisioner(local=provider, existing=existing_provider),
        readiness=readiness,
        chart_deployer_factory=lambda helm_binary, kubeconfig: charts,
    )


class FakeCommand:
    """Stands in for an ``sh.Command``: records calls, answers by argument prefix."""

    def __init__(
        self,
        outputs: dict[tuple[str, ...], str] | None = None,
        errors: dict[tuple[str, ...], Exception] | None = None,
    ) -> None:
        self.outputs = outputs or {}
        self.errors = errors or {}
        self.baked: tuple[str, ...] = ()
        self.calls: list[tuple[str, ...]] = []
        self.kwargs: list[dict[str, Any]] = []

    def bake(self, *args: str) -> FakeCommand:
        self.baked = self.baked + args
        return self

    def __call__(self, *args: str, **kwargs: Any) -> str:
        self.calls.append(self.baked + args)
        self.kwargs.append(kwargs)
        for prefix, err in self.errors.items():
            if args[:len(prefix)] == prefix:
                raise err
        for prefix, output in self.outputs.items():
            if args[:len(prefix)] == prefix:
                return output
        return ""
