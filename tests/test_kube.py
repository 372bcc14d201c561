"""kubectl client, readiness predicates, and the polling readiness checker."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import pytest
import sh
from conftest import FakeCommand, FakeKubeClient

from turtles_e2e.config import WaitInterval
from turtles_e2e.errors import CancellationError, ProvisioningError, ReadinessTimeoutError
from turtles_e2e.kube import (
    DeploymentRef,
    Kubectl,
    KubectlReadinessChecker,
    ServiceRef,
    deployment_available,
    endpoints_ready,
    rollout_complete,
    service_exposed,
)
from turtles_e2e.runtime import RunContext

AVAILABLE = {"status": {"conditions": [{"type": "Available", "status": "True"}]}}


def _not_found() -> sh.ErrorReturnCode:
    return sh.ErrorReturnCode_1("kubectl", b"", b'Error from server (NotFound): deployments.apps "x" not found')


# ============================================================================
# Kubectl
# ============================================================================

def test_kubectl_bakes_kubeconfig_and_context() -> None:
    command = FakeCommand(outputs={("get",): json.dumps(AVAILABLE)})
    client = Kubectl(Path("/tmp/kubeconfig"), context="k3d-turtles-e2e", command=command)

    assert client.get("deployment", "rancher", "cattle-system") == AVAILABLE
    assert command.calls[-1] == (
        "--kubeconfig", "/tmp/kubeconfig", "--context", "k3d-turtles-e2e",
        "get", "deployment", "rancher", "-o", "json", "-n", "cattle-system",
    )


def test_kubectl_get_missing_object_returns_none() -> None:
    client = Kubectl(Path("/tmp/kubeconfig"), command=FakeCommand(errors={("get",): _not_found()}))

    assert client.get("deployment", "rancher", "cattle-system") is None


def test_kubectl_apply_feeds_manifest_on_stdin() -> None:
    command = FakeCommand()
    client = Kubectl(Path("/tmp/kubeconfig"), command=command)

    client.apply("kind: Namespace\n")

    assert command.calls[-1][2:] == ("apply", "-f", "-")
    assert command.kwargs[-1] == {"_in": "kind: Namespace\n"}


def test_kubectl_failure_is_a_provisioning_error() -> None:
    error = sh.ErrorReturnCode_1("kubectl", b"", b"the server could not find the requested resource")
    client = Kubectl(Path("/tmp/kubeconfig"), command=FakeCommand(errors={("patch",): error}))

    with pytest.raises(ProvisioningError, match="could not find"):
        client.patch("ingressclass", "ngrok", "{}")


def test_kubectl_create_secret_applies_dry_run_manifest() -> None:
    command = FakeCommand(outputs={("create",): "kind: Secret\n"})
    client = Kubectl(Path("/tmp/kubeconfig"), command=command)

    client.create_secret("basic-auth-secret", "default", {"username": "gitea", "password": "pw"})

    create, apply = command.calls[-2:]
    assert "--from-literal=username=gitea" in create
    assert "--dry-run=client" in create
    assert apply[2:5] == ("apply", "-f", "-")
    assert command.kwargs[-1] == {"_in": "kind: Secret\n"}


def test_kubectl_copy_to_first_matching_pod() -> None:
    command = FakeCommand(outputs={("get", "pods"): "chartmuseum-5d8f\n"})
    client = Kubectl(Path("/tmp/kubeconfig"), command=command)

    client.copy_to_pod("chartmuseum", "app.kubernetes.io/name=chartmuseum", Path("/out/chart.tgz"), "/storage")

    assert command.calls[-1][2:] == ("cp", "/out/chart.tgz", "chartmuseum/chartmuseum-5d8f:/storage/chart.tgz")


def test_kubectl_control_plane_ip_must_exist() -> None:
    client = Kubectl(Path("/tmp/kubeconfig"), command=FakeCommand(outputs={("get", "nodes"): ""}))

    with pytest.raises(ProvisioningError):
        client.control_plane_ip()


# ============================================================================
# Predicates
# ============================================================================

def test_deployment_available() -> None:
    assert deployment_available(AVAILABLE)
    assert not deployment_available(None)
    assert not deployment_available({"status": {"conditions": [{"type": "Available", "status": "False"}]}})


def test_rollout_complete_needs_latest_generation() -> None:
    deployment = {
        "metadata": {"generation": 2},
        "spec": {"replicas": 1},
        "status": {"observedGeneration": 1, "updatedReplicas": 1, "availableReplicas": 1},
    }
    assert not rollout_complete(deployment)

    deployment["status"]["observedGeneration"] = 2
    assert rollout_complete(deployment)


@pytest.mark.parametrize(
    ("service", "exposed"),
    [
        ({"spec": {"type": "LoadBalancer"}, "status": {"loadBalancer": {}}}, False),
        ({"spec": {"type": "LoadBalancer"}, "status": {"loadBalancer": {"ingress": [{"ip": "1.2.3.4"}]}}}, True),
        ({"spec": {"type": "NodePort", "ports": [{"port": 3000}]}}, False),
        ({"spec": {"type": "NodePort", "ports": [{"port": 3000, "nodePort": 30080}]}}, True),
        ({"spec": {"type": "ClusterIP", "clusterIP": "None"}}, False),
        ({"spec": {"type": "ClusterIP", "clusterIP": "10.43.0.10"}}, True),
    ],
)
def test_service_exposed(service: dict[str, Any], exposed: bool) -> None:
    assert service_exposed(service) is exposed


def test_endpoints_ready() -> None:
    assert not endpoints_ready({"subsets": []})
    assert endpoints_ready({"subsets": [{"addresses": [{"ip": "10.42.0.7"}]}]})


# ============================================================================
# Readiness checker
# ============================================================================

class SequenceClient(FakeKubeClient):
    """Returns the queued objects one per get, repeating the last."""

    def __init__(self, responses: list[dict[str, Any] | None]) -> None:
        super().__init__([])
        self.responses = responses
        self.gets = 0

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        self.gets += 1
        return self.responses[min(self.gets, len(self.responses)) - 1]


def test_wait_returns_once_ready() -> None:
    client = SequenceClient([None, {"status": {}}, AVAILABLE])
    checker = KubectlReadinessChecker(RunContext())

    checker.wait_for_deployments_available(client, DeploymentRef("rancher", "cattle-system"), WaitInterval(5, 0.01))

    assert client.gets == 3


def test_wait_times_out() -> None:
    checker = KubectlReadinessChecker(RunContext())

    with pytest.raises(ReadinessTimeoutError) as excinfo:
        checker.wait_for_deployments_available(
            SequenceClient([None]), DeploymentRef("rancher", "cattle-system"), WaitInterval(0.05, 0.01)
        )

    assert "deployment cattle-system/rancher" in excinfo.value.what
    assert excinfo.value.timeout == 0.05


def test_probe_errors_count_as_not_ready() -> None:
    class FlakyClient(SequenceClient):
        def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
            self.gets += 1
            if self.gets == 1:
                raise ProvisioningError("connection refused")
            return AVAILABLE

    client = FlakyClient([])
    KubectlReadinessChecker(RunContext()).wait_for_deployments_available(
        client, DeploymentRef("rancher", "cattle-system"), WaitInterval(5, 0.01)
    )

    assert client.gets == 2


def test_cancellation_interrupts_a_wait() -> None:
    ctx = RunContext()
    checker = KubectlReadinessChecker(ctx)
    timer = threading.Timer(0.05, ctx.cancel)
    timer.start()
    try:
        with pytest.raises(CancellationError, match="cancelled while waiting for deployment"):
            checker.wait_for_deployments_available(
                SequenceClient([None]), DeploymentRef("rancher", "cattle-system"), WaitInterval(30, 10)
            )
    finally:
        timer.cancel()


def test_cancelled_run_is_distinct_from_timeout() -> None:
    ctx = RunContext()
    ctx.cancel("cancelled by SIGINT")

    with pytest.raises(CancellationError) as excinfo:
        KubectlReadinessChecker(ctx).wait_for_rollout(
            SequenceClient([None]), DeploymentRef("gitea", "default"), WaitInterval(1, 0.01)
        )

    assert not isinstance(excinfo.value, ReadinessTimeoutError)


def test_wait_for_service_returns_the_exposed_service() -> None:
    service = {"spec": {"type": "NodePort", "ports": [{"port": 3000, "nodePort": 30080}]}}
    endpoints = {"subsets": [{"addresses": [{"ip": "10.42.0.7"}]}]}
    client = FakeKubeClient([])
    client.objects[("service", "default", "gitea-http")] = service
    client.objects[("endpoints", "default", "gitea-http")] = endpoints

    result = KubectlReadinessChecker(RunContext()).wait_for_service(
        client, ServiceRef("gitea-http", "default"), WaitInterval(1, 0.01)
    )

    assert result == service
