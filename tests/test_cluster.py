"""Cluster provisioner selection, providers, and cleanup."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import sh
from conftest import Event, FakeCommand, FakeProvider

from turtles_e2e.cluster import (
    ClusterProvisioner,
    ClusterRequest,
    EKSClusterProvider,
    ExistingClusterProvider,
    K3dClusterProvider,
    eks_version,
)
from turtles_e2e.config import EKSConfig, K3dConfig, RunConfiguration
from turtles_e2e.errors import CancellationError, PreconditionError, ProvisioningError
from turtles_e2e.modes import OperatingMode
from turtles_e2e.runtime import RunContext


def test_local_mode_creates_a_cluster(run_config: RunConfiguration, provider: FakeProvider,
                                      existing_provider: FakeProvider, events: list[Event]) -> None:
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)

    result = provisioner.setup(run_config, OperatingMode(), "v1.30.2")

    assert events == [("cluster", "create")]
    assert result.provider is provider
    assert result.isolated_hostname == ""
    assert provider.requests[0].kubernetes_version == "v1.30.2"
    assert provider.requests[0].artifacts_folder == run_config.artifacts_folder


def test_existing_cluster_is_attached(run_config: RunConfiguration, provider: FakeProvider,
                                      existing_provider: FakeProvider, events: list[Event]) -> None:
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)

    result = provisioner.setup(run_config, OperatingMode(use_existing_cluster=True), "")

    assert events == [("cluster", "attach")]
    assert result.handle.existing
    assert result.handle.name == "kind-existing"


def test_managed_cloud_requires_custom_provider(run_config: RunConfiguration, provider: FakeProvider,
                                                existing_provider: FakeProvider, events: list[Event]) -> None:
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)

    with pytest.raises(PreconditionError, match="EKS custom cluster provider is required"):
        provisioner.setup(run_config, OperatingMode(use_managed_cloud_provider=True), "v1.30.2")

    assert events == []


def test_managed_cloud_uses_custom_provider(run_config: RunConfiguration, provider: FakeProvider,
                                            existing_provider: FakeProvider, tmp_path: Path) -> None:
    custom_events: list[Event] = []
    custom = FakeProvider(custom_events, tmp_path / "eks.kubeconfig", name="turtles-eks")
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider, custom=custom)

    result = provisioner.setup(run_config, OperatingMode(use_managed_cloud_provider=True), "v1.30.2")

    assert custom_events == [("cluster", "create")]
    assert result.provider is custom


def test_isolated_mode_derives_hostname_from_node_ip(run_config: RunConfiguration, provider: FakeProvider,
                                                     existing_provider: FakeProvider) -> None:
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)

    result = provisioner.setup(run_config, OperatingMode(isolated_networking=True), "v1.30.2")

    assert result.isolated_hostname == "172.18.0.2.sslip.io"


def test_isolated_hostname_failure_disposes_the_created_cluster(run_config: RunConfiguration,
                                                                provider: FakeProvider,
                                                                existing_provider: FakeProvider,
                                                                events: list[Event]) -> None:
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)
    provider.client.fail.add("control_plane_ip")

    with pytest.raises(ProvisioningError, match="control_plane_ip"):
        provisioner.setup(run_config, OperatingMode(isolated_networking=True), "v1.30.2")

    assert events == [("cluster", "create"), ("kube", "control_plane_ip"), ("cluster", "dispose")]


def test_failed_dispose_does_not_mask_the_setup_error(run_config: RunConfiguration, provider: FakeProvider,
                                                      existing_provider: FakeProvider) -> None:
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)
    provider.client.fail.add("control_plane_ip")
    provider.fail_dispose = True

    with pytest.raises(ProvisioningError, match="control_plane_ip"):
        provisioner.setup(run_config, OperatingMode(isolated_networking=True), "v1.30.2")


def test_provisioning_failure_propagates(run_config: RunConfiguration, provider: FakeProvider,
                                         existing_provider: FakeProvider) -> None:
    provider.fail_create = True
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)

    with pytest.raises(ProvisioningError):
        provisioner.setup(run_config, OperatingMode(), "v1.30.2")


def test_cleanup_dumps_logs_then_disposes(run_config: RunConfiguration, provider: FakeProvider,
                                          existing_provider: FakeProvider, events: list[Event]) -> None:
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)
    result = provisioner.setup(run_config, OperatingMode(), "v1.30.2")
    events.clear()

    provisioner.cleanup(result, run_config.artifacts_folder)

    assert events == [("kube", "dump"), ("cluster", "dispose")]


def test_cleanup_disposes_even_if_dump_fails(run_config: RunConfiguration, provider: FakeProvider,
                                             existing_provider: FakeProvider, events: list[Event]) -> None:
    provisioner = ClusterProvisioner(local=provider, existing=existing_provider)
    result = provisioner.setup(run_config, OperatingMode(), "v1.30.2")
    provider.client.fail.add("dump")
    events.clear()

    provisioner.cleanup(result, run_config.artifacts_folder)

    assert events[-1] == ("cluster", "dispose")


# ============================================================================
# Providers
# ============================================================================

def test_k3d_create_writes_private_kubeconfig(tmp_path: Path) -> None:
    k3d = FakeCommand(outputs={("kubeconfig", "get"): "apiVersion: v1\n"})
    provider = K3dClusterProvider(K3dConfig(cluster_name="turtles-e2e"), command=k3d, kubectl_command=FakeCommand())

    handle = provider.create(ClusterRequest(kubernetes_version="v1.30.2", artifacts_folder=tmp_path))

    create = next(call for call in k3d.calls if call[:2] == ("cluster", "create"))
    assert "rancher/k3s:v1.30.2-k3s1" in create
    assert handle.kubeconfig_path == tmp_path / "turtles-e2e.kubeconfig"
    assert handle.kubeconfig_path.read_text() == "apiVersion: v1\n"
    assert handle.kubeconfig_path.stat().st_mode & 0o777 == 0o600
    assert not handle.existing


def test_k3d_create_failure_is_a_provisioning_error(tmp_path: Path) -> None:
    error = sh.ErrorReturnCode_1("k3d", b"", b"port 80 already allocated")
    k3d = FakeCommand(errors={("cluster", "create"): error})
    provider = K3dClusterProvider(K3dConfig(max_retries=1), command=k3d, kubectl_command=FakeCommand())

    with pytest.raises(ProvisioningError, match="port 80 already allocated"):
        provider.create(ClusterRequest(kubernetes_version="v1.30.2", artifacts_folder=tmp_path))


def test_k3d_create_stops_retrying_once_cancelled(tmp_path: Path) -> None:
    ctx = RunContext()

    class InterruptedK3d(FakeCommand):
        def __call__(self, *args: str, **kwargs: Any) -> str:
            if args[:2] == ("cluster", "create"):
                ctx.cancel("cancelled by SIGINT")
            return super().__call__(*args, **kwargs)

    k3d = InterruptedK3d(errors={("cluster", "create"): sh.ErrorReturnCode_1("k3d", b"", b"interrupted")})
    provider = K3dClusterProvider(K3dConfig(max_retries=3), command=k3d, kubectl_command=FakeCommand(), ctx=ctx)

    with pytest.raises(CancellationError, match="SIGINT"):
        provider.create(ClusterRequest(kubernetes_version="v1.30.2", artifacts_folder=tmp_path))

    creates = [call for call in k3d.calls if call[:2] == ("cluster", "create")]
    assert len(creates) == 1
    assert k3d.calls[-1] == ("cluster", "delete", "turtles-e2e")


def test_k3d_create_is_skipped_when_already_cancelled(tmp_path: Path) -> None:
    ctx = RunContext()
    ctx.cancel()
    k3d = FakeCommand()
    provider = K3dClusterProvider(command=k3d, kubectl_command=FakeCommand(), ctx=ctx)

    with pytest.raises(CancellationError):
        provider.create(ClusterRequest(kubernetes_version="v1.30.2", artifacts_folder=tmp_path))

    assert k3d.calls == []


@pytest.mark.parametrize("provider_cls", [K3dClusterProvider, EKSClusterProvider])
def test_creating_providers_do_not_attach(provider_cls: type) -> None:
    with pytest.raises(PreconditionError, match="cannot attach"):
        provider_cls(command=FakeCommand()).attach()


def test_k3d_delete_of_missing_cluster_is_not_an_error() -> None:
    k3d = FakeCommand(errors={("cluster", "delete"): sh.ErrorReturnCode_1("k3d", b"", b"No nodes found")})

    K3dClusterProvider(command=k3d).delete_cluster("turtles-e2e")

    assert k3d.calls == [("cluster", "delete", "turtles-e2e")]


def test_eks_create_uses_minor_version(tmp_path: Path) -> None:
    eksctl = FakeCommand()
    provider = EKSClusterProvider(EKSConfig(cluster_name="turtles-eks", region="eu-west-1"),
                                  command=eksctl, kubectl_command=FakeCommand())

    handle = provider.create(ClusterRequest(kubernetes_version="v1.30.2", artifacts_folder=tmp_path))

    call = eksctl.calls[0]
    assert call[:2] == ("create", "cluster")
    assert call[call.index("--version") + 1] == "1.30"
    assert call[call.index("--region") + 1] == "eu-west-1"
    assert handle.name == "turtles-eks"


@pytest.mark.parametrize(("version", "expected"), [("v1.30.2", "1.30"), ("1.29", "1.29")])
def test_eks_version(version: str, expected: str) -> None:
    assert eks_version(version) == expected


def test_existing_provider_reads_current_context(tmp_path: Path) -> None:
    kubeconfig = tmp_path / "config"
    kubeconfig.write_text("apiVersion: v1\n")
    kubectl = FakeCommand(outputs={("--kubeconfig",): "k3d-dev\n"})

    handle = ExistingClusterProvider(kubeconfig, command=kubectl).attach()

    assert handle.name == "k3d-dev"
    assert handle.existing
    assert handle.kubeconfig_path == kubeconfig


def test_existing_provider_needs_kubeconfig(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError):
        ExistingClusterProvider(tmp_path / "missing", command=FakeCommand()).attach()
