# /*
# Copyright 2026 The Turtles E2E Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Bootstrap cluster provisioning, attachment, and cleanup."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import docker
import sh
from rich.panel import Panel
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_fixed

from turtles_e2e import console, logger
from turtles_e2e.config import ContainerImage, EKSConfig, K3dConfig, RunConfiguration
from turtles_e2e.constants import (
    CLUSTER_CREATE_RETRY_WAIT_SECONDS,
    CLUSTER_LOGS_DIR,
    CLUSTER_TIMEOUT,
    DEFAULT_K3S_IMAGE_TEMPLATE,
    ISOLATED_HOSTNAME_SUFFIX,
    KUBECONFIG_FILE,
)
from turtles_e2e.errors import PreconditionError, ProvisioningError, SuiteError
from turtles_e2e.kube import KubeClient, Kubectl
from turtles_e2e.modes import OperatingMode
from turtles_e2e.runtime import RunContext


@dataclass(frozen=True)
class ClusterHandle:
    """Read-only capability on the bootstrap cluster.

    Attributes:
        name: Cluster name, also the scope for interval lookups.
        kubeconfig_path: Kubeconfig giving access to the cluster.
        client: Cluster client shared with every later stage.
        existing: Whether the cluster was attached rather than created.
    """

    name: str
    kubeconfig_path: Path
    client: KubeClient
    existing: bool = False


@dataclass(frozen=True)
class ClusterRequest:
    """Inputs for creating a bootstrap cluster."""

    kubernetes_version: str
    artifacts_folder: Path
    images: tuple[ContainerImage, ...] = ()


class ClusterProvisioning(Protocol):
    """Create, attach to, and dispose of a bootstrap cluster."""

    def create(self, request: ClusterRequest) -> ClusterHandle: ...

    def attach(self) -> ClusterHandle: ...

    def dispose(self, handle: ClusterHandle) -> None: ...


def _error_text(err: sh.ErrorReturnCode) -> str:
    return err.stderr.decode(errors="replace").strip()


def _kubeconfig_path(artifacts_folder: Path, cluster_name: str) -> Path:
    return artifacts_folder / f"{cluster_name}.{KUBECONFIG_FILE}"


# ============================================================================
# Providers
# ============================================================================

class _KubectlProvider:
    """Shared kubectl plumbing; a provider overrides only what it supports."""

    def __init__(self, command: Any = None) -> None:
        self._command = command

    def _client(self, kubeconfig: Path, context: str | None = None) -> Kubectl:
        return Kubectl(kubeconfig, context=context, command=self._command)

    def create(self, request: ClusterRequest) -> ClusterHandle:
        raise PreconditionError(f"{type(self).__name__} cannot create clusters")

    def attach(self) -> ClusterHandle:
        raise PreconditionError(f"{type(self).__name__} cannot attach to an existing cluster")


class ExistingClusterProvider(_KubectlProvider):
    """Attach to the cluster of the current kubeconfig context.

    Args:
        kubeconfig: Kubeconfig to use; defaults to ``$KUBECONFIG`` or ``~/.kube/config``.
        context: Context to use; defaults to the current context.
        command: kubectl command override.
    """

    def __init__(self, kubeconfig: Path | None = None, context: str | None = None, command: Any = None) -> None:
        if kubeconfig is None:
            env_value = os.environ.get("KUBECONFIG", "")
            kubeconfig = Path(env_value.split(os.pathsep)[0]) if env_value else Path.home() / ".kube" / "config"
        super().__init__(command)
        self._kubeconfig = kubeconfig
        self._context = context

    def create(self, request: ClusterRequest) -> ClusterHandle:
        raise PreconditionError("An existing cluster cannot be created; attach to it instead")

    def attach(self) -> ClusterHandle:
        if not self._kubeconfig.is_file():
            raise PreconditionError(f"Kubeconfig {self._kubeconfig} for the existing cluster does not exist")
        kubectl = self._command if self._command is not None else sh.Command("kubectl")
        context = self._context
        if context is None:
            try:
                context = str(kubectl("--kubeconfig", str(self._kubeconfig), "config", "current-context")).strip()
            except sh.ErrorReturnCode as err:
                raise ProvisioningError(f"No current context in {self._kubeconfig}: {_error_text(err)}") from err
        console.print(f"[yellow]ℹ️  Using existing cluster (context {context})[/yellow]")
        return ClusterHandle(
            name=context,
            kubeconfig_path=self._kubeconfig,
            client=self._client(self._kubeconfig, context),
            existing=True,
        )

    def dispose(self, handle: ClusterHandle) -> None:
        console.print(f"[yellow]ℹ️  Detaching from existing cluster '{handle.name}'[/yellow]")


# ============================================================================
# k3d
# ============================================================================

class K3dClusterProvider(_KubectlProvider):
    """Local bootstrap cluster managed with k3d.

    Args:
        k3d_cfg: k3d cluster configuration.
        command: k3d command override.
        kubectl_command: kubectl command override for the returned client.
        ctx: Run context; a cancellation stops the create retries.
    """

    def __init__(
        self,
        k3d_cfg: K3dConfig | None = None,
        command: Any = None,
        kubectl_command: Any = None,
        ctx: RunContext | None = None,
    ) -> None:
        super().__init__(kubectl_command)
        self._cfg = k3d_cfg or K3dConfig()
        self._k3d_command = command
        self._ctx = ctx or RunContext()

    def _k3d(self, *args: str) -> str:
        k3d = self._k3d_command if self._k3d_command is not None else sh.Command("k3d")
        return str(k3d(*args))

    def create(self, request: ClusterRequest) -> ClusterHandle:
        """Create the k3d cluster with retry logic and load configured images.

        Raises:
            ProvisioningError: If the cluster cannot be created after all retries.
            CancellationError: If the run is cancelled while creating.
        """
        name = self._cfg.cluster_name
        console.print(Panel.fit(f"Creating k3d cluster '{name}'", style="bold blue"))
        image = self._cfg.k3s_image or DEFAULT_K3S_IMAGE_TEMPLATE.format(version=request.kubernetes_version)
        port_args = [arg for port in self._cfg.lb_ports for arg in ("--port", f"{port}@loadbalancer")]

        @retry(
            stop=stop_after_attempt(self._cfg.max_retries),
            wait=wait_fixed(CLUSTER_CREATE_RETRY_WAIT_SECONDS),
            retry=retry_if_exception(lambda _err: not self._ctx.cancelled),
            sleep=self._ctx.sleep,
            reraise=True,
        )
        def _attempt() -> None:
            self._ctx.check(f"k3d cluster '{name}'")
            try:
                self._k3d("cluster", "delete", name)
                console.print("[yellow]   Removed existing cluster[/yellow]")
            except sh.ErrorReturnCode_1:
                console.print("[yellow]   No existing cluster found[/yellow]")
            self._k3d(
                "cluster", "create", name,
                "--servers", "1",
                "--agents", str(self._cfg.agents),
                "--image", image,
                *port_args,
                "--timeout", CLUSTER_TIMEOUT,
                "--wait",
            )

        try:
            _attempt()
            kubeconfig = _kubeconfig_path(request.artifacts_folder, name)
            kubeconfig.write_text(self._k3d("kubeconfig", "get", name))
            kubeconfig.chmod(0o600)
        except sh.ErrorReturnCode as err:
            if self._ctx.cancelled:
                self._discard(name)
                self._ctx.check(f"k3d cluster '{name}'")
            raise ProvisioningError(f"Failed to create k3d cluster '{name}': {_error_text(err)}") from err
        console.print("[green]✅ Cluster created successfully[/green]")

        try:
            self._load_images(name, request.images)
        except SuiteError:
            self._discard(name)
            raise
        return ClusterHandle(name=name, kubeconfig_path=kubeconfig, client=self._client(kubeconfig))

    def _discard(self, name: str) -> None:
        try:
            self.delete_cluster(name)
        except SuiteError as err:
            logger.error("Failed to delete k3d cluster %s after a failed setup: %s", name, err)

    def _load_images(self, name: str, images: tuple[ContainerImage, ...]) -> None:
        """Make configured images available inside the cluster.

        Missing local images are pulled first. A ``mustLoad`` image that cannot
        be loaded is fatal; a ``tryLoad`` image is skipped with a warning.
        """
        if not images:
            return
        console.print(Panel.fit("Loading images into the cluster", style="bold blue"))
        try:
            docker_client = docker.from_env()
        except docker.errors.DockerException as err:
            if any(img.load_behavior == "mustLoad" for img in images):
                raise ProvisioningError(f"Failed to connect to Docker: {err}") from err
            console.print(f"[yellow]⚠️  Failed to connect to Docker: {err}; skipping image load[/yellow]")
            return

        try:
            for img in images:
                try:
                    try:
                        docker_client.images.get(img.name)
                    except docker.errors.ImageNotFound:
                        docker_client.images.pull(img.name)
                    self._k3d("image", "import", img.name, "-c", name)
                    console.print(f"[green]✓ {img.name}[/green]")
                except (docker.errors.APIError, sh.ErrorReturnCode) as err:
                    if img.load_behavior == "mustLoad":
                        raise ProvisioningError(f"Failed to load image {img.name}: {err}") from err
                    console.print(f"[yellow]⚠️  Could not load {img.name} - {err}[/yellow]")
        finally:
            docker_client.close()

    def delete_cluster(self, name: str) -> None:
        """Delete a k3d cluster by name; a missing cluster is not an error."""
        console.print(f"[yellow]ℹ️  Deleting k3d cluster '{name}'...[/yellow]")
        try:
            self._k3d("cluster", "delete", name)
            console.print(f"[green]✅ Cluster '{name}' deleted[/green]")
        except sh.ErrorReturnCode_1:
            console.print(f"[yellow]⚠️  Cluster '{name}' not found or already deleted[/yellow]")
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(f"Failed to delete k3d cluster '{name}': {_error_text(err)}") from err

    def dispose(self, handle: ClusterHandle) -> None:
        self.delete_cluster(handle.name)


# ============================================================================
# EKS
# ============================================================================

def eks_version(kubernetes_version: str) -> str:
    """Convert ``v1.30.2`` into the ``1.30`` form eksctl expects."""
    match = re.match(r"^v?(\d+)\.(\d+)", kubernetes_version)
    if not match:
        raise PreconditionError(f"Invalid Kubernetes version {kubernetes_version!r}")
    return f"{match.group(1)}.{match.group(2)}"


class EKSClusterProvider(_KubectlProvider):
    """Managed bootstrap cluster on EKS, created with eksctl.

    Args:
        eks_cfg: EKS cluster configuration.
        command: eksctl command override.
        kubectl_command: kubectl command override for the returned client.
    """

    def __init__(self, eks_cfg: EKSConfig | None = None, command: Any = None, kubectl_command: Any = None) -> None:
        super().__init__(kubectl_command)
        self._cfg = eks_cfg or EKSConfig()
        self._eksctl_command = command

    def _eksctl(self, *args: str) -> str:
        eksctl = self._eksctl_command if self._eksctl_command is not None else sh.Command("eksctl")
        return str(eksctl(*args))

    def create(self, request: ClusterRequest) -> ClusterHandle:
        name = self._cfg.cluster_name
        console.print(Panel.fit(f"Creating EKS cluster '{name}' in {self._cfg.region}", style="bold blue"))
        kubeconfig = _kubeconfig_path(request.artifacts_folder, name)
        try:
            self._eksctl(
                "create", "cluster",
                "--name", name,
                "--region", self._cfg.region,
                "--version", eks_version(request.kubernetes_version),
                "--nodes", str(self._cfg.nodes),
                "--node-type", self._cfg.node_type,
                "--kubeconfig", str(kubeconfig),
            )
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(f"Failed to create EKS cluster '{name}': {_error_text(err)}") from err
        console.print("[green]✅ Cluster created successfully[/green]")
        return ClusterHandle(name=name, kubeconfig_path=kubeconfig, client=self._client(kubeconfig))

    def delete_cluster(self, name: str) -> None:
        """Delete an EKS cluster by name and wait for its stacks to go."""
        console.print(f"[yellow]ℹ️  Deleting EKS cluster '{name}'...[/yellow]")
        try:
            self._eksctl("delete", "cluster", "--name", name, "--region", self._cfg.region, "--wait")
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(f"Failed to delete EKS cluster '{name}': {_error_text(err)}") from err
        console.print(f"[green]✅ Cluster '{name}' deleted[/green]")

    def dispose(self, handle: ClusterHandle) -> None:
        self.delete_cluster(handle.name)


# ============================================================================
# Provisioner
# ============================================================================

@dataclass(frozen=True)
class SetupClusterResult:
    """Outcome of the cluster stage.

    Attributes:
        handle: Bootstrap cluster handle.
        provider: Provider that owns the cluster and disposes of it.
        isolated_hostname: Hostname derived from the node IP in isolated mode.
    """

    handle: ClusterHandle
    provider: ClusterProvisioning
    isolated_hostname: str = ""


class ClusterProvisioner:
    """Select where the bootstrap cluster comes from and hand out its handle.

    Args:
        local: Provider for locally created clusters.
        existing: Provider used when attaching to an existing cluster.
        custom: Custom provider; required for managed-cloud mode.
    """

    def __init__(
        self,
        local: ClusterProvisioning,
        existing: ClusterProvisioning,
        custom: ClusterProvisioning | None = None,
    ) -> None:
        self._local = local
        self._existing = existing
        self._custom = custom

    def setup(self, config: RunConfiguration, mode: OperatingMode, kubernetes_version: str) -> SetupClusterResult:
        """Acquire or create the bootstrap cluster.

        Args:
            config: Resolved run configuration.
            mode: Operating mode.
            kubernetes_version: Kubernetes version for a new cluster.

        Returns:
            Handle, owning provider, and isolated hostname when applicable.

        Raises:
            PreconditionError: If managed-cloud mode has no custom provider.
            ProvisioningError: If the cluster cannot be created or attached.
        """
        if mode.use_managed_cloud_provider and self._custom is None:
            raise PreconditionError("EKS custom cluster provider is required")

        if mode.use_existing_cluster:
            provider = self._existing
            handle = provider.attach()
        else:
            provider = self._custom or self._local
            request = ClusterRequest(
                kubernetes_version=kubernetes_version,
                artifacts_folder=config.artifacts_folder,
                images=tuple(config.e2e_config.images),
            )
            handle = provider.create(request)

        isolated_hostname = ""
        if mode.isolated_networking:
            try:
                isolated_hostname = f"{handle.client.control_plane_ip()}.{ISOLATED_HOSTNAME_SUFFIX}"
            except SuiteError:
                self._release(provider, handle)
                raise
            console.print(f"[yellow]ℹ️  Isolated hostname: {isolated_hostname}[/yellow]")
        return SetupClusterResult(handle=handle, provider=provider, isolated_hostname=isolated_hostname)

    @staticmethod
    def _release(provider: ClusterProvisioning, handle: ClusterHandle) -> None:
        """Dispose of a cluster whose setup failed before a result was handed out."""
        try:
            provider.dispose(handle)
        except SuiteError as err:
            logger.error("Failed to dispose of cluster %s after a failed setup: %s", handle.name, err)

    def cleanup(self, result: SetupClusterResult, artifacts_folder: Path) -> None:
        """Dump cluster logs and dispose of (or detach from) the cluster.

        Args:
            result: Result of :meth:`setup`.
            artifacts_folder: Folder receiving the cluster dump.

        Raises:
            ProvisioningError: If the cluster cannot be deleted.
        """
        dump_dir = artifacts_folder / CLUSTER_LOGS_DIR / result.handle.name
        try:
            result.handle.client.dump_cluster_info(dump_dir)
        except SuiteError as err:
            logger.warning("Failed to dump cluster info for %s: %s", result.handle.name, err)
        result.provider.dispose(result.handle)
