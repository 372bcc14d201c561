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

"""Management platform: cert-manager and Rancher deployment."""

from __future__ import annotations

import json
from dataclasses import dataclass

import yaml
from rich.panel import Panel

from turtles_e2e import console
from turtles_e2e.cluster import ClusterHandle
from turtles_e2e.config import RunConfiguration
from turtles_e2e.constants import (
    DATA_RANCHER_INGRESS_CONFIG,
    DATA_RANCHER_SERVICE_PATCH,
    DATA_RANCHER_SETTING_PATCH,
    DEPLOY_CERT_MANAGER,
    DEPLOY_RANCHER,
    EXTRA_VALUES_RANCHER,
    HELM_RELEASE_CERT_MANAGER,
    HELM_RELEASE_RANCHER,
    NS_CERT_MANAGER,
    NS_RANCHER,
    PHASE_WAIT_CONTROLLERS,
    PHASE_WAIT_RANCHER,
    VAR_CERT_MANAGER_PATH,
    VAR_CERT_MANAGER_REPO_NAME,
    VAR_CERT_MANAGER_URL,
    VAR_RANCHER_HOSTNAME,
    VAR_RANCHER_PASSWORD,
    VAR_RANCHER_PATH,
    VAR_RANCHER_REPO_NAME,
    VAR_RANCHER_URL,
    VAR_RANCHER_VERSION,
    load_manifest,
)
from turtles_e2e.helm import ChartDeployer, ChartRelease
from turtles_e2e.kube import DeploymentRef, ReadinessChecker
from turtles_e2e.modes import OperatingMode


@dataclass(frozen=True)
class PlatformResult:
    """Outcome of the platform stage.

    Attributes:
        hostname: Hostname Rancher was deployed with.
        tunnel_patches_applied: Whether the ngrok ingress and service patches were used.
    """

    hostname: str
    tunnel_patches_applied: bool


def install_cert_manager(
    handle: ClusterHandle,
    config: RunConfiguration,
    charts: ChartDeployer,
    readiness: ReadinessChecker,
) -> None:
    """Install cert-manager and block until its deployments are available."""
    e2e = config.e2e_config
    console.print(Panel.fit("Installing cert-manager", style="bold blue"))
    charts.add_repo(e2e.get_variable(VAR_CERT_MANAGER_REPO_NAME), e2e.get_variable(VAR_CERT_MANAGER_URL))
    charts.install(ChartRelease(
        name=HELM_RELEASE_CERT_MANAGER,
        chart=e2e.get_variable(VAR_CERT_MANAGER_PATH),
        namespace=NS_CERT_MANAGER,
        values={"crds.enabled": "true"},
    ))
    interval = e2e.get_intervals(handle.name, PHASE_WAIT_CONTROLLERS)
    for name in DEPLOY_CERT_MANAGER:
        readiness.wait_for_deployments_available(handle.client, DeploymentRef(name, NS_CERT_MANAGER), interval)
    console.print("[green]✅ cert-manager installed[/green]")


def deploy_rancher(
    handle: ClusterHandle,
    mode: OperatingMode,
    config: RunConfiguration,
    charts: ChartDeployer,
    readiness: ReadinessChecker,
    hostname: str,
) -> PlatformResult:
    """Deploy cert-manager, then Rancher, then the Rancher settings.

    The ngrok ingress config and the NodePort service patch are only applied
    when Rancher is reached through the local tunnel.

    Args:
        handle: Bootstrap cluster handle.
        mode: Operating mode.
        config: Resolved run configuration.
        charts: Chart deployer bound to the cluster.
        readiness: Readiness checker.
        hostname: Hostname Rancher is served on.

    Returns:
        The platform result with the hostname actually used.
    """
    install_cert_manager(handle, config, charts, readiness)

    e2e = config.e2e_config
    console.print(Panel.fit(f"Installing Rancher ({hostname})", style="bold blue"))
    charts.add_repo(e2e.get_variable(VAR_RANCHER_REPO_NAME), e2e.get_variable(VAR_RANCHER_URL))

    values_files = []
    extra_values = config.extra_values_file(EXTRA_VALUES_RANCHER)
    if extra_values:
        values_files.append(extra_values)
    tunnel = mode.uses_local_tunnel
    if tunnel:
        values_files.append(config.write_artifact(DATA_RANCHER_INGRESS_CONFIG, load_manifest(DATA_RANCHER_INGRESS_CONFIG)))

    charts.install(ChartRelease(
        name=HELM_RELEASE_RANCHER,
        chart=e2e.get_variable(VAR_RANCHER_PATH),
        namespace=NS_RANCHER,
        version=e2e.get_variable(VAR_RANCHER_VERSION),
        values={
            "hostname": hostname,
            "bootstrapPassword": e2e.get_variable(VAR_RANCHER_PASSWORD),
            "replicas": "1",
            "global.cattle.psp.enabled": "false",
        },
        values_files=tuple(values_files),
    ))

    interval = e2e.get_intervals(handle.name, PHASE_WAIT_RANCHER)
    console.print(f"[yellow]ℹ️  Waiting for Rancher to be available ({interval})...[/yellow]")
    readiness.wait_for_deployments_available(handle.client, DeploymentRef(DEPLOY_RANCHER, NS_RANCHER), interval)

    if tunnel:
        patch = json.dumps(yaml.safe_load(load_manifest(DATA_RANCHER_SERVICE_PATCH)))
        handle.client.patch("service", DEPLOY_RANCHER, patch, NS_RANCHER)

    setting = e2e.render(load_manifest(DATA_RANCHER_SETTING_PATCH), **{VAR_RANCHER_HOSTNAME: hostname})
    handle.client.apply(setting)
    console.print("[green]✅ Rancher deployed[/green]")
    return PlatformResult(hostname=hostname, tunnel_patches_applied=tunnel)
