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

"""Gitea Git service deployment and removal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rich.panel import Panel

from turtles_e2e import console
from turtles_e2e.cluster import ClusterHandle
from turtles_e2e.config import RunConfiguration
from turtles_e2e.constants import (
    AUTH_SECRET_NAME,
    DATA_GITEA_INGRESS,
    DATA_GITEA_VALUES,
    DEPLOY_GITEA,
    HELM_RELEASE_GITEA,
    NS_DEFAULT,
    NS_GITEA,
    PHASE_WAIT_GITEA,
    PHASE_WAIT_GITEA_SERVICE,
    PHASE_WAIT_GITEA_UNINSTALL,
    VAR_GITEA_CHART_NAME,
    VAR_GITEA_CHART_VERSION,
    VAR_GITEA_REPO_NAME,
    VAR_GITEA_REPO_URL,
    VAR_GITEA_USER_NAME,
    VAR_GITEA_USER_PWD,
    VAR_RANCHER_HOSTNAME,
    load_manifest,
)
from turtles_e2e.errors import ProvisioningError
from turtles_e2e.helm import ChartDeployer, ChartRelease
from turtles_e2e.kube import DeploymentRef, ReadinessChecker, ServiceRef
from turtles_e2e.modes import OperatingMode, ServiceType

GITEA_HTTP_SERVICE = "gitea-http"


@dataclass(frozen=True)
class GitServiceResult:
    """Outcome of the Git service stage.

    Attributes:
        url: Reachable Gitea URL.
        service_type: Service type Gitea was exposed with.
        username: Admin user name.
        auth_secret_name: Secret holding the admin credentials.
        auth_secret_namespace: Namespace of the auth secret.
    """

    url: str
    service_type: ServiceType
    username: str
    auth_secret_name: str
    auth_secret_namespace: str


def gitea_url(
    service: dict[str, Any],
    service_type: ServiceType,
    handle: ClusterHandle,
    hostname: str,
) -> str:
    """Derive the reachable Gitea URL from its exposed service.

    Args:
        service: The ready Service object.
        service_type: Service type Gitea was exposed with.
        handle: Bootstrap cluster handle, used for the node address.
        hostname: Rancher hostname, used for the ingress host.

    Returns:
        The Gitea base URL.
    """
    if service_type is ServiceType.CLUSTER_IP:
        return f"http://gitea.{hostname}"
    port = service["spec"]["ports"][0]
    if service_type is ServiceType.NODE_PORT:
        return f"http://{handle.client.control_plane_ip()}:{port['nodePort']}"
    ingress = service["status"]["loadBalancer"]["ingress"][0]
    address = ingress.get("hostname") or ingress.get("ip")
    if not address:
        raise ProvisioningError("Gitea load balancer has no address")
    return f"http://{address}:{port['port']}"


def deploy_gitea(
    handle: ClusterHandle,
    mode: OperatingMode,
    config: RunConfiguration,
    charts: ChartDeployer,
    readiness: ReadinessChecker,
    hostname: str,
) -> GitServiceResult:
    """Deploy Gitea and wait for its rollout, then for its service.

    Args:
        handle: Bootstrap cluster handle.
        mode: Operating mode selecting the service type.
        config: Resolved run configuration.
        charts: Chart deployer bound to the cluster.
        readiness: Readiness checker.
        hostname: Rancher hostname, used for the custom ingress host.

    Returns:
        URL, service type, and auth secret of the deployed Gitea.
    """
    e2e = config.e2e_config
    service_type = mode.git_service_type
    username = e2e.get_variable(VAR_GITEA_USER_NAME)
    password = e2e.get_variable(VAR_GITEA_USER_PWD)
    console.print(Panel.fit(f"Deploying Gitea ({service_type.value})", style="bold blue"))

    repo_name = e2e.get_variable(VAR_GITEA_REPO_NAME)
    charts.add_repo(repo_name, e2e.get_variable(VAR_GITEA_REPO_URL))

    values_files = [config.write_artifact(DATA_GITEA_VALUES, load_manifest(DATA_GITEA_VALUES))]
    if service_type is ServiceType.CLUSTER_IP:
        ingress = e2e.render(load_manifest(DATA_GITEA_INGRESS), **{VAR_RANCHER_HOSTNAME: hostname})
        values_files.append(config.write_artifact(DATA_GITEA_INGRESS, ingress))

    charts.install(ChartRelease(
        name=HELM_RELEASE_GITEA,
        chart=f"{repo_name}/{e2e.get_variable(VAR_GITEA_CHART_NAME)}",
        namespace=NS_GITEA,
        version=e2e.get_variable(VAR_GITEA_CHART_VERSION),
        values={
            "gitea.admin.username": username,
            "gitea.admin.password": password,
            "service.http.type": service_type.value,
        },
        values_files=tuple(values_files),
        create_namespace=False,
    ))

    rollout_interval = e2e.get_intervals(handle.name, PHASE_WAIT_GITEA)
    console.print(f"[yellow]ℹ️  Waiting for Gitea rollout ({rollout_interval})...[/yellow]")
    readiness.wait_for_rollout(handle.client, DeploymentRef(DEPLOY_GITEA, NS_GITEA), rollout_interval)

    service_interval = e2e.get_intervals(handle.name, PHASE_WAIT_GITEA_SERVICE)
    console.print(f"[yellow]ℹ️  Waiting for Gitea service ({service_interval})...[/yellow]")
    service = readiness.wait_for_service(handle.client, ServiceRef(GITEA_HTTP_SERVICE, NS_GITEA), service_interval)
    url = gitea_url(service, service_type, handle, hostname)

    handle.client.create_secret(AUTH_SECRET_NAME, NS_DEFAULT, {"username": username, "password": password})
    console.print(f"[green]✅ Gitea available at {url}[/green]")
    return GitServiceResult(
        url=url,
        service_type=service_type,
        username=username,
        auth_secret_name=AUTH_SECRET_NAME,
        auth_secret_namespace=NS_DEFAULT,
    )


def uninstall_gitea(
    handle: ClusterHandle,
    config: RunConfiguration,
    charts: ChartDeployer,
    result: GitServiceResult | None = None,
) -> None:
    """Uninstall Gitea, waiting up to ``wait-gitea-uninstall``, and drop its auth secret."""
    console.print(Panel.fit("Uninstalling Gitea", style="bold blue"))
    interval = config.e2e_config.get_intervals(handle.name, PHASE_WAIT_GITEA_UNINSTALL)
    charts.uninstall(HELM_RELEASE_GITEA, NS_GITEA, interval)
    if result is not None:
        handle.client.delete("secret", result.auth_secret_name, result.auth_secret_namespace)
