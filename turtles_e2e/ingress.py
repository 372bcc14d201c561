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

"""Ingress controller deployment for the bootstrap cluster."""

from __future__ import annotations

import json

import yaml
from rich.panel import Panel

from turtles_e2e import console
from turtles_e2e.cluster import ClusterHandle
from turtles_e2e.config import RunConfiguration
from turtles_e2e.constants import (
    DATA_INGRESS_CLASS_PATCH,
    DATA_NGINX_INGRESS,
    DEPLOY_INGRESS_NGINX,
    DEPLOY_NGROK,
    EXTRA_VALUES_INGRESS,
    HELM_CHART_INGRESS_NGINX,
    HELM_RELEASE_INGRESS_NGINX,
    HELM_RELEASE_NGROK,
    HELM_REPO_INGRESS_NGINX,
    HELM_REPO_INGRESS_NGINX_URL,
    NS_INGRESS_NGINX,
    NS_NGROK,
    PHASE_WAIT_RANCHER,
    VAR_NGROK_API_KEY,
    VAR_NGROK_AUTHTOKEN,
    VAR_NGROK_PATH,
    VAR_NGROK_REPO_NAME,
    VAR_NGROK_URL,
    load_manifest,
)
from turtles_e2e.helm import ChartDeployer, ChartRelease
from turtles_e2e.kube import DeploymentRef, ReadinessChecker
from turtles_e2e.modes import IngressFlavor, OperatingMode

NGROK_INGRESS_CLASS = "ngrok"


def _install_ngrok(config: RunConfiguration, charts: ChartDeployer) -> DeploymentRef:
    e2e = config.e2e_config
    charts.add_repo(e2e.get_variable(VAR_NGROK_REPO_NAME), e2e.get_variable(VAR_NGROK_URL))
    charts.install(ChartRelease(
        name=HELM_RELEASE_NGROK,
        chart=e2e.get_variable(VAR_NGROK_PATH),
        namespace=NS_NGROK,
        values={
            "credentials.apiKey": e2e.get_variable(VAR_NGROK_API_KEY),
            "credentials.authtoken": e2e.get_variable(VAR_NGROK_AUTHTOKEN),
        },
    ))
    return DeploymentRef(DEPLOY_NGROK, NS_NGROK)


def _install_eks_nginx(config: RunConfiguration, charts: ChartDeployer) -> DeploymentRef:
    charts.add_repo(HELM_REPO_INGRESS_NGINX, HELM_REPO_INGRESS_NGINX_URL)
    extra_values = config.extra_values_file(EXTRA_VALUES_INGRESS)
    charts.install(ChartRelease(
        name=HELM_RELEASE_INGRESS_NGINX,
        chart=HELM_CHART_INGRESS_NGINX,
        namespace=NS_INGRESS_NGINX,
        values_files=(extra_values,) if extra_values else (),
    ))
    return DeploymentRef(DEPLOY_INGRESS_NGINX, NS_INGRESS_NGINX)


def _apply_custom_ingress(handle: ClusterHandle) -> DeploymentRef:
    handle.client.apply(load_manifest(DATA_NGINX_INGRESS))
    return DeploymentRef(DEPLOY_INGRESS_NGINX, NS_INGRESS_NGINX)


def deploy_ingress(
    handle: ClusterHandle,
    mode: OperatingMode,
    config: RunConfiguration,
    charts: ChartDeployer,
    readiness: ReadinessChecker,
) -> IngressFlavor:
    """Deploy the ingress flavor selected by the mode and wait for it.

    Args:
        handle: Bootstrap cluster handle.
        mode: Operating mode selecting the ingress flavor.
        config: Resolved run configuration.
        charts: Chart deployer bound to the cluster.
        readiness: Readiness checker.

    Returns:
        The deployed ingress flavor.

    Raises:
        ReadinessTimeoutError: If the controller is not available within ``wait-rancher``.
    """
    flavor = mode.ingress_flavor
    interval = config.e2e_config.get_intervals(handle.name, PHASE_WAIT_RANCHER)
    console.print(Panel.fit(f"Deploying {flavor.value} ingress", style="bold blue"))

    if flavor is IngressFlavor.NGROK:
        deployment = _install_ngrok(config, charts)
    elif flavor is IngressFlavor.EKS_NGINX:
        deployment = _install_eks_nginx(config, charts)
    else:
        deployment = _apply_custom_ingress(handle)

    console.print(f"[yellow]ℹ️  Waiting for {deployment} ({interval})...[/yellow]")
    readiness.wait_for_deployments_available(handle.client, deployment, interval)

    if flavor is IngressFlavor.NGROK:
        patch = json.dumps(yaml.safe_load(load_manifest(DATA_INGRESS_CLASS_PATCH)))
        handle.client.patch("ingressclass", NGROK_INGRESS_CLASS, patch)
    console.print(f"[green]✅ {flavor.value} ingress is ready[/green]")
    return flavor
