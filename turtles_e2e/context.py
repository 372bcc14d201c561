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

"""Suite state threaded from setup into teardown, and its collaborators."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from turtles_e2e.addon import AddOnResult, TurtlesAddOn
from turtles_e2e.cluster import (
    ClusterProvisioner,
    EKSClusterProvider,
    ExistingClusterProvider,
    K3dClusterProvider,
    SetupClusterResult,
)
from turtles_e2e.config import RunConfiguration, SuiteFlags
from turtles_e2e.gitea import GitServiceResult
from turtles_e2e.helm import ChartDeployer, HelmChartDeployer
from turtles_e2e.kube import KubectlReadinessChecker, ReadinessChecker
from turtles_e2e.modes import IngressFlavor, OperatingMode
from turtles_e2e.rancher import PlatformResult
from turtles_e2e.runtime import RunContext


@dataclass
class SuiteContext:
    """Everything setup produced, in the order it was produced.

    Fields stay None for stages that were never reached; teardown only acts
    on what exists.

    Attributes:
        flags: Suite flags.
        mode: Operating mode derived from the flags.
        ctx: Run context for cancellation.
        config: Resolved run configuration.
        cluster: Bootstrap cluster result.
        charts: Chart deployer bound to the bootstrap cluster.
        ingress: Deployed ingress flavor.
        hostname: Hostname Rancher is served on.
        platform: Platform stage result.
        addon: Add-on lifecycle driver.
        addon_result: Verified upgrade result.
        git: Git service result.
    """

    flags: SuiteFlags
    mode: OperatingMode
    ctx: RunContext = field(default_factory=RunContext)
    config: RunConfiguration | None = None
    cluster: SetupClusterResult | None = None
    charts: ChartDeployer | None = None
    ingress: IngressFlavor | None = None
    hostname: str = ""
    platform: PlatformResult | None = None
    addon: TurtlesAddOn | None = None
    addon_result: AddOnResult | None = None
    git: GitServiceResult | None = None

    def test_environment(self) -> dict[str, str]:
        """Environment variables describing the environment to a test command."""
        env: dict[str, str] = {}
        if self.config is not None:
            env["ARTIFACTS_FOLDER"] = str(self.config.artifacts_folder)
            env["CLUSTERCTL_CONFIG"] = str(self.config.clusterctl_config_path)
            env["E2E_CONFIG"] = str(self.config.config_path)
        if self.cluster is not None:
            env["KUBECONFIG"] = str(self.cluster.handle.kubeconfig_path)
            env["BOOTSTRAP_CLUSTER_NAME"] = self.cluster.handle.name
        if self.hostname:
            env["RANCHER_HOSTNAME"] = self.hostname
        if self.git is not None:
            env["GITEA_URL"] = self.git.url
            env["GITEA_SERVICE_TYPE"] = self.git.service_type.value
            env["GITEA_USER_NAME"] = self.git.username
            env["GITEA_AUTH_SECRET_NAME"] = self.git.auth_secret_name
            env["GITEA_AUTH_SECRET_NAMESPACE"] = self.git.auth_secret_namespace
        return env


@dataclass(frozen=True)
class SuiteTools:
    """Collaborators the suite deploys through.

    Attributes:
        provisioner: Cluster provisioner.
        readiness: Readiness checker for blocking waits.
        chart_deployer_factory: Builds a chart deployer from the Helm binary and a kubeconfig.
        prerequisites: Commands that must be on PATH before setup starts.
    """

    provisioner: ClusterProvisioner
    readiness: ReadinessChecker
    chart_deployer_factory: Callable[[Path, Path], ChartDeployer] = HelmChartDeployer
    prerequisites: tuple[str, ...] = ()


def default_tools(flags: SuiteFlags, ctx: RunContext) -> SuiteTools:
    """Build the kubectl/helm/k3d backed collaborators for *flags*."""
    prerequisites = ["kubectl"]
    if flags.use_eks:
        prerequisites.append("eksctl")
    elif not flags.use_existing_cluster:
        prerequisites.append("k3d")
    return SuiteTools(
        provisioner=ClusterProvisioner(
            local=K3dClusterProvider(ctx=ctx),
            existing=ExistingClusterProvider(),
            custom=EKSClusterProvider() if flags.use_eks else None,
        ),
        readiness=KubectlReadinessChecker(ctx),
        chart_deployer_factory=HelmChartDeployer,
        prerequisites=tuple(prerequisites),
    )
