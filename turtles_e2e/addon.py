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

"""Rancher Turtles add-on: install, chart registry, and verified upgrade."""

from __future__ import annotations

import enum
import platform
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Protocol

from rich.panel import Panel

from turtles_e2e import console, logger
from turtles_e2e.cluster import ClusterHandle
from turtles_e2e.config import RunConfiguration, WaitInterval
from turtles_e2e.constants import (
    DATA_CAPI_PROVIDERS,
    DEPLOY_CAAPF,
    DEPLOY_CAPI,
    DEPLOY_CHARTMUSEUM,
    DEPLOY_TURTLES,
    HELM_CHART_CHARTMUSEUM,
    HELM_CHART_TURTLES,
    HELM_KEY_FLEET_ADDON,
    HELM_KEY_IMAGE_PULL_POLICY,
    HELM_KEY_MANAGEMENTV3,
    HELM_KEY_TURTLES_IMAGE,
    HELM_KEY_TURTLES_IMAGE_VERSION,
    HELM_RELEASE_CHARTMUSEUM,
    HELM_RELEASE_TURTLES,
    HELM_REPO_CHARTMUSEUM,
    HELM_REPO_CHARTMUSEUM_URL,
    HELM_REPO_TURTLES,
    HELM_REPO_TURTLES_URL,
    NS_CAPI,
    NS_CHARTMUSEUM,
    NS_TURTLES,
    PHASE_WAIT_CONTROLLERS,
    PHASE_WAIT_TURTLES_UNINSTALL,
    TURTLES_BASELINE_VERSION,
    TURTLES_E2E_IMAGE,
    TURTLES_E2E_TAG,
    load_manifest,
)
from turtles_e2e.errors import PreconditionError, ProvisioningError, ReadinessTimeoutError, VerificationError
from turtles_e2e.helm import ChartDeployer, ChartRelease
from turtles_e2e.kube import DeploymentRef, KubeClient, ReadinessChecker

# Applied on top of the install values for the upgrade to the locally built image.
UPGRADE_VALUE_OVERRIDES: Mapping[str, str] = MappingProxyType({
    HELM_KEY_IMAGE_PULL_POLICY: "Never",
    HELM_KEY_FLEET_ADDON: "true",
    HELM_KEY_MANAGEMENTV3: "false",
})

CHARTMUSEUM_STORAGE_DIR = "/storage"
CHARTMUSEUM_SELECTOR = "app.kubernetes.io/name=chartmuseum"

_GO_ARCH = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}


def e2e_image(machine: str | None = None) -> str:
    """Return the locally built Turtles image name for the host architecture."""
    machine = (machine or platform.machine()).lower()
    return TURTLES_E2E_IMAGE.format(arch=_GO_ARCH.get(machine, machine))


# ============================================================================
# Post-upgrade checks
# ============================================================================

class PostUpgradeCheck(Protocol):
    """A blocking verification run after the upgrade, before it is reported done."""

    phase: str

    def verify(self, client: KubeClient, readiness: ReadinessChecker, interval: WaitInterval) -> None: ...


@dataclass(frozen=True)
class DeploymentAvailableCheck:
    """Wait for a deployment to become available."""

    name: str
    namespace: str
    phase: str = PHASE_WAIT_CONTROLLERS

    def verify(self, client: KubeClient, readiness: ReadinessChecker, interval: WaitInterval) -> None:
        console.print(f"[yellow]ℹ️  Waiting for {self.namespace}/{self.name} deployment to be available[/yellow]")
        readiness.wait_for_deployments_available(client, DeploymentRef(self.name, self.namespace), interval)

    def __str__(self) -> str:
        return f"deployment-available {self.namespace}/{self.name}"


POST_UPGRADE_CHECK_KINDS: Mapping[str, type] = MappingProxyType({
    "deployment-available": DeploymentAvailableCheck,
})

DEFAULT_POST_UPGRADE_CHECKS: tuple[Mapping[str, str], ...] = (
    {"kind": "deployment-available", "name": DEPLOY_CAAPF, "namespace": NS_TURTLES},
)


def build_post_upgrade_checks(specs: Iterable[Mapping[str, Any]]) -> list[PostUpgradeCheck]:
    """Turn ``{"kind": ..., **params}`` entries into ordered check objects.

    Args:
        specs: Check specifications; ``kind`` selects the check type.

    Returns:
        Checks in the order given.

    Raises:
        PreconditionError: If a kind is unknown or its parameters are invalid.
    """
    checks = []
    for spec in specs:
        params = dict(spec)
        kind = params.pop("kind", None)
        if kind not in POST_UPGRADE_CHECK_KINDS:
            raise PreconditionError(f"Unknown post-upgrade check kind {kind!r}")
        try:
            checks.append(POST_UPGRADE_CHECK_KINDS[kind](**params))
        except TypeError as err:
            raise PreconditionError(f"Invalid parameters for {kind} check: {err}") from err
    return checks


# ============================================================================
# Add-on lifecycle
# ============================================================================

class AddOnState(enum.Enum):
    NOT_INSTALLED = "not-installed"
    INSTALLED = "installed"
    UPGRADING = "upgrading"
    UPGRADED = "upgraded"


@dataclass(frozen=True)
class AddOnResult:
    """Outcome of a verified upgrade.

    Attributes:
        image: Image the add-on was upgraded to.
        tag: Image tag.
        values: Values the upgrade was applied with.
        checks: Post-upgrade checks that passed.
    """

    image: str
    tag: str
    values: Mapping[str, str]
    checks: tuple[str, ...]


class TurtlesAddOn:
    """Drive the add-on through ``NotInstalled → Installed → Upgrading → Upgraded``.

    No transition is skipped; the upgrade only reaches ``Upgraded`` once every
    post-upgrade check has passed.
    """

    def __init__(
        self,
        handle: ClusterHandle,
        config: RunConfiguration,
        charts: ChartDeployer,
        readiness: ReadinessChecker,
    ) -> None:
        self._handle = handle
        self._config = config
        self._charts = charts
        self._readiness = readiness
        self._values: dict[str, str] = {}
        self.state = AddOnState.NOT_INSTALLED

    @property
    def values(self) -> Mapping[str, str]:
        """Values of the current release (read-only view)."""
        return MappingProxyType(self._values)

    def _expect(self, state: AddOnState) -> None:
        if self.state is not state:
            raise RuntimeError(f"Rancher Turtles is {self.state.value}, expected {state.value}")

    def _interval(self, phase: str) -> WaitInterval:
        return self._config.e2e_config.get_intervals(self._handle.name, phase)

    def install(self, additional_values: Mapping[str, str] | None = None) -> None:
        """Install the baseline release and the CAPI providers.

        Args:
            additional_values: Extra ``--set`` values; copied, never shared.
        """
        self._expect(AddOnState.NOT_INSTALLED)
        values = dict(additional_values or {})
        console.print(Panel.fit(f"Installing Rancher Turtles {TURTLES_BASELINE_VERSION}", style="bold blue"))
        self._charts.add_repo(HELM_REPO_TURTLES, HELM_REPO_TURTLES_URL)
        self._charts.install(ChartRelease(
            name=HELM_RELEASE_TURTLES,
            chart=HELM_CHART_TURTLES,
            namespace=NS_TURTLES,
            version=TURTLES_BASELINE_VERSION,
            values=values,
        ))
        interval = self._interval(PHASE_WAIT_CONTROLLERS)
        for ref in (DeploymentRef(DEPLOY_TURTLES, NS_TURTLES), DeploymentRef(DEPLOY_CAPI, NS_CAPI)):
            self._readiness.wait_for_deployments_available(self._handle.client, ref, interval)
        self._handle.client.apply(load_manifest(DATA_CAPI_PROVIDERS))
        self._values = values
        self.state = AddOnState.INSTALLED
        console.print("[green]✅ Rancher Turtles installed[/green]")

    def deploy_chart_registry(self) -> None:
        """Deploy ChartMuseum and publish the locally built chart into it.

        The registry serves the chart to test cases that install it from a Helm
        repository. The upgrade itself installs from the local chart path.
        """
        console.print(Panel.fit("Deploying ChartMuseum", style="bold blue"))
        self._charts.add_repo(HELM_REPO_CHARTMUSEUM, HELM_REPO_CHARTMUSEUM_URL)
        self._charts.install(ChartRelease(
            name=HELM_RELEASE_CHARTMUSEUM,
            chart=HELM_CHART_CHARTMUSEUM,
            namespace=NS_CHARTMUSEUM,
            values={
                "env.open.DISABLE_API": "false",
                "env.open.STORAGE": "local",
                "persistence.enabled": "false",
            },
        ))
        self._readiness.wait_for_deployments_available(
            self._handle.client,
            DeploymentRef(DEPLOY_CHARTMUSEUM, NS_CHARTMUSEUM),
            self._interval(PHASE_WAIT_CONTROLLERS),
        )
        self._handle.client.copy_to_pod(
            NS_CHARTMUSEUM, CHARTMUSEUM_SELECTOR, self._config.chart_path, CHARTMUSEUM_STORAGE_DIR
        )
        console.print(f"[green]✅ ChartMuseum serving {self._config.chart_path.name}[/green]")

    def upgrade(
        self,
        checks: Sequence[PostUpgradeCheck] = (),
        image: str | None = None,
        tag: str = TURTLES_E2E_TAG,
        value_overrides: Mapping[str, str] = UPGRADE_VALUE_OVERRIDES,
    ) -> AddOnResult:
        """Upgrade to the locally built image, then run every post-upgrade check.

        Args:
            checks: Ordered post-upgrade checks.
            image: Image repository; defaults to the host-architecture e2e image.
            tag: Image tag.
            value_overrides: Values layered over the install values.

        Returns:
            The upgrade result.

        Raises:
            ProvisioningError: If the Helm upgrade fails.
            VerificationError: If a post-upgrade check fails; the state stays ``Upgrading``.
        """
        self._expect(AddOnState.INSTALLED)
        image = image or e2e_image()
        values = {**self._values, **value_overrides, HELM_KEY_TURTLES_IMAGE: image, HELM_KEY_TURTLES_IMAGE_VERSION: tag}

        console.print(Panel.fit(f"Upgrading Rancher Turtles to {image}:{tag}", style="bold blue"))
        self.state = AddOnState.UPGRADING
        self._charts.upgrade(ChartRelease(
            name=HELM_RELEASE_TURTLES,
            chart=str(self._config.chart_path),
            namespace=NS_TURTLES,
            values=values,
            create_namespace=False,
        ))
        self._readiness.wait_for_deployments_available(
            self._handle.client, DeploymentRef(DEPLOY_TURTLES, NS_TURTLES), self._interval(PHASE_WAIT_CONTROLLERS)
        )

        for check in checks:
            try:
                check.verify(self._handle.client, self._readiness, self._interval(check.phase))
            except (ReadinessTimeoutError, ProvisioningError) as err:
                logger.error("Post-upgrade check %s failed: %s", check, err)
                raise VerificationError(f"Post-upgrade check {check} failed: {err}") from err

        self._values = values
        self.state = AddOnState.UPGRADED
        console.print("[green]✅ Rancher Turtles upgraded and verified[/green]")
        return AddOnResult(
            image=image,
            tag=tag,
            values=MappingProxyType(dict(values)),
            checks=tuple(str(check) for check in checks),
        )


def uninstall_turtles(handle: ClusterHandle, config: RunConfiguration, charts: ChartDeployer) -> None:
    """Uninstall the add-on release, waiting up to ``wait-turtles-uninstall``."""
    console.print(Panel.fit("Uninstalling Rancher Turtles", style="bold blue"))
    interval = config.e2e_config.get_intervals(handle.name, PHASE_WAIT_TURTLES_UNINSTALL)
    charts.uninstall(HELM_RELEASE_TURTLES, NS_TURTLES, interval)
