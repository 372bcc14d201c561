"""Rancher Turtles add-on lifecycle and post-upgrade checks."""

from __future__ import annotations

import pytest
from conftest import Event, FakeCharts, FakeReadiness

from turtles_e2e.addon import (
    DEFAULT_POST_UPGRADE_CHECKS,
    AddOnState,
    DeploymentAvailableCheck,
    TurtlesAddOn,
    build_post_upgrade_checks,
    e2e_image,
    uninstall_turtles,
)
from turtles_e2e.cluster import ClusterHandle
from turtles_e2e.config import RunConfiguration, WaitInterval
from turtles_e2e.errors import PreconditionError, VerificationError


@pytest.fixture
def addon(handle: ClusterHandle, run_config: RunConfiguration, charts: FakeCharts,
          readiness: FakeReadiness) -> TurtlesAddOn:
    return TurtlesAddOn(handle, run_config, charts, readiness)


def test_install_uses_baseline_release(addon: TurtlesAddOn, charts: FakeCharts, readiness: FakeReadiness,
                                      events: list[Event]) -> None:
    addon.install({})

    release = charts.releases["rancher-turtles"]
    assert release.chart == "turtles/rancher-turtles"
    assert release.version == "v0.6.0"
    assert release.namespace == "rancher-turtles-system"
    assert dict(release.values) == {}
    assert ("helm", "add_repo", "turtles") in events
    assert events.index(("wait", "available", "rancher-turtles-controller-manager")) \
        > events.index(("helm", "install", "rancher-turtles"))
    awaited = {ref.name: ref.namespace for ref in readiness.refs}
    assert awaited["rancher-turtles-controller-manager"] == "rancher-turtles-system"
    assert awaited["capi-controller-manager"] == "capi-system"
    assert addon.state is AddOnState.INSTALLED


def test_install_copies_additional_values(addon: TurtlesAddOn) -> None:
    values = {"rancherTurtles.features.example": "true"}

    addon.install(values)
    values["mutated"] = "yes"

    assert "mutated" not in addon.values


def test_upgrade_applies_overrides_and_local_image(addon: TurtlesAddOn, charts: FakeCharts,
                                                   run_config: RunConfiguration) -> None:
    addon.install({})

    result = addon.upgrade(build_post_upgrade_checks(DEFAULT_POST_UPGRADE_CHECKS), image="ghcr.io/rancher/turtles-e2e-amd64")

    release = charts.releases["rancher-turtles"]
    assert release.chart == str(run_config.chart_path)
    assert release.values["rancherTurtles.imagePullPolicy"] == "Never"
    assert release.values["rancherTurtles.features.addon-provider-fleet.enabled"] == "true"
    assert release.values["rancherTurtles.features.managementv3-cluster.enabled"] == "false"
    assert release.values["rancherTurtles.image"] == "ghcr.io/rancher/turtles-e2e-amd64"
    assert release.values["rancherTurtles.imageVersion"] == "v0.0.1"
    assert result.checks == ("deployment-available rancher-turtles-system/caapf-controller-manager",)
    assert addon.state is AddOnState.UPGRADED


def test_upgraded_only_after_checks_pass(addon: TurtlesAddOn, events: list[Event]) -> None:
    addon.install({})

    addon.upgrade([DeploymentAvailableCheck("caapf-controller-manager", "rancher-turtles-system")])

    upgrade = events.index(("helm", "upgrade", "rancher-turtles"))
    check = events.index(("wait", "available", "caapf-controller-manager"))
    assert upgrade < check


def test_failed_check_keeps_upgrading_state(addon: TurtlesAddOn, readiness: FakeReadiness) -> None:
    addon.install({})
    readiness.fail.add("caapf-controller-manager")

    with pytest.raises(VerificationError, match="caapf-controller-manager"):
        addon.upgrade(build_post_upgrade_checks(DEFAULT_POST_UPGRADE_CHECKS))

    assert addon.state is AddOnState.UPGRADING


def test_checks_run_in_order_and_stop_at_first_failure(addon: TurtlesAddOn, readiness: FakeReadiness,
                                                       events: list[Event]) -> None:
    addon.install({})
    readiness.fail.add("first")
    checks = [
        DeploymentAvailableCheck("first", "rancher-turtles-system"),
        DeploymentAvailableCheck("second", "rancher-turtles-system"),
    ]

    with pytest.raises(VerificationError):
        addon.upgrade(checks)

    assert ("wait", "available", "first") in events
    assert ("wait", "available", "second") not in events


def test_upgrade_requires_install(addon: TurtlesAddOn) -> None:
    with pytest.raises(RuntimeError, match="not-installed"):
        addon.upgrade()


def test_chart_registry_serves_local_chart(addon: TurtlesAddOn, events: list[Event],
                                          run_config: RunConfiguration) -> None:
    addon.deploy_chart_registry()

    assert events[-1] == ("kube", "copy", "chartmuseum", run_config.chart_path.name)
    assert ("wait", "available", "chartmuseum") in events


def test_build_post_upgrade_checks_rejects_unknown_kind() -> None:
    with pytest.raises(PreconditionError, match="pod-ready"):
        build_post_upgrade_checks([{"kind": "pod-ready", "name": "x"}])


def test_build_post_upgrade_checks_rejects_bad_parameters() -> None:
    with pytest.raises(PreconditionError):
        build_post_upgrade_checks([{"kind": "deployment-available", "deployment": "x"}])


def test_check_phase_selects_interval(addon: TurtlesAddOn, readiness: FakeReadiness) -> None:
    addon.install({})

    addon.upgrade([DeploymentAvailableCheck("caapf-controller-manager", "rancher-turtles-system",
                                            phase="wait-rancher")])

    assert readiness.intervals["caapf-controller-manager"] == WaitInterval(2.0, 1.0)


@pytest.mark.parametrize(("machine", "arch"), [("x86_64", "amd64"), ("aarch64", "arm64"), ("arm64", "arm64")])
def test_e2e_image_per_architecture(machine: str, arch: str) -> None:
    assert e2e_image(machine) == f"ghcr.io/rancher/turtles-e2e-{arch}"


def test_uninstall_waits_with_its_interval(handle: ClusterHandle, run_config: RunConfiguration,
                                           charts: FakeCharts) -> None:
    uninstall_turtles(handle, run_config, charts)

    assert charts.uninstall_waits["rancher-turtles"] == WaitInterval(2.0, 1.0)
