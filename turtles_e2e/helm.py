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

"""Helm chart deployment through the configured Helm binary."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import sh

from turtles_e2e import console
from turtles_e2e.config import WaitInterval
from turtles_e2e.errors import ProvisioningError


@dataclass(frozen=True)
class ChartRelease:
    """A Helm release to install or upgrade.

    Attributes:
        name: Release name.
        chart: Chart reference (``repo/chart``, URL, or local archive path).
        namespace: Target namespace.
        version: Chart version, or empty for the latest.
        values: ``--set`` key/value pairs, applied in order.
        values_files: Values files passed with ``-f``.
        create_namespace: Whether to pass ``--create-namespace``.
    """

    name: str
    chart: str
    namespace: str
    version: str = ""
    values: Mapping[str, str] = field(default_factory=dict)
    values_files: tuple[Path, ...] = ()
    create_namespace: bool = True


class ChartDeployer(Protocol):
    """Install, upgrade, and uninstall Helm releases."""

    def add_repo(self, name: str, url: str) -> None: ...

    def install(self, release: ChartRelease, wait: WaitInterval | None = None) -> None: ...

    def upgrade(self, release: ChartRelease, wait: WaitInterval | None = None) -> None: ...

    def uninstall(self, name: str, namespace: str, wait: WaitInterval | None = None) -> None: ...


def _timeout_arg(wait: WaitInterval) -> str:
    return f"{max(1, math.ceil(wait.timeout))}s"


def release_args(release: ChartRelease) -> list[str]:
    """Build the shared ``helm install/upgrade`` arguments for a release.

    Args:
        release: Release to deploy.

    Returns:
        Argument list after the subcommand.
    """
    args = [release.name, release.chart, "--namespace", release.namespace]
    if release.create_namespace:
        args.append("--create-namespace")
    if release.version:
        args += ["--version", release.version]
    for values_file in release.values_files:
        args += ["-f", str(values_file)]
    for key, value in release.values.items():
        args += ["--set", f"{key}={value}"]
    return args


class HelmChartDeployer:
    """ChartDeployer backed by a Helm binary.

    Args:
        helm_binary_path: Helm binary to run.
        kubeconfig: Kubeconfig of the target cluster.
        command: Command to bake instead of the binary (used in tests).
    """

    def __init__(self, helm_binary_path: Path, kubeconfig: Path, command: Any = None) -> None:
        base = command if command is not None else sh.Command(str(helm_binary_path))
        self._helm = base.bake("--kubeconfig", str(kubeconfig))

    def _run(self, *args: str) -> str:
        try:
            return str(self._helm(*args))
        except sh.ErrorReturnCode as err:
            stderr = err.stderr.decode(errors="replace").strip()
            raise ProvisioningError(f"helm {' '.join(args[:2])} failed: {stderr}") from err

    def add_repo(self, name: str, url: str) -> None:
        self._run("repo", "add", name, url, "--force-update")
        self._run("repo", "update", name)

    def install(self, release: ChartRelease, wait: WaitInterval | None = None) -> None:
        console.print(f"[yellow]   helm install {release.name} ({release.chart} {release.version})[/yellow]")
        args = ["upgrade", "--install", *release_args(release)]
        if wait is not None:
            args += ["--wait", "--timeout", _timeout_arg(wait)]
        self._run(*args)

    def upgrade(self, release: ChartRelease, wait: WaitInterval | None = None) -> None:
        console.print(f"[yellow]   helm upgrade {release.name} ({release.chart})[/yellow]")
        args = ["upgrade", *release_args(release)]
        if wait is not None:
            args += ["--wait", "--timeout", _timeout_arg(wait)]
        self._run(*args)

    def uninstall(self, name: str, namespace: str, wait: WaitInterval | None = None) -> None:
        """Uninstall a release; a release that does not exist is a no-op."""
        args = ["uninstall", name, "--namespace", namespace]
        if wait is not None:
            args += ["--wait", "--timeout", _timeout_arg(wait)]
        try:
            self._helm(*args)
        except sh.ErrorReturnCode as err:
            stderr = err.stderr.decode(errors="replace").strip()
            if "not found" in stderr:
                console.print(f"[yellow]   No existing {name} release found[/yellow]")
                return
            raise ProvisioningError(f"helm uninstall {name} failed: {stderr}") from err
        console.print(f"[yellow]   Removed {name} release[/yellow]")
