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

"""Teardown in reverse dependency order, whatever setup reached."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from rich.panel import Panel

from turtles_e2e import console, logger
from turtles_e2e.addon import uninstall_turtles
from turtles_e2e.context import SuiteContext, SuiteTools
from turtles_e2e.errors import TeardownError
from turtles_e2e.gitea import uninstall_gitea

STEP_GITEA = "gitea"
STEP_TURTLES = "turtles"
STEP_CLUSTER = "cluster"


@dataclass
class TeardownReport:
    """What teardown did.

    Attributes:
        attempted: Steps that were run, in order.
        skipped: Steps skipped on purpose.
        failures: Step name to the error it raised.
    """

    attempted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        """Raise TeardownError if any step failed."""
        if self.failures:
            raise TeardownError(dict(self.failures))


def _run_step(report: TeardownReport, name: str, step: Callable[[], None]) -> None:
    report.attempted.append(name)
    try:
        step()
    except Exception as err:
        logger.error("Teardown step %s failed: %s", name, err)
        console.print(f"[red]❌ Teardown step {name} failed: {err}[/red]")
        report.failures[name] = err


def teardown_suite(suite: SuiteContext, tools: SuiteTools) -> TeardownReport:
    """Uninstall Gitea, then the add-on, then dispose of the cluster.

    Every step is attempted even when an earlier one fails; uninstalling a
    release that was never installed is a no-op. Nothing is done when no
    cluster was ever acquired. ``skip_cleanup`` only skips the cluster step.

    Args:
        suite: Suite state produced by setup, possibly partial.
        tools: Collaborators used during setup.

    Returns:
        The teardown report; errors are recorded, never raised.
    """
    report = TeardownReport()
    if suite.cluster is None or suite.config is None:
        logger.info("No bootstrap cluster was acquired; nothing to tear down")
        return report

    console.print(Panel.fit("Tearing down the test environment", style="bold blue"))
    cluster = suite.cluster
    config = suite.config
    charts = suite.charts
    if charts is None:
        charts = tools.chart_deployer_factory(config.helm_binary_path, cluster.handle.kubeconfig_path)

    _run_step(report, STEP_GITEA, lambda: uninstall_gitea(cluster.handle, config, charts, suite.git))
    _run_step(report, STEP_TURTLES, lambda: uninstall_turtles(cluster.handle, config, charts))

    if suite.flags.skip_cleanup:
        console.print(f"[yellow]⚠️  Skipping cleanup of cluster '{cluster.handle.name}'[/yellow]")
        report.skipped.append(STEP_CLUSTER)
    else:
        _run_step(
            report, STEP_CLUSTER,
            lambda: tools.provisioner.cleanup(cluster, config.artifacts_folder),
        )

    if report.ok:
        console.print("[green]✅ Teardown complete[/green]")
    return report
