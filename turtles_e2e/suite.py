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

"""Suite setup sequencing and the provisioned-environment lifecycle."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager

from rich.panel import Panel

from turtles_e2e import console, logger
from turtles_e2e.addon import (
    DEFAULT_POST_UPGRADE_CHECKS,
    PostUpgradeCheck,
    TurtlesAddOn,
    build_post_upgrade_checks,
)
from turtles_e2e.config import SuiteFlags, resolve_run_configuration
from turtles_e2e.constants import VAR_KUBERNETES_MANAGEMENT_VERSION, VAR_RANCHER_HOSTNAME
from turtles_e2e.context import SuiteContext, SuiteTools, default_tools
from turtles_e2e.gitea import deploy_gitea
from turtles_e2e.ingress import deploy_ingress
from turtles_e2e.modes import select_mode
from turtles_e2e.rancher import deploy_rancher
from turtles_e2e.runtime import RunContext
from turtles_e2e.teardown import teardown_suite
from turtles_e2e.utils import require_command, run_test_command


def setup_suite(
    suite: SuiteContext,
    tools: SuiteTools,
    post_upgrade_checks: Sequence[PostUpgradeCheck] | None = None,
) -> SuiteContext:
    """Run every setup stage in dependency order, filling in *suite*.

    Stages: configuration, cluster, ingress, Rancher, add-on install, chart
    registry, add-on upgrade, Gitea. Cancellation is checked between stages
    and inside every wait.

    Args:
        suite: Suite state to fill in; partial state is kept on failure.
        tools: Collaborators to deploy through.
        post_upgrade_checks: Checks run after the add-on upgrade; defaults to
            the CAAPF controller availability check.

    Returns:
        The filled-in suite context.

    Raises:
        SuiteError: Whatever stage failed first.
    """
    ctx = suite.ctx
    checks = list(post_upgrade_checks) if post_upgrade_checks is not None \
        else build_post_upgrade_checks(DEFAULT_POST_UPGRADE_CHECKS)

    for cmd in tools.prerequisites:
        require_command(cmd)

    ctx.check()
    suite.config = resolve_run_configuration(suite.flags)
    e2e = suite.config.e2e_config

    ctx.check()
    kubernetes_version = "" if suite.mode.use_existing_cluster \
        else e2e.get_variable(VAR_KUBERNETES_MANAGEMENT_VERSION)
    suite.cluster = tools.provisioner.setup(suite.config, suite.mode, kubernetes_version)
    handle = suite.cluster.handle
    suite.charts = tools.chart_deployer_factory(suite.config.helm_binary_path, handle.kubeconfig_path)

    ctx.check()
    suite.ingress = deploy_ingress(handle, suite.mode, suite.config, suite.charts, tools.readiness)

    ctx.check()
    suite.hostname = suite.cluster.isolated_hostname or e2e.get_variable(VAR_RANCHER_HOSTNAME)
    suite.platform = deploy_rancher(
        handle, suite.mode, suite.config, suite.charts, tools.readiness, suite.hostname
    )

    ctx.check()
    suite.addon = TurtlesAddOn(handle, suite.config, suite.charts, tools.readiness)
    suite.addon.install({})

    ctx.check()
    suite.addon.deploy_chart_registry()

    ctx.check()
    suite.addon_result = suite.addon.upgrade(checks)

    ctx.check()
    suite.git = deploy_gitea(
        handle, suite.mode, suite.config, suite.charts, tools.readiness, suite.platform.hostname
    )
    console.print("[green]✅ Test environment is ready[/green]")
    return suite


@contextmanager
def provisioned_environment(
    flags: SuiteFlags,
    tools: SuiteTools | None = None,
    ctx: RunContext | None = None,
    post_upgrade_checks: Sequence[PostUpgradeCheck] | None = None,
) -> Iterator[SuiteContext]:
    """Set up the environment, yield it, and always tear it down.

    A setup error is re-raised after teardown and is never replaced by a
    teardown error. When setup and the body succeed, teardown failures are
    raised as TeardownError.

    Args:
        flags: Suite flags.
        tools: Collaborators; defaults to the kubectl/helm/k3d ones.
        ctx: Run context; a new one is created when omitted.
        post_upgrade_checks: Checks run after the add-on upgrade.

    Yields:
        The ready suite context.
    """
    ctx = ctx or RunContext()
    tools = tools or default_tools(flags, ctx)
    suite = SuiteContext(flags=flags, mode=select_mode(flags), ctx=ctx)

    try:
        setup_suite(suite, tools, post_upgrade_checks)
    except BaseException as err:
        logger.error("Suite setup failed: %s", err)
        teardown_suite(suite, tools)
        raise

    body_failed = False
    try:
        yield suite
    except BaseException:
        body_failed = True
        raise
    finally:
        report = teardown_suite(suite, tools)
        if not body_failed:
            report.raise_for_failures()


def run_suite(
    flags: SuiteFlags,
    test_command: Sequence[str],
    tools: SuiteTools | None = None,
    ctx: RunContext | None = None,
    test_runner: Callable[[Sequence[str], Mapping[str, str]], int] = run_test_command,
) -> int:
    """Provision the environment, run the test command against it, tear down.

    Args:
        flags: Suite flags.
        test_command: Test command and its arguments.
        tools: Collaborators; defaults to the kubectl/helm/k3d ones.
        ctx: Run context.
        test_runner: Runs the test command and returns its exit code.

    Returns:
        The test command's exit code.

    Raises:
        SuiteError: If setup or teardown failed.
    """
    with provisioned_environment(flags, tools=tools, ctx=ctx) as suite:
        console.print(Panel.fit(f"Running {' '.join(test_command)}", style="bold blue"))
        exit_code = test_runner(test_command, {**os.environ, **suite.test_environment()})
    if exit_code == 0:
        console.print("[green]✅ Tests passed[/green]")
    else:
        console.print(f"[yellow]⚠️  Tests exited with {exit_code}[/yellow]")
    return exit_code
