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

"""Run subcommand: provision, run the tests, tear down."""

from __future__ import annotations

from pathlib import Path

import typer

from turtles_e2e.commands import options
from turtles_e2e.config import display_config, resolve_suite_flags
from turtles_e2e.modes import select_mode
from turtles_e2e.runtime import RunContext
from turtles_e2e.suite import run_suite


def run(
    test_command: list[str] = typer.Argument(..., help="Test command to run against the environment"),
    e2e_config: Path | None = options.E2E_CONFIG,
    artifacts_folder: Path | None = options.ARTIFACTS_FOLDER,
    helm_binary_path: Path | None = options.HELM_BINARY_PATH,
    chart_path: Path | None = options.CHART_PATH,
    helm_extra_values_dir: Path | None = options.HELM_EXTRA_VALUES_DIR,
    use_existing_cluster: bool | None = options.USE_EXISTING_CLUSTER,
    use_eks: bool | None = options.USE_EKS,
    isolated_mode: bool | None = options.ISOLATED_MODE,
    gitea_custom_ingress: bool | None = options.GITEA_CUSTOM_INGRESS,
    skip_cleanup: bool | None = options.SKIP_CLEANUP,
) -> None:
    """Provision the environment, run TEST_COMMAND against it, then tear down.

    The exit code is the test command's; setup and teardown failures exit 1.
    """
    flags = resolve_suite_flags(**options.flag_overrides(
        e2e_config, artifacts_folder, helm_binary_path, chart_path, helm_extra_values_dir,
        use_existing_cluster, use_eks, isolated_mode, gitea_custom_ingress, skip_cleanup,
    ))
    display_config(flags, select_mode(flags))

    ctx = RunContext()
    ctx.install_signal_handlers()
    exit_code = run_suite(flags, test_command, ctx=ctx)
    raise typer.Exit(code=exit_code)
