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

"""
cli.py - Disposable test environment for the Rancher Turtles E2E suites.

Subcommands:
    run      Provision the environment, run a test command, tear down
    config   Show the resolved suite configuration
    delete   Delete a cluster left behind by --skip-cleanup

Examples:
    # Local k3d + ngrok run
    turtles-e2e run --e2e-config config/operator.yaml --helm-binary-path $(which helm) \
        --chart-path out/rancher-turtles-0.0.1.tgz -- pytest -m short

    # Isolated mode with Gitea behind an ingress, keeping the cluster
    turtles-e2e run --isolated-mode --gitea-custom-ingress --skip-cleanup ... -- pytest

    # Delete the kept cluster
    turtles-e2e delete cluster

All flags can also be set via E2E_* environment variables (e.g. E2E_CONFIG_PATH,
E2E_SKIP_CLEANUP). For detailed usage information, run: turtles-e2e --help
"""

from __future__ import annotations

import logging
import sys

import typer

from turtles_e2e import console
from turtles_e2e.commands import config_cmd, delete_cmd, run_cmd

app = typer.Typer(
    help="Disposable test environment for the Rancher Turtles E2E suites.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.command("run")(run_cmd.run)
app.add_typer(config_cmd.app, name="config")
app.add_typer(delete_cmd.app, name="delete")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
