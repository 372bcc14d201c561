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

"""Command checks and test command execution."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import sh

from turtles_e2e import logger
from turtles_e2e.errors import PreconditionError


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        PreconditionError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise PreconditionError(f"Required command '{cmd}' not found. Please install it first.") from err


def run_test_command(command: Sequence[str], env: Mapping[str, str]) -> int:
    """Run the test command in the foreground and return its exit code.

    A failing test command is not a suite error; its exit code is reported
    to the caller instead.

    Args:
        command: Program and arguments.
        env: Full environment for the command.

    Returns:
        The command's exit code.
    """
    if not command:
        raise PreconditionError("No test command given")
    try:
        sh.Command(command[0])(*command[1:], _env=dict(env), _fg=True)
    except sh.CommandNotFound as err:
        raise PreconditionError(f"Test command '{command[0]}' not found") from err
    except sh.ErrorReturnCode as err:
        logger.warning("Test command exited with %d", err.exit_code)
        return err.exit_code
    return 0
