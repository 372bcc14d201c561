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

"""Run-scoped cooperative cancellation."""

from __future__ import annotations

import signal
import threading

from turtles_e2e import logger
from turtles_e2e.errors import CancellationError


class RunContext:
    """Cancellation token shared by every stage of a suite run.

    Waits sleep through :meth:`sleep` so a cancellation wakes them up early.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation of the run."""
        self.reason = reason
        self._cancelled.set()

    def check(self, what: str = "") -> None:
        """Raise CancellationError if the run has been cancelled.

        Args:
            what: Description of the operation being interrupted.
        """
        if self.cancelled:
            suffix = f" while waiting for {what}" if what else ""
            raise CancellationError(f"Run {self.reason}{suffix}")

    def sleep(self, seconds: float) -> None:
        """Sleep for *seconds*, returning early if the run is cancelled."""
        self._cancelled.wait(seconds)

    def install_signal_handlers(self) -> None:
        """Turn SIGINT and SIGTERM into a cooperative cancellation."""

        def _handler(signum: int, _frame: object) -> None:
            name = signal.Signals(signum).name
            logger.warning("Received %s, cancelling the run", name)
            self.cancel(f"cancelled by {name}")

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
