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

"""Error taxonomy for suite setup and teardown."""

from __future__ import annotations


class SuiteError(RuntimeError):
    """Base class for every fatal suite-level error."""


class PreconditionError(SuiteError):
    """A required flag, file, or configuration entry is missing or invalid."""


class ProvisioningError(SuiteError):
    """A cluster or chart deployment step failed."""


class ReadinessTimeoutError(SuiteError):
    """A resource was deployed but did not become ready within its interval."""

    def __init__(self, what: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for {what}")
        self.what = what
        self.timeout = timeout


class VerificationError(SuiteError):
    """A post-upgrade verification check did not pass."""


class CancellationError(SuiteError):
    """The run was cancelled while a stage was waiting."""


class TeardownError(SuiteError):
    """One or more teardown steps failed after a successful setup.

    Attributes:
        failures: Mapping of teardown step name to the error it raised.
    """

    def __init__(self, failures: dict[str, BaseException]) -> None:
        steps = ", ".join(f"{name}: {err}" for name, err in failures.items())
        super().__init__(f"Teardown failed ({steps})")
        self.failures = failures
