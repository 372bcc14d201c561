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

"""pytest plugin: suite flags as options and a session-wide environment.

Enable it with ``-p turtles_e2e.pytest_plugin`` or from a ``conftest.py``
(``pytest_plugins = ["turtles_e2e.pytest_plugin"]``).
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from turtles_e2e.config import SuiteFlags, resolve_suite_flags
from turtles_e2e.constants import LOCAL_TEST_LABEL, SHORT_TEST_LABEL
from turtles_e2e.context import SuiteContext
from turtles_e2e.suite import provisioned_environment

_PATH_OPTIONS = {
    "--e2e-config": ("config_path", "Path to the E2E config file"),
    "--artifacts-folder": ("artifacts_folder", "Folder where test artifacts are stored"),
    "--helm-binary-path": ("helm_binary_path", "Path to the Helm binary"),
    "--chart-path": ("chart_path", "Path to the locally built add-on chart"),
    "--helm-extra-values-dir": ("helm_extra_values_dir", "Directory with extra Helm values files"),
}

_BOOL_OPTIONS = {
    "--use-existing-cluster": ("use_existing_cluster", "Use the cluster of the current kubeconfig"),
    "--use-eks": ("use_eks", "Create the bootstrap cluster on EKS"),
    "--isolated-mode": ("isolated_mode", "Use custom ingress and an internal hostname instead of ngrok"),
    "--gitea-custom-ingress": ("gitea_custom_ingress", "Expose Gitea through an ingress"),
    "--skip-cleanup": ("skip_cleanup", "Keep the bootstrap cluster after the run"),
}


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("turtles-e2e", "Turtles E2E environment")
    for option, (dest, help_text) in _PATH_OPTIONS.items():
        group.addoption(option, dest=f"turtles_{dest}", default=None, help=help_text)
    for option, (dest, help_text) in _BOOL_OPTIONS.items():
        group.addoption(option, dest=f"turtles_{dest}", action="store_true", default=False, help=help_text)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", f"{SHORT_TEST_LABEL}: quick subset of the E2E suite")
    config.addinivalue_line("markers", f"{LOCAL_TEST_LABEL}: E2E tests that only run against a local cluster")


def flags_from_pytest(config: pytest.Config) -> SuiteFlags:
    """Build suite flags from E2E_* env vars, overridden by the given options."""
    updates: dict[str, Any] = {}
    for dest, _ in _PATH_OPTIONS.values():
        value = config.getoption(f"turtles_{dest}")
        updates[dest] = Path(value) if value is not None else None
    for dest, _ in _BOOL_OPTIONS.values():
        updates[dest] = True if config.getoption(f"turtles_{dest}") else None
    return resolve_suite_flags(**updates)


def short_test_only(config: pytest.Config) -> bool:
    """Whether the run is filtered down to the short tests (``-m short``)."""
    return config.getoption("markexpr", default="") == SHORT_TEST_LABEL


def local_test_only(config: pytest.Config) -> bool:
    """Whether the run is filtered down to the local tests (``-m local``)."""
    return config.getoption("markexpr", default="") == LOCAL_TEST_LABEL


@pytest.fixture(scope="session")
def suite_context(request: pytest.FixtureRequest) -> Iterator[SuiteContext]:
    """Provision the environment once per session and tear it down at the end."""
    flags = flags_from_pytest(request.config)
    if flags.config_path is None:
        pytest.skip("no E2E config given (--e2e-config or E2E_CONFIG_PATH)")
    with provisioned_environment(flags) as suite:
        yield suite
