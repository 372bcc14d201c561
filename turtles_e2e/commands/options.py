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

"""Suite flag options shared by the commands that resolve suite flags."""

from __future__ import annotations

from pathlib import Path

import typer

E2E_CONFIG = typer.Option(None, "--e2e-config", help="Path to the E2E config file (E2E_CONFIG_PATH)")
ARTIFACTS_FOLDER = typer.Option(
    None, "--artifacts-folder", help="Folder where test artifacts are stored (E2E_ARTIFACTS_FOLDER)")
HELM_BINARY_PATH = typer.Option(None, "--helm-binary-path", help="Path to the Helm binary")
CHART_PATH = typer.Option(None, "--chart-path", help="Path to the locally built Rancher Turtles chart")
HELM_EXTRA_VALUES_DIR = typer.Option(
    None, "--helm-extra-values-dir", help="Directory with extra Helm values files")
USE_EXISTING_CLUSTER = typer.Option(
    None, "--use-existing-cluster/--no-use-existing-cluster",
    help="Use the cluster of the current kubeconfig instead of creating one")
USE_EKS = typer.Option(None, "--use-eks/--no-use-eks", help="Create the bootstrap cluster on EKS")
ISOLATED_MODE = typer.Option(
    None, "--isolated-mode/--no-isolated-mode",
    help="Use a custom ingress and the node IP hostname instead of ngrok")
GITEA_CUSTOM_INGRESS = typer.Option(
    None, "--gitea-custom-ingress/--no-gitea-custom-ingress", help="Expose Gitea through an ingress")
SKIP_CLEANUP = typer.Option(
    None, "--skip-cleanup/--no-skip-cleanup", help="Keep the bootstrap cluster after the run")


def flag_overrides(
    e2e_config: Path | None,
    artifacts_folder: Path | None,
    helm_binary_path: Path | None,
    chart_path: Path | None,
    helm_extra_values_dir: Path | None,
    use_existing_cluster: bool | None,
    use_eks: bool | None,
    isolated_mode: bool | None,
    gitea_custom_ingress: bool | None,
    skip_cleanup: bool | None,
) -> dict[str, object]:
    """Map CLI option values onto suite flag names."""
    return {
        "config_path": e2e_config,
        "artifacts_folder": artifacts_folder,
        "helm_binary_path": helm_binary_path,
        "chart_path": chart_path,
        "helm_extra_values_dir": helm_extra_values_dir,
        "use_existing_cluster": use_existing_cluster,
        "use_eks": use_eks,
        "isolated_mode": isolated_mode,
        "gitea_custom_ingress": gitea_custom_ingress,
        "skip_cleanup": skip_cleanup,
    }
