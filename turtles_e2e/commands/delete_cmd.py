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

"""Delete subcommands (cluster)."""

from __future__ import annotations

import typer

from turtles_e2e.cluster import EKSClusterProvider, K3dClusterProvider
from turtles_e2e.config import EKSConfig, K3dConfig

app = typer.Typer(help="Delete resources left behind by --skip-cleanup.")


@app.command("cluster")
def cluster(
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="Bootstrap cluster name"),
    eks: bool = typer.Option(False, "--eks", help="Delete an EKS cluster instead of a k3d one"),
    region: str | None = typer.Option(None, "--region", help="AWS region of the EKS cluster"),
) -> None:
    """Delete the bootstrap cluster."""
    if eks:
        eks_cfg = EKSConfig()
        if region is not None:
            eks_cfg = eks_cfg.model_copy(update={"region": region})
        EKSClusterProvider(eks_cfg).delete_cluster(cluster_name or eks_cfg.cluster_name)
        return
    k3d_cfg = K3dConfig()
    if cluster_name is not None:
        k3d_cfg = k3d_cfg.model_copy(update={"cluster_name": cluster_name})
    K3dClusterProvider(k3d_cfg).delete_cluster(k3d_cfg.cluster_name)
