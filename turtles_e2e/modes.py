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

"""Operating mode derivation from suite flags.

The mode flags look independent but form a discriminated choice: a run uses
exactly one network mode, and Gitea exposure is derived from it with an
optional overlay. All derivation is pure so precedence can be tested in
isolation.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from turtles_e2e.config import SuiteFlags


class NetworkMode(enum.Enum):
    """How the environment is reached from outside the cluster."""

    LOCAL_TUNNEL = "local-tunnel"
    MANAGED_CLOUD = "managed-cloud"
    ISOLATED = "isolated"


class IngressFlavor(enum.Enum):
    """Ingress controller deployed by the ingress stage."""

    NGROK = "ngrok"
    EKS_NGINX = "eks-nginx"
    CUSTOM = "custom"


class ServiceType(enum.Enum):
    """Kubernetes service type used to expose Gitea."""

    NODE_PORT = "NodePort"
    LOAD_BALANCER = "LoadBalancer"
    CLUSTER_IP = "ClusterIP"


@dataclass(frozen=True)
class OperatingMode:
    """Mode flags plus the derived network, ingress, and Gitea exposure.

    Attributes:
        use_existing_cluster: Attach to an existing cluster instead of creating one.
        use_managed_cloud_provider: Bootstrap cluster runs on a managed cloud (EKS).
        isolated_networking: No public tunnel; custom ingress and internal hostname.
        custom_git_ingress: Gitea is exposed through an ingress.
    """

    use_existing_cluster: bool = False
    use_managed_cloud_provider: bool = False
    isolated_networking: bool = False
    custom_git_ingress: bool = False

    @property
    def network(self) -> NetworkMode:
        # Isolated wins over managed cloud.
        if self.isolated_networking:
            return NetworkMode.ISOLATED
        if self.use_managed_cloud_provider:
            return NetworkMode.MANAGED_CLOUD
        return NetworkMode.LOCAL_TUNNEL

    @property
    def ingress_flavor(self) -> IngressFlavor:
        return {
            NetworkMode.LOCAL_TUNNEL: IngressFlavor.NGROK,
            NetworkMode.MANAGED_CLOUD: IngressFlavor.EKS_NGINX,
            NetworkMode.ISOLATED: IngressFlavor.CUSTOM,
        }[self.network]

    @property
    def git_service_type(self) -> ServiceType:
        if self.custom_git_ingress:
            return ServiceType.CLUSTER_IP
        if self.use_managed_cloud_provider:
            return ServiceType.LOAD_BALANCER
        return ServiceType.NODE_PORT

    @property
    def uses_local_tunnel(self) -> bool:
        """Whether Rancher is reached through the local ngrok tunnel."""
        return self.network is NetworkMode.LOCAL_TUNNEL


def select_mode(flags: SuiteFlags) -> OperatingMode:
    """Derive the operating mode from suite flags without side effects."""
    return OperatingMode(
        use_existing_cluster=flags.use_existing_cluster,
        use_managed_cloud_provider=flags.use_eks,
        isolated_networking=flags.isolated_mode,
        custom_git_ingress=flags.gitea_custom_ingress,
    )
