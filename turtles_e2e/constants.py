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

"""Constants, bundled manifest loading, and variable names."""

from __future__ import annotations

from pathlib import Path

DATA_DIR = Path(__file__).resolve().parent / "data"


def load_manifest(name: str) -> str:
    """Read a bundled manifest or values file from the package data directory.

    Args:
        name: File name inside ``turtles_e2e/data``.

    Returns:
        The file contents as text.
    """
    return (DATA_DIR / name).read_text()


# -- Config variable names --
VAR_KUBERNETES_MANAGEMENT_VERSION = "KUBERNETES_MANAGEMENT_VERSION"
VAR_RANCHER_HOSTNAME = "RANCHER_HOSTNAME"
VAR_RANCHER_REPO_NAME = "RANCHER_REPO_NAME"
VAR_RANCHER_URL = "RANCHER_URL"
VAR_RANCHER_PATH = "RANCHER_PATH"
VAR_RANCHER_VERSION = "RANCHER_VERSION"
VAR_RANCHER_PASSWORD = "RANCHER_PASSWORD"
VAR_CERT_MANAGER_PATH = "CERT_MANAGER_PATH"
VAR_CERT_MANAGER_URL = "CERT_MANAGER_URL"
VAR_CERT_MANAGER_REPO_NAME = "CERT_MANAGER_REPO_NAME"
VAR_NGROK_API_KEY = "NGROK_API_KEY"
VAR_NGROK_AUTHTOKEN = "NGROK_AUTHTOKEN"
VAR_NGROK_PATH = "NGROK_PATH"
VAR_NGROK_REPO_NAME = "NGROK_REPO_NAME"
VAR_NGROK_URL = "NGROK_URL"
VAR_GITEA_REPO_NAME = "GITEA_REPO_NAME"
VAR_GITEA_REPO_URL = "GITEA_REPO_URL"
VAR_GITEA_CHART_NAME = "GITEA_CHART_NAME"
VAR_GITEA_CHART_VERSION = "GITEA_CHART_VERSION"
VAR_GITEA_USER_NAME = "GITEA_USER_NAME"
VAR_GITEA_USER_PWD = "GITEA_USER_PWD"

# -- Wait phases --
PHASE_WAIT_RANCHER = "wait-rancher"
PHASE_WAIT_CONTROLLERS = "wait-controllers"
PHASE_WAIT_GITEA = "wait-gitea"
PHASE_WAIT_GITEA_SERVICE = "wait-gitea-service"
PHASE_WAIT_GITEA_UNINSTALL = "wait-gitea-uninstall"
PHASE_WAIT_TURTLES_UNINSTALL = "wait-turtles-uninstall"
DEFAULT_INTERVAL_SCOPE = "default"

# -- Namespaces --
NS_RANCHER = "cattle-system"
NS_CERT_MANAGER = "cert-manager"
NS_TURTLES = "rancher-turtles-system"
NS_CAPI = "capi-system"
NS_NGROK = "ngrok"
NS_INGRESS_NGINX = "ingress-nginx"
NS_CHARTMUSEUM = "chartmuseum"
NS_GITEA = "default"
NS_DEFAULT = "default"

# -- Helm releases --
HELM_RELEASE_NGROK = "ngrok-ingress-controller"
HELM_RELEASE_INGRESS_NGINX = "ingress-nginx"
HELM_RELEASE_CERT_MANAGER = "cert-manager"
HELM_RELEASE_RANCHER = "rancher"
HELM_RELEASE_TURTLES = "rancher-turtles"
HELM_RELEASE_CHARTMUSEUM = "chartmuseum"
HELM_RELEASE_GITEA = "gitea"

# -- Helm repos --
HELM_REPO_TURTLES = "turtles"
HELM_REPO_TURTLES_URL = "https://rancher.github.io/turtles"
HELM_CHART_TURTLES = "turtles/rancher-turtles"
HELM_REPO_INGRESS_NGINX = "ingress-nginx"
HELM_REPO_INGRESS_NGINX_URL = "https://kubernetes.github.io/ingress-nginx"
HELM_CHART_INGRESS_NGINX = "ingress-nginx/ingress-nginx"
HELM_REPO_CHARTMUSEUM = "chartmuseum"
HELM_REPO_CHARTMUSEUM_URL = "https://chartmuseum.github.io/charts"
HELM_CHART_CHARTMUSEUM = "chartmuseum/chartmuseum"

# -- Deployments --
# The ngrok chart names its controller <release>-kubernetes-ingress-controller-manager.
DEPLOY_NGROK = f"{HELM_RELEASE_NGROK}-kubernetes-ingress-controller-manager"
DEPLOY_INGRESS_NGINX = "ingress-nginx-controller"
DEPLOY_CERT_MANAGER = ("cert-manager", "cert-manager-cainjector", "cert-manager-webhook")
DEPLOY_RANCHER = "rancher"
DEPLOY_TURTLES = "rancher-turtles-controller-manager"
DEPLOY_CAPI = "capi-controller-manager"
DEPLOY_CAAPF = "caapf-controller-manager"
DEPLOY_CHARTMUSEUM = "chartmuseum"
DEPLOY_GITEA = "gitea"

# -- Add-on versions and upgrade target --
TURTLES_BASELINE_VERSION = "v0.6.0"
TURTLES_E2E_IMAGE = "ghcr.io/rancher/turtles-e2e-{arch}"
TURTLES_E2E_TAG = "v0.0.1"

# -- Helm override keys --
HELM_KEY_IMAGE_PULL_POLICY = "rancherTurtles.imagePullPolicy"
HELM_KEY_FLEET_ADDON = "rancherTurtles.features.addon-provider-fleet.enabled"
HELM_KEY_MANAGEMENTV3 = "rancherTurtles.features.managementv3-cluster.enabled"
HELM_KEY_TURTLES_IMAGE = "rancherTurtles.image"
HELM_KEY_TURTLES_IMAGE_VERSION = "rancherTurtles.imageVersion"

# -- Bundled data files --
DATA_NGINX_INGRESS = "nginx-ingress.yaml"
DATA_INGRESS_CLASS_PATCH = "ingress-class-patch.yaml"
DATA_RANCHER_INGRESS_CONFIG = "rancher-ingress-config.yaml"
DATA_RANCHER_SERVICE_PATCH = "rancher-service-patch.yaml"
DATA_RANCHER_SETTING_PATCH = "rancher-setting-patch.yaml"
DATA_CAPI_PROVIDERS = "capi-providers.yaml"
DATA_GITEA_INGRESS = "gitea-ingress.yaml"
DATA_GITEA_VALUES = "gitea-values.yaml"

# -- Extra values files (relative to --helm-extra-values-dir) --
EXTRA_VALUES_INGRESS = "deploy-rancher-ingress.yaml"
EXTRA_VALUES_RANCHER = "deploy-rancher.yaml"

# -- Misc --
AUTH_SECRET_NAME = "basic-auth-secret"
ISOLATED_HOSTNAME_SUFFIX = "sslip.io"
LABEL_CONTROL_PLANE = "node-role.kubernetes.io/control-plane"
REPOSITORY_DIR = "repository"
CLUSTERCTL_CONFIG_FILE = "clusterctl-config.yaml"
CLUSTER_LOGS_DIR = "clusters"
KUBECONFIG_FILE = "kubeconfig"

# -- K3d defaults --
DEFAULT_CLUSTER_NAME = "turtles-e2e"
DEFAULT_K3S_IMAGE_TEMPLATE = "rancher/k3s:{version}-k3s1"
DEFAULT_CLUSTER_CREATE_MAX_RETRIES = 3
CLUSTER_CREATE_RETRY_WAIT_SECONDS = 10
CLUSTER_TIMEOUT = "300s"

# -- EKS defaults --
DEFAULT_EKS_REGION = "eu-west-2"
DEFAULT_EKS_NODE_TYPE = "m5.xlarge"
DEFAULT_EKS_NODES = 2

# -- Labels for narrowed test runs --
SHORT_TEST_LABEL = "short"
LOCAL_TEST_LABEL = "local"
