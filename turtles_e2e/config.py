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

"""Suite flags, E2E config file model, and run configuration resolution."""

from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from turtles_e2e import console, logger
from turtles_e2e.constants import (
    CLUSTERCTL_CONFIG_FILE,
    DEFAULT_CLUSTER_CREATE_MAX_RETRIES,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_EKS_NODE_TYPE,
    DEFAULT_EKS_NODES,
    DEFAULT_EKS_REGION,
    DEFAULT_INTERVAL_SCOPE,
    REPOSITORY_DIR,
)
from turtles_e2e.errors import PreconditionError

if TYPE_CHECKING:
    from turtles_e2e.modes import OperatingMode


# ============================================================================
# Suite flags
# ============================================================================

class SuiteFlags(BaseSettings):
    """Flags for a suite run, auto-loaded from E2E_* env vars.

    Attributes:
        config_path: Path to the E2E configuration file.
        artifacts_folder: Folder for the generated repository, kubeconfig and logs.
        helm_binary_path: Path to the Helm binary used for every chart operation.
        chart_path: Path to the locally built add-on chart archive.
        helm_extra_values_dir: Directory holding extra Helm values files, or None.
        use_existing_cluster: Attach to the current kubeconfig cluster instead of creating one.
        use_eks: Provision the bootstrap cluster on EKS.
        isolated_mode: Use a custom ingress and an internal hostname instead of a tunnel.
        gitea_custom_ingress: Expose Gitea through an ingress (ClusterIP service).
        skip_cleanup: Keep the bootstrap cluster after the suite.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore")

    config_path: Path | None = None
    artifacts_folder: Path = Path("_artifacts")
    helm_binary_path: Path | None = None
    chart_path: Path | None = None
    helm_extra_values_dir: Path | None = None
    use_existing_cluster: bool = False
    use_eks: bool = False
    isolated_mode: bool = False
    gitea_custom_ingress: bool = False
    skip_cleanup: bool = False


def resolve_suite_flags(**overrides: Any) -> SuiteFlags:
    """Build suite flags with priority CLI > env > default.

    Args:
        **overrides: Values given on the command line; None means not given.

    Returns:
        The resolved flags.

    Raises:
        PreconditionError: If an override does not name a suite flag.
    """
    updates = {key: value for key, value in overrides.items() if value is not None}
    unknown = sorted(set(updates) - set(SuiteFlags.model_fields))
    if unknown:
        raise PreconditionError(f"Unknown suite flags: {', '.join(unknown)}")
    return SuiteFlags().model_copy(update=updates)


class K3dConfig(BaseSettings):
    """Local k3d bootstrap cluster configuration, auto-loaded from E2E_K3D_* env vars.

    Attributes:
        cluster_name: Name of the k3d cluster.
        k3s_image: K3s image override; derived from the Kubernetes version when empty.
        agents: Number of agent nodes.
        lb_ports: Host:container port mappings on the load balancer.
        max_retries: Maximum cluster creation attempts.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_K3D_", extra="ignore")

    cluster_name: str = DEFAULT_CLUSTER_NAME
    k3s_image: str = ""
    agents: int = Field(default=0, ge=0, le=10)
    lb_ports: list[str] = ["80:80", "443:443"]
    max_retries: int = Field(default=DEFAULT_CLUSTER_CREATE_MAX_RETRIES, ge=1, le=10)


class EKSConfig(BaseSettings):
    """EKS bootstrap cluster configuration, auto-loaded from E2E_EKS_* env vars.

    Attributes:
        cluster_name: Name of the EKS cluster.
        region: AWS region.
        node_type: EC2 instance type for the managed node group.
        nodes: Number of nodes in the node group.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_EKS_", extra="ignore")

    cluster_name: str = DEFAULT_CLUSTER_NAME
    region: str = DEFAULT_EKS_REGION
    node_type: str = DEFAULT_EKS_NODE_TYPE
    nodes: int = Field(default=DEFAULT_EKS_NODES, ge=1, le=20)


# ============================================================================
# Wait intervals
# ============================================================================

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string (``"1h30m"``, ``"10s"``) into seconds.

    Args:
        value: Duration string.

    Returns:
        Duration in seconds.

    Raises:
        PreconditionError: If the string is not a valid duration.
    """
    text = value.strip()
    if text == "0":
        return 0.0
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(num + unit for num, unit in parts) != text:
        raise PreconditionError(f"Invalid duration {value!r}")
    return sum(float(num) * _DURATION_UNITS[unit] for num, unit in parts)


@dataclass(frozen=True)
class WaitInterval:
    """How long a blocking wait may run and how often it polls.

    Attributes:
        timeout: Maximum seconds to wait.
        poll: Seconds between readiness checks.
    """

    timeout: float
    poll: float

    def __str__(self) -> str:
        return f"{self.timeout:g}s/{self.poll:g}s"


# ============================================================================
# E2E config file
# ============================================================================

class ProviderFile(BaseModel):
    """Extra file copied next to a provider version in the local repository."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source_path: str = Field(alias="sourcePath")
    target_name: str = Field(default="", alias="targetName")


class ProviderVersion(BaseModel):
    """One version of a provider: a components file path or URL."""

    model_config = ConfigDict(extra="ignore")

    name: str
    value: str
    files: list[ProviderFile] = []


class ProviderConfig(BaseModel):
    """A clusterctl provider published into the local repository."""

    model_config = ConfigDict(extra="ignore")

    name: str
    type: str
    versions: list[ProviderVersion] = []


class ContainerImage(BaseModel):
    """Image to load into a locally created bootstrap cluster."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    load_behavior: str = Field(default="tryLoad", alias="loadBehavior")

    @field_validator("load_behavior")
    @classmethod
    def _known_behavior(cls, value: str) -> str:
        if value not in ("mustLoad", "tryLoad"):
            raise ValueError(f"unknown loadBehavior {value!r}")
        return value


class E2EConfig(BaseModel):
    """Parsed E2E configuration file.

    Attributes:
        name: Free-form config name.
        images: Images to load into a local bootstrap cluster.
        providers: Providers published into the local clusterctl repository.
        variables: String variables parametrizing every stage.
        intervals: ``<scope>/<phase>`` to ``[timeout, poll]`` duration strings.
    """

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    images: list[ContainerImage] = []
    providers: list[ProviderConfig] = []
    variables: dict[str, str] = {}
    intervals: dict[str, list[str]] = {}

    @field_validator("variables", mode="before")
    @classmethod
    def _stringify_variables(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    def has_variable(self, name: str) -> bool:
        """Return whether *name* is set in the environment or the config file."""
        return name in os.environ or name in self.variables

    def get_variable(self, name: str) -> str:
        """Return a variable, preferring an environment variable of the same name.

        Args:
            name: Variable name.

        Returns:
            The variable value.

        Raises:
            PreconditionError: If the variable is defined nowhere.
        """
        if name in os.environ:
            return os.environ[name]
        try:
            return self.variables[name]
        except KeyError:
            raise PreconditionError(f"Variable {name!r} not found in the E2E config") from None

    def get_intervals(self, scope: str, phase: str) -> WaitInterval:
        """Resolve the wait interval for a phase, falling back to the default scope.

        Args:
            scope: Interval scope, usually the bootstrap cluster name.
            phase: Phase label such as ``wait-controllers``.

        Returns:
            The resolved wait interval.

        Raises:
            PreconditionError: If no interval is configured for the phase.
        """
        for key in (f"{scope}/{phase}", f"{DEFAULT_INTERVAL_SCOPE}/{phase}"):
            if key in self.intervals:
                values = self.intervals[key]
                if len(values) != 2:
                    raise PreconditionError(f"Interval {key!r} must be [timeout, poll], got {values}")
                return WaitInterval(parse_duration(values[0]), parse_duration(values[1]))
        raise PreconditionError(f"No interval configured for {scope}/{phase} or {DEFAULT_INTERVAL_SCOPE}/{phase}")

    def render(self, template: str, **overrides: str) -> str:
        """Substitute ``${VAR}`` references with config variables and *overrides*."""
        return Template(template).safe_substitute({**self.variables, **os.environ, **overrides})


def load_e2e_config(config_path: Path) -> E2EConfig:
    """Load and validate the E2E configuration file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        The parsed configuration.

    Raises:
        PreconditionError: If the file is not valid YAML or fails validation.
    """
    try:
        raw = yaml.safe_load(config_path.read_text()) or {}
        return E2EConfig.model_validate(raw)
    except (yaml.YAMLError, ValidationError) as err:
        raise PreconditionError(f"Invalid E2E config {config_path}: {err}") from err


# ============================================================================
# Local clusterctl repository
# ============================================================================

_PROVIDER_LABEL_PREFIX = {
    "CoreProvider": "",
    "BootstrapProvider": "bootstrap-",
    "ControlPlaneProvider": "control-plane-",
    "InfrastructureProvider": "infrastructure-",
    "IPAMProvider": "ipam-",
    "AddonProvider": "addon-",
    "RuntimeExtensionProvider": "runtime-extension-",
}


def provider_label(provider: ProviderConfig) -> str:
    """Return the repository folder name for a provider (``infrastructure-docker``)."""
    if provider.type not in _PROVIDER_LABEL_PREFIX:
        raise PreconditionError(f"Unknown provider type {provider.type!r} for {provider.name!r}")
    return f"{_PROVIDER_LABEL_PREFIX[provider.type]}{provider.name}"


def _is_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def _copy_into(source: Path, target: Path) -> None:
    if not source.is_file():
        raise PreconditionError(f"Provider file {source} does not exist")
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, target)


def create_local_repository(e2e_config: E2EConfig, config_dir: Path, repository_dir: Path) -> Path:
    """Materialize a local clusterctl repository and its config file.

    Each provider version is copied to ``<repository>/<label>/<version>/``;
    the generated config points every provider at its last listed version.

    Args:
        e2e_config: Parsed E2E configuration with the provider list.
        config_dir: Directory relative provider paths are resolved against.
        repository_dir: Target repository folder.

    Returns:
        Path of the generated clusterctl config file.

    Raises:
        PreconditionError: If a provider type or file is invalid.
    """
    repository_dir.mkdir(parents=True, exist_ok=True)
    providers: list[dict[str, str]] = []
    for provider in e2e_config.providers:
        label = provider_label(provider)
        url = ""
        for version in provider.versions:
            version_dir = repository_dir / label / version.name
            if _is_url(version.value):
                url = version.value
            else:
                source = (config_dir / version.value).resolve()
                target = version_dir / source.name
                _copy_into(source, target)
                url = str(target)
            for extra in version.files:
                source = (config_dir / extra.source_path).resolve()
                _copy_into(source, version_dir / (extra.target_name or source.name))
        if not url:
            raise PreconditionError(f"Provider {provider.name!r} has no versions")
        type_name = provider.type.removesuffix("Provider")
        providers.append({"name": provider.name, "url": url, "type": type_name})

    clusterctl_config = {"providers": providers, **e2e_config.variables}
    config_path = repository_dir / CLUSTERCTL_CONFIG_FILE
    config_path.write_text(yaml.safe_dump(clusterctl_config, sort_keys=False))
    return config_path


# ============================================================================
# Run configuration
# ============================================================================

@dataclass(frozen=True)
class RunConfiguration:
    """Resolved, immutable configuration shared by every stage.

    Attributes:
        config_path: Path to the E2E configuration file.
        artifacts_folder: Output folder for the run.
        helm_binary_path: Helm binary used for chart operations.
        chart_path: Locally built add-on chart archive.
        helm_extra_values_dir: Directory with extra Helm values files, or None.
        clusterctl_config_path: Generated clusterctl config in the local repository.
        e2e_config: Parsed E2E configuration.
    """

    config_path: Path
    artifacts_folder: Path
    helm_binary_path: Path
    chart_path: Path
    helm_extra_values_dir: Path | None
    clusterctl_config_path: Path
    e2e_config: E2EConfig

    def extra_values_file(self, name: str) -> Path | None:
        """Return an extra values file if the directory is set and the file exists."""
        if self.helm_extra_values_dir is None:
            return None
        path = self.helm_extra_values_dir / name
        return path if path.is_file() else None

    def write_artifact(self, name: str, content: str) -> Path:
        """Write a generated file (e.g. a values file) into the artifacts folder."""
        path = self.artifacts_folder / name
        path.write_text(content)
        return path


def _require_file(path: Path | None, flag: str) -> Path:
    if path is None or not path.is_file():
        raise PreconditionError(f"Invalid test suite argument. {flag} should be an existing file (got {path}).")
    return path


def resolve_run_configuration(flags: SuiteFlags) -> RunConfiguration:
    """Validate flags, load the E2E config, and build the local repository.

    Args:
        flags: Suite flags.

    Returns:
        The resolved run configuration.

    Raises:
        PreconditionError: If a required file is missing or the config is invalid.
    """
    config_path = _require_file(flags.config_path, "e2e.config")
    try:
        flags.artifacts_folder.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as err:
        raise PreconditionError(
            f"Invalid test suite argument. Can't create e2e.artifacts-folder {flags.artifacts_folder}"
        ) from err
    helm_binary_path = _require_file(flags.helm_binary_path, "helm-binary-path")
    chart_path = _require_file(flags.chart_path, "chart-path")
    if flags.helm_extra_values_dir is not None and not flags.helm_extra_values_dir.is_dir():
        logger.warning("helm-extra-values-dir %s does not exist; no extra values will be used",
                       flags.helm_extra_values_dir)

    console.print(f"[yellow]ℹ️  Loading the e2e test configuration from {config_path}[/yellow]")
    e2e_config = load_e2e_config(config_path)

    repository_dir = flags.artifacts_folder / REPOSITORY_DIR
    console.print(f"[yellow]ℹ️  Creating a clusterctl config into {repository_dir}[/yellow]")
    clusterctl_config_path = create_local_repository(e2e_config, config_path.parent, repository_dir)

    return RunConfiguration(
        config_path=config_path,
        artifacts_folder=flags.artifacts_folder,
        helm_binary_path=helm_binary_path,
        chart_path=chart_path,
        helm_extra_values_dir=flags.helm_extra_values_dir,
        clusterctl_config_path=clusterctl_config_path,
        e2e_config=e2e_config,
    )


# ============================================================================
# Display
# ============================================================================

def display_config(flags: SuiteFlags, mode: OperatingMode) -> None:
    """Print the flags and the derived operating mode.

    Args:
        flags: Suite flags.
        mode: Operating mode selected from the flags.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print("[yellow]Inputs:[/yellow]")
    console.print(f"  config_path       : {flags.config_path}")
    console.print(f"  artifacts_folder  : {flags.artifacts_folder}")
    console.print(f"  helm_binary_path  : {flags.helm_binary_path}")
    console.print(f"  chart_path        : {flags.chart_path}")
    if flags.helm_extra_values_dir is not None:
        console.print(f"  extra_values_dir  : {flags.helm_extra_values_dir}")

    console.print("[yellow]Mode:[/yellow]")
    console.print(f"  cluster           : {'existing' if mode.use_existing_cluster else 'new'}")
    console.print(f"  network           : {mode.network.value}")
    console.print(f"  ingress           : {mode.ingress_flavor.value}")
    console.print(f"  gitea service     : {mode.git_service_type.value}")
    if flags.skip_cleanup:
        console.print("  skip_cleanup      : true")
