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

"""kubectl client and deployment/service readiness checks."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import sh
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from turtles_e2e import logger
from turtles_e2e.config import WaitInterval
from turtles_e2e.constants import LABEL_CONTROL_PLANE
from turtles_e2e.errors import ProvisioningError, ReadinessTimeoutError
from turtles_e2e.runtime import RunContext


@dataclass(frozen=True)
class DeploymentRef:
    """Namespaced reference to a Deployment."""

    name: str
    namespace: str

    def __str__(self) -> str:
        return f"deployment {self.namespace}/{self.name}"


@dataclass(frozen=True)
class ServiceRef:
    """Namespaced reference to a Service."""

    name: str
    namespace: str

    def __str__(self) -> str:
        return f"service {self.namespace}/{self.name}"


# ============================================================================
# Client
# ============================================================================

class KubeClient(Protocol):
    """The slice of cluster access the stages need."""

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None: ...

    def apply(self, manifest: str, namespace: str | None = None) -> None: ...

    def patch(self, kind: str, name: str, patch: str, namespace: str | None = None) -> None: ...

    def create_secret(self, name: str, namespace: str, literals: dict[str, str]) -> None: ...

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None: ...

    def copy_to_pod(self, namespace: str, selector: str, source: Path, target_dir: str) -> None: ...

    def control_plane_ip(self) -> str: ...

    def dump_cluster_info(self, output_dir: Path) -> None: ...


def _stderr(err: sh.ErrorReturnCode) -> str:
    return err.stderr.decode(errors="replace").strip()


class Kubectl:
    """KubeClient backed by the kubectl binary.

    Args:
        kubeconfig: Kubeconfig file of the target cluster.
        context: Kubeconfig context to use, or None for the current one.
        command: kubectl command to bake, defaults to ``kubectl`` on PATH.
    """

    def __init__(self, kubeconfig: Path, context: str | None = None, command: Any = None) -> None:
        self.kubeconfig = kubeconfig
        args = ["--kubeconfig", str(kubeconfig)]
        if context:
            args += ["--context", context]
        base = command if command is not None else sh.Command("kubectl")
        self._kubectl = base.bake(*args)

    def _run(self, *args: str, **kwargs: Any) -> str:
        try:
            return str(self._kubectl(*args, **kwargs))
        except sh.ErrorReturnCode as err:
            raise ProvisioningError(f"kubectl {' '.join(args)} failed: {_stderr(err)}") from err

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        """Return the object as a dict, or None if it does not exist."""
        args = ["get", kind, name, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        try:
            return json.loads(str(self._kubectl(*args)))
        except sh.ErrorReturnCode as err:
            if "NotFound" in _stderr(err):
                return None
            raise ProvisioningError(f"kubectl get {kind} {name} failed: {_stderr(err)}") from err

    def apply(self, manifest: str, namespace: str | None = None) -> None:
        args = ["apply", "-f", "-"]
        if namespace:
            args += ["-n", namespace]
        self._run(*args, _in=manifest)

    def patch(self, kind: str, name: str, patch: str, namespace: str | None = None) -> None:
        args = ["patch", kind, name, "--type", "merge", "-p", patch]
        if namespace:
            args += ["-n", namespace]
        self._run(*args)

    def create_secret(self, name: str, namespace: str, literals: dict[str, str]) -> None:
        """Create or update a generic secret from literal values."""
        literal_args = [f"--from-literal={key}={value}" for key, value in literals.items()]
        manifest = self._run(
            "create", "secret", "generic", name, "-n", namespace,
            *literal_args, "--dry-run=client", "-o", "yaml",
        )
        self.apply(manifest, namespace)

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None:
        """Delete an object; an object that does not exist is a no-op."""
        args = ["delete", kind, name, "--ignore-not-found"]
        if namespace:
            args += ["-n", namespace]
        self._run(*args)

    def copy_to_pod(self, namespace: str, selector: str, source: Path, target_dir: str) -> None:
        """Copy a local file into the first pod matching *selector*."""
        pod = self._run(
            "get", "pods", "-n", namespace, "-l", selector,
            "-o", "jsonpath={.items[0].metadata.name}",
        ).strip()
        if not pod:
            raise ProvisioningError(f"No pod matching {selector} in namespace {namespace}")
        self._run("cp", str(source), f"{namespace}/{pod}:{target_dir}/{source.name}")

    def control_plane_ip(self) -> str:
        """Return the InternalIP of the first control-plane node."""
        ip = self._run(
            "get", "nodes", "-l", LABEL_CONTROL_PLANE,
            "-o", "jsonpath={.items[0].status.addresses[?(@.type==\"InternalIP\")].address}",
        ).strip()
        if not ip:
            raise ProvisioningError("Could not determine the control-plane node InternalIP")
        return ip

    def dump_cluster_info(self, output_dir: Path) -> None:
        output_dir.mkdir(parents=True, exist_ok=True)
        self._run("cluster-info", "dump", "--all-namespaces", "--output-directory", str(output_dir))


# ============================================================================
# Readiness predicates
# ============================================================================

def deployment_available(obj: dict[str, Any] | None) -> bool:
    """Whether a Deployment reports the ``Available`` condition."""
    if not obj:
        return False
    conditions = obj.get("status", {}).get("conditions", [])
    return any(c.get("type") == "Available" and c.get("status") == "True" for c in conditions)


def rollout_complete(obj: dict[str, Any] | None) -> bool:
    """Whether a Deployment's latest generation is fully rolled out."""
    if not obj:
        return False
    status = obj.get("status", {})
    generation = obj.get("metadata", {}).get("generation", 0)
    replicas = obj.get("spec", {}).get("replicas", 1)
    return (
        status.get("observedGeneration", 0) >= generation
        and status.get("updatedReplicas", 0) == replicas
        and status.get("availableReplicas", 0) == replicas
    )


def service_exposed(service: dict[str, Any] | None) -> bool:
    """Whether a Service has the address its type promises."""
    if not service:
        return False
    spec = service.get("spec", {})
    service_type = spec.get("type", "ClusterIP")
    if service_type == "LoadBalancer":
        return bool(service.get("status", {}).get("loadBalancer", {}).get("ingress"))
    if service_type == "NodePort":
        ports = spec.get("ports", [])
        return bool(ports) and all(p.get("nodePort") for p in ports)
    return bool(spec.get("clusterIP")) and spec.get("clusterIP") != "None"


def endpoints_ready(endpoints: dict[str, Any] | None) -> bool:
    """Whether an Endpoints object has at least one ready address."""
    if not endpoints:
        return False
    return any(subset.get("addresses") for subset in endpoints.get("subsets", []) or [])


# ============================================================================
# Readiness checker
# ============================================================================

class ReadinessChecker(Protocol):
    """Blocking readiness waits bounded by a wait interval."""

    def wait_for_deployments_available(
        self, client: KubeClient, deployment: DeploymentRef, interval: WaitInterval
    ) -> None: ...

    def wait_for_rollout(self, client: KubeClient, deployment: DeploymentRef, interval: WaitInterval) -> None: ...

    def wait_for_service(self, client: KubeClient, service: ServiceRef, interval: WaitInterval) -> dict[str, Any]: ...


class KubectlReadinessChecker:
    """Poll the cluster until a resource is ready or its interval elapses.

    Args:
        ctx: Run context; a cancellation interrupts the current wait.
    """

    def __init__(self, ctx: RunContext) -> None:
        self._ctx = ctx

    def _wait(self, what: str, interval: WaitInterval, probe: Callable[[], bool]) -> None:
        def _attempt() -> bool:
            self._ctx.check(what)
            try:
                return probe()
            except ProvisioningError as err:
                logger.debug("Readiness probe for %s failed: %s", what, err)
                return False

        retrying = Retrying(
            stop=stop_after_delay(interval.timeout),
            wait=wait_fixed(interval.poll),
            retry=retry_if_result(lambda ready: not ready),
            sleep=self._ctx.sleep,
        )
        try:
            retrying(_attempt)
        except RetryError as err:
            self._ctx.check(what)
            raise ReadinessTimeoutError(what, interval.timeout) from err

    def wait_for_deployments_available(
        self, client: KubeClient, deployment: DeploymentRef, interval: WaitInterval
    ) -> None:
        self._wait(
            f"{deployment} to be available", interval,
            lambda: deployment_available(client.get("deployment", deployment.name, deployment.namespace)),
        )

    def wait_for_rollout(self, client: KubeClient, deployment: DeploymentRef, interval: WaitInterval) -> None:
        self._wait(
            f"{deployment} rollout", interval,
            lambda: rollout_complete(client.get("deployment", deployment.name, deployment.namespace)),
        )

    def wait_for_service(self, client: KubeClient, service: ServiceRef, interval: WaitInterval) -> dict[str, Any]:
        """Wait for a service to be exposed with ready endpoints and return it."""
        latest: dict[str, Any] = {}

        def _probe() -> bool:
            obj = client.get("service", service.name, service.namespace)
            if not service_exposed(obj):
                return False
            if not endpoints_ready(client.get("endpoints", service.name, service.namespace)):
                return False
            latest.update(obj)
            return True

        self._wait(f"{service} to be reachable", interval, _probe)
        return latest
