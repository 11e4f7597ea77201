"""
Remote-workspace Terraform client.

Talks to the Terraform Cloud / Enterprise v2 API for stacks whose
configuration declares a ``remote`` backend. A plan uploads the stack's
working directory as a configuration version and queues a run; apply and
destroy act on that run, so the plan's ``plan_file`` is the run id.
"""

from __future__ import annotations

import asyncio
import io
import json
import tarfile
from pathlib import Path
from typing import Any

import httpx
import structlog
from circuitbreaker import CircuitBreakerError

from stackdeploy.clients.base import BaseHTTPClient, PermanentHTTPError, RetryableHTTPError
from stackdeploy.config.settings import Settings, get_settings
from stackdeploy.core.errors import ExternalToolError, UsageError
from stackdeploy.stacks.models import SynthesizedStack
from stackdeploy.terraform.base import ChunkCallback, TerraformPlan

logger = structlog.get_logger()

PLAN_SETTLED = frozenset(
    {
        "planned",
        "planned_and_finished",
        "cost_estimated",
        "policy_checked",
        "policy_override",
        "policy_soft_failed",
    }
)
APPLY_SETTLED = frozenset({"applied"})
RUN_FAILED = frozenset({"errored", "discarded", "canceled", "force_canceled"})


def resolve_token(hostname: str, settings: Settings) -> str | None:
    """Token from settings, otherwise from the terraform credentials file."""
    if settings.terraform_cloud_token:
        return settings.terraform_cloud_token

    path = Path(settings.credentials_file).expanduser()
    if not path.exists():
        return None
    try:
        credentials = json.loads(path.read_text()).get("credentials") or {}
    except json.JSONDecodeError:
        logger.warning("credentials_file_invalid", path=str(path))
        return None
    return (credentials.get(hostname) or {}).get("token")


class TerraformCloudApi(BaseHTTPClient):
    """Thin JSON:API client for Terraform Cloud."""

    def __init__(self, hostname: str, token: str, *, timeout: float = 30.0, max_retries: int = 3) -> None:
        super().__init__(f"https://{hostname}/api/v2", timeout=timeout, max_retries=max_retries)
        self._token = token

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/vnd.api+json",
            "Authorization": f"Bearer {self._token}",
        }

    async def get_workspace(self, organization: str, name: str) -> dict[str, Any]:
        return (await self.get(f"/organizations/{organization}/workspaces/{name}"))["data"]

    async def create_configuration_version(self, workspace_id: str, speculative: bool) -> dict[str, Any]:
        payload = {
            "data": {
                "type": "configuration-versions",
                "attributes": {"auto-queue-runs": False, "speculative": speculative},
            }
        }
        return (await self.post(f"/workspaces/{workspace_id}/configuration-versions", json=payload))["data"]

    async def get_configuration_version(self, configuration_version_id: str) -> dict[str, Any]:
        return (await self.get(f"/configuration-versions/{configuration_version_id}"))["data"]

    async def upload(self, upload_url: str, archive: bytes) -> None:
        await self.put_bytes(upload_url, archive, headers={"Content-Type": "application/octet-stream"})

    async def create_run(
        self,
        workspace_id: str,
        configuration_version_id: str | None,
        *,
        is_destroy: bool,
        message: str,
        auto_apply: bool = False,
    ) -> dict[str, Any]:
        relationships: dict[str, Any] = {
            "workspace": {"data": {"type": "workspaces", "id": workspace_id}},
        }
        if configuration_version_id:
            relationships["configuration-version"] = {
                "data": {"type": "configuration-versions", "id": configuration_version_id}
            }
        payload = {
            "data": {
                "type": "runs",
                "attributes": {"is-destroy": is_destroy, "message": message, "auto-apply": auto_apply},
                "relationships": relationships,
            }
        }
        return (await self.post("/runs", json=payload))["data"]

    async def get_run(self, run_id: str) -> dict[str, Any]:
        return (await self.get(f"/runs/{run_id}"))["data"]

    async def apply_run(self, run_id: str, comment: str) -> None:
        await self.post(f"/runs/{run_id}/actions/apply", json={"comment": comment})

    async def get_plan(self, plan_id: str) -> dict[str, Any]:
        return (await self.get(f"/plans/{plan_id}"))["data"]

    async def get_plan_json(self, plan_id: str) -> dict[str, Any]:
        return await self.get(f"/plans/{plan_id}/json-output")

    async def get_apply(self, apply_id: str) -> dict[str, Any]:
        return (await self.get(f"/applies/{apply_id}"))["data"]

    async def get_state_outputs(self, workspace_id: str) -> list[dict[str, Any]]:
        return (await self.get(f"/workspaces/{workspace_id}/current-state-version-outputs")).get("data", [])


class TerraformCloud:
    """Runs plans and applies in a Terraform Cloud workspace for one stack."""

    def __init__(
        self,
        stack: SynthesizedStack,
        backend: dict[str, Any],
        is_speculative: bool,
        settings: Settings | None = None,
        api: TerraformCloudApi | None = None,
    ) -> None:
        self.stack = stack
        self.is_speculative = is_speculative
        self._settings = settings or get_settings()
        self.hostname = backend.get("hostname") or self._settings.terraform_cloud_hostname
        self.organization = backend.get("organization")
        self.workspace_name = (backend.get("workspaces") or {}).get("name")
        self._workspace_id: str | None = None

        if api is None:
            token = resolve_token(self.hostname, self._settings)
            if token:
                api = TerraformCloudApi(
                    self.hostname,
                    token,
                    timeout=self._settings.http_timeout,
                    max_retries=self._settings.http_max_retries,
                )
        self._api = api

    async def is_remote_workspace(self) -> bool:
        """Probe whether the declared workspace exists and executes remotely."""
        log = logger.bind(stack_name=self.stack.name, hostname=self.hostname, workspace=self.workspace_name)
        if self._api is None:
            log.info("remote_probe_skipped", reason="no_token")
            return False
        if not self.organization or not self.workspace_name:
            log.info("remote_probe_skipped", reason="no_workspace_name")
            return False

        try:
            workspace = await self._api.get_workspace(self.organization, self.workspace_name)
        except (PermanentHTTPError, RetryableHTTPError, CircuitBreakerError, httpx.HTTPError) as exc:
            log.warning("remote_probe_failed", error_type=type(exc).__name__, error=str(exc))
            return False

        execution_mode = (workspace.get("attributes") or {}).get("execution-mode")
        log.info("remote_probe_finished", execution_mode=execution_mode)
        if execution_mode != "remote":
            return False
        self._workspace_id = workspace["id"]
        return True

    async def init(self) -> None:
        await self._ensure_workspace()

    async def plan(self, destroy: bool = False) -> TerraformPlan:
        api = self._require_api()
        workspace_id = await self._ensure_workspace()

        version = await api.create_configuration_version(workspace_id, self.is_speculative)
        archive = await asyncio.to_thread(_archive_directory, Path(self.stack.working_directory))
        await api.upload(version["attributes"]["upload-url"], archive)
        await self._wait_for_upload(version["id"])

        run = await api.create_run(
            workspace_id,
            version["id"],
            is_destroy=destroy,
            message=f"Queued by stackdeploy for stack {self.stack.name}",
        )
        run = await self._poll_run(run["id"], PLAN_SETTLED)
        plan_id = run["relationships"]["plan"]["data"]["id"]

        if run["attributes"]["status"] in RUN_FAILED:
            plan = await api.get_plan(plan_id)
            diagnostic = await self._read_log(plan)
            raise ExternalToolError(
                f"Remote plan for {self.stack.name} ended with status {run['attributes']['status']}",
                diagnostic=diagnostic,
                details={"run_id": run["id"]},
            )

        try:
            plan_json = await api.get_plan_json(plan_id)
        except PermanentHTTPError as exc:
            logger.warning("plan_json_unavailable", run_id=run["id"], error=str(exc))
            plan_json = {}

        return TerraformPlan.from_plan_json(run["id"], destroy, plan_json)

    async def apply(self, plan: TerraformPlan, on_chunk: ChunkCallback) -> None:
        await self._apply_run(plan.plan_file, on_chunk)

    async def destroy(self, on_chunk: ChunkCallback, plan: TerraformPlan | None = None) -> None:
        if plan is not None and plan.is_destroy:
            await self._apply_run(plan.plan_file, on_chunk)
            return

        api = self._require_api()
        workspace_id = await self._ensure_workspace()
        run = await api.create_run(
            workspace_id,
            None,
            is_destroy=True,
            message=f"Destroy queued by stackdeploy for stack {self.stack.name}",
            auto_apply=True,
        )
        await self._follow_apply(run["id"], on_chunk)

    async def output(self) -> dict[str, Any]:
        api = self._require_api()
        workspace_id = await self._ensure_workspace()
        outputs = await api.get_state_outputs(workspace_id)
        return {
            item["attributes"]["name"]: item["attributes"].get("value")
            for item in outputs
            if item.get("attributes")
        }

    async def _apply_run(self, run_id: str, on_chunk: ChunkCallback) -> None:
        api = self._require_api()
        run = await api.get_run(run_id)
        if run["attributes"]["status"] == "planned_and_finished":
            logger.info("remote_apply_skipped", run_id=run_id, reason="nothing_to_apply")
            return
        await api.apply_run(run_id, comment=f"Applied by stackdeploy for stack {self.stack.name}")
        await self._follow_apply(run_id, on_chunk)

    async def _follow_apply(self, run_id: str, on_chunk: ChunkCallback) -> None:
        api = self._require_api()
        streamed = 0

        async def stream_log(run: dict[str, Any]) -> None:
            nonlocal streamed
            apply_ref = ((run.get("relationships") or {}).get("apply") or {}).get("data")
            if not apply_ref:
                return
            log_text = await self._read_log(await api.get_apply(apply_ref["id"]))
            if len(log_text) > streamed:
                on_chunk(log_text[streamed:])
                streamed = len(log_text)

        run = await self._poll_run(run_id, APPLY_SETTLED, on_poll=stream_log)
        if run["attributes"]["status"] in RUN_FAILED:
            raise ExternalToolError(
                f"Remote apply for {self.stack.name} ended with status {run['attributes']['status']}",
                details={"run_id": run_id},
            )

    async def _poll_run(self, run_id: str, settled: frozenset[str], on_poll=None) -> dict[str, Any]:
        api = self._require_api()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.remote_poll_timeout
        while True:
            run = await api.get_run(run_id)
            if on_poll is not None:
                await on_poll(run)
            status = run["attributes"]["status"]
            if status in settled or status in RUN_FAILED:
                logger.info("remote_run_settled", run_id=run_id, status=status)
                return run
            if loop.time() >= deadline:
                raise ExternalToolError(
                    f"Timed out waiting for run {run_id} (last status: {status})",
                    details={"run_id": run_id},
                )
            await asyncio.sleep(self._settings.remote_poll_interval)

    async def _wait_for_upload(self, configuration_version_id: str) -> None:
        api = self._require_api()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.remote_poll_timeout
        while True:
            version = await api.get_configuration_version(configuration_version_id)
            status = version["attributes"]["status"]
            if status == "uploaded":
                return
            if status == "errored" or loop.time() >= deadline:
                raise ExternalToolError(
                    f"Configuration upload did not finish (status: {status})",
                    diagnostic=version["attributes"].get("error-message") or "",
                )
            await asyncio.sleep(self._settings.remote_poll_interval)

    async def _read_log(self, resource: dict[str, Any]) -> str:
        url = (resource.get("attributes") or {}).get("log-read-url")
        if not url:
            return ""
        return await self._require_api().get_text(url)

    async def _ensure_workspace(self) -> str:
        if self._workspace_id is not None:
            return self._workspace_id
        if not await self.is_remote_workspace():
            raise UsageError(
                f"Workspace {self.workspace_name} in organization {self.organization} "
                "is not a usable remote workspace"
            )
        assert self._workspace_id is not None
        return self._workspace_id

    def _require_api(self) -> TerraformCloudApi:
        if self._api is None:
            raise UsageError(f"No Terraform Cloud token available for {self.hostname}")
        return self._api


def _archive_directory(directory: Path) -> bytes:
    """Gzipped tarball of a stack working directory, without local state."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for path in sorted(directory.rglob("*")):
            relative = path.relative_to(directory)
            if relative.parts and relative.parts[0] == ".terraform":
                continue
            archive.add(path, arcname=str(relative), recursive=False)
    return buffer.getvalue()
