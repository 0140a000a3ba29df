from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from ..core.errors import ImageBackendError
from ..core.types import BackendJobStatus, ImageJobSpec


@dataclass(frozen=True)
class ComfyUIConfig:
    base_url: str = "http://127.0.0.1:8188"
    workflow_path: str = "./comfyui/workflow.json"
    prompt_node: str = "6"
    negative_node: str | None = None
    seed_node: str = "25"
    seed_field: str = "noise_seed"
    size_nodes: tuple[str, ...] = ("27", "30")
    output_node: str = "9"
    request_timeout: float = 30.0


class ComfyUIBackend:
    """Image backend speaking the ComfyUI HTTP API.

    Jobs are queued through ``/prompt``, polled through ``/history/<id>`` and
    fetched through ``/view``. Blocking HTTP runs in a worker thread.
    """

    def __init__(
        self,
        config: ComfyUIConfig | None = None,
        *,
        workflow: dict[str, Any] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._config = config or ComfyUIConfig()
        self._workflow = workflow
        self._logger = logger or logging.getLogger(__name__)

    def _load_workflow(self) -> dict[str, Any]:
        if self._workflow is None:
            try:
                with open(self._config.workflow_path, "r", encoding="utf-8") as handle:
                    self._workflow = json.load(handle)
            except (OSError, ValueError) as exc:
                raise ImageBackendError(f"cannot load workflow {self._config.workflow_path}: {exc}") from exc
        return copy.deepcopy(self._workflow)

    def build_workflow(self, spec: ImageJobSpec) -> dict[str, Any]:
        cfg = self._config
        workflow = self._load_workflow()
        try:
            workflow[cfg.prompt_node]["inputs"]["text"] = spec.prompt
            if cfg.negative_node is not None:
                workflow[cfg.negative_node]["inputs"]["text"] = spec.negative_prompt
            workflow[cfg.seed_node]["inputs"][cfg.seed_field] = spec.seed
            for node_id in cfg.size_nodes:
                workflow[node_id]["inputs"]["width"] = spec.width
                workflow[node_id]["inputs"]["height"] = spec.height
        except (KeyError, TypeError) as exc:
            raise ImageBackendError(f"workflow is missing node {exc}") from exc
        return workflow

    def _request(self, path: str, payload: dict[str, Any] | None = None) -> bytes:
        url = f"{self._config.base_url.rstrip('/')}{path}"
        if payload is None:
            request = urllib_request.Request(url, method="GET")
        else:
            request = urllib_request.Request(
                url,
                data=json.dumps(payload).encode("utf-8"),
                headers={"Content-Type": "application/json"},
                method="POST",
            )
        try:
            with urllib_request.urlopen(request, timeout=self._config.request_timeout) as response:  # noqa: S310
                return response.read()
        except (urllib_error.URLError, OSError) as exc:
            raise ImageBackendError(f"{path}: {exc}") from exc

    def _request_json(self, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        raw = self._request(path, payload)
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ImageBackendError(f"{path}: invalid JSON response") from exc
        if not isinstance(data, dict):
            raise ImageBackendError(f"{path}: unexpected response shape")
        return data

    async def submit(self, spec: ImageJobSpec) -> str:
        workflow = self.build_workflow(spec)
        data = await asyncio.to_thread(self._request_json, "/prompt", {"prompt": workflow})
        prompt_id = data.get("prompt_id")
        if not prompt_id:
            raise ImageBackendError(f"/prompt returned no prompt_id: {data}")
        self._logger.info("ComfyUI queued prompt %s", prompt_id)
        return str(prompt_id)

    async def status(self, job_id: str) -> BackendJobStatus:
        quoted = urllib_parse.quote(job_id, safe="")
        data = await asyncio.to_thread(self._request_json, f"/history/{quoted}")
        entry = data.get(job_id)
        if not isinstance(entry, dict):
            return BackendJobStatus(ready=False)

        status = entry.get("status") or {}
        if isinstance(status, dict) and status.get("status_str") == "error":
            return BackendJobStatus(ready=False, failed=True, detail="ComfyUI reported an execution error")

        output = (entry.get("outputs") or {}).get(self._config.output_node)
        images = output.get("images") if isinstance(output, dict) else None
        if not images:
            return BackendJobStatus(ready=False)
        image = images[0]
        ref = urllib_parse.urlencode(
            {
                "filename": image.get("filename", ""),
                "subfolder": image.get("subfolder", ""),
                "type": image.get("type", "output"),
            }
        )
        return BackendJobStatus(ready=True, artifact_ref=ref)

    async def fetch(self, artifact_ref: str) -> bytes:
        return await asyncio.to_thread(self._request, f"/view?{artifact_ref}")
