from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import random
import re
import time
from typing import Awaitable, Callable

from .config import ImageJobConfig
from .errors import ImageJobError, ImageJobTimeoutError
from .normalize import split_on_marker
from .ports import ImageBackendPort
from .types import ImageArtifact, ImageJob, ImageJobSpec, ImageJobStatus, OperationMode

ASPECT_RATIO_RE = re.compile(r"aspectratio:\s*(\d+:\d+)", re.IGNORECASE)
SEED_RE = re.compile(r"seed:\s*(\d+)", re.IGNORECASE)
NEGATIVE_MARKER = "NEGATIVE:"

HeartbeatCallback = Callable[[], Awaitable[None] | None]


def _round_even(value: float) -> int:
    return int(math.floor(value / 2 + 0.5)) * 2


def calculate_dimensions(aspect_ratio: str, pixel_budget: int = 2_000_000) -> tuple[int, int]:
    """Solve width/height for *pixel_budget* at ``W:H``, both rounded to even."""
    w_text, _, h_text = aspect_ratio.partition(":")
    w, h = int(w_text), int(h_text)
    if w <= 0 or h <= 0:
        raise ValueError(f"invalid aspect ratio {aspect_ratio!r}")
    ratio = w / h
    height = math.sqrt(pixel_budget / ratio)
    width = height * ratio
    return _round_even(width), _round_even(height)


def parse_image_request(
    description: str,
    config: ImageJobConfig | None = None,
    rng: random.Random | None = None,
) -> ImageJobSpec:
    """Turn a free-text description carrying optional tokens into a job spec.

    ``aspectratio:W:H`` and ``seed:N`` are stripped from the prompt; text
    after ``NEGATIVE:`` becomes the negative prompt.
    """
    cfg = config or ImageJobConfig()
    rng = rng or random
    text = description or ""

    ratio_match = ASPECT_RATIO_RE.search(text)
    seed_match = SEED_RE.search(text)
    aspect_ratio = ratio_match.group(1) if ratio_match else cfg.default_aspect_ratio
    seed = int(seed_match.group(1)) if seed_match else rng.randrange(cfg.max_seed)

    remaining = SEED_RE.sub("", ASPECT_RATIO_RE.sub("", text, count=1), count=1).strip()
    prompt, negative = split_on_marker(remaining, NEGATIVE_MARKER)

    try:
        width, height = calculate_dimensions(aspect_ratio, cfg.pixel_budget)
    except ValueError:
        aspect_ratio = cfg.default_aspect_ratio
        width, height = calculate_dimensions(aspect_ratio, cfg.pixel_budget)

    return ImageJobSpec(
        prompt=prompt.strip(),
        negative_prompt=(negative or "").strip(),
        width=width,
        height=height,
        seed=seed,
        aspect_ratio=aspect_ratio,
    )


def build_image_description_prompt(situation: str, dm_response: str, mode: OperationMode) -> str:
    prompt = (
        "Generate a prompt describing an image based on the following situation summary and DM response:\n"
        f"Situation Summary: {situation}\n"
        f"DM Response: {dm_response}\n\n"
        "The prompt should be written like comma separated set of phrases, use descriptors and styles "
        "but don't use flowery language.\n"
        "You can use parentheses followed by a number ex:(phrase)1.2 where the thing is something you "
        "want to emphasize and the number is between 1.1 and 2.0 level of emphasis.\n"
        "You can add ++ which squares the importance or +++ to cube it.\n"
    )
    if mode is OperationMode.COMBAT:
        prompt += "The image should use a battle map style if it makes sense for the current situation."
    else:
        prompt += "The image should be clear and detailed, highlighting an aspect of the current situation."
    return prompt


class ImageJobPipeline:
    """Submit, poll and fetch one image job against an asynchronous backend.

    Status moves submitted -> pending -> ready, or ends in failed/timed_out.
    Polling is bounded by ``timeout_seconds``. A heartbeat callback fires every
    ``heartbeat_interval_seconds`` while polling and is always cancelled once
    polling resolves.
    """

    def __init__(
        self,
        backend: ImageBackendPort,
        *,
        config: ImageJobConfig | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
        rng: random.Random | None = None,
    ):
        self._backend = backend
        self._config = config or ImageJobConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._rng = rng

    @property
    def config(self) -> ImageJobConfig:
        return self._config

    async def generate(self, description: str, *, heartbeat: HeartbeatCallback | None = None) -> ImageArtifact:
        spec = parse_image_request(description, self._config, self._rng)
        self._logger.info(
            "Generating image seed=%s aspect_ratio=%s size=%sx%s",
            spec.seed,
            spec.aspect_ratio,
            spec.width,
            spec.height,
        )
        return await self.run(spec, heartbeat=heartbeat)

    async def run(self, spec: ImageJobSpec, *, heartbeat: HeartbeatCallback | None = None) -> ImageArtifact:
        job = ImageJob(spec=spec)
        job.job_id = await self._submit(job)

        heartbeat_task = None
        if heartbeat is not None:
            heartbeat_task = asyncio.create_task(self._heartbeat_loop(heartbeat))
        try:
            artifact_ref = await self._poll(job)
        finally:
            if heartbeat_task is not None:
                heartbeat_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await heartbeat_task

        try:
            data = await self._backend.fetch(artifact_ref)
        except Exception as exc:
            job.status = ImageJobStatus.FAILED
            job.error = str(exc)
            raise ImageJobError(f"artifact fetch failed: {exc}", job_id=job.job_id) from exc

        job.status = ImageJobStatus.READY
        self._logger.info("Image job %s ready after %s polls", job.job_id, job.polls)
        return ImageArtifact(data=data, filename=self._config.filename, job=job)

    async def _submit(self, job: ImageJob) -> str:
        attempts = 1 + max(0, self._config.submit_retries)
        for attempt in range(1, attempts + 1):
            try:
                job_id = await self._backend.submit(job.spec)
            except Exception as exc:
                if attempt < attempts:
                    self._logger.warning("Image submit failed (attempt %s/%s): %s", attempt, attempts, exc)
                    continue
                job.status = ImageJobStatus.FAILED
                job.error = str(exc)
                raise ImageJobError(f"image submit failed: {exc}") from exc
            job.status = ImageJobStatus.SUBMITTED
            return job_id
        raise ImageJobError("image submit failed")

    async def _poll(self, job: ImageJob) -> str:
        cfg = self._config
        deadline = self._clock() + cfg.timeout_seconds
        job.status = ImageJobStatus.PENDING
        while True:
            try:
                report = await self._backend.status(job.job_id)
            except Exception as exc:
                job.status = ImageJobStatus.FAILED
                job.error = str(exc)
                raise ImageJobError(f"status check failed: {exc}", job_id=job.job_id) from exc
            job.polls += 1

            if report.failed:
                job.status = ImageJobStatus.FAILED
                job.error = report.detail or "backend reported failure"
                raise ImageJobError(job.error, job_id=job.job_id)
            if report.ready and report.artifact_ref:
                return report.artifact_ref

            remaining = deadline - self._clock()
            if remaining <= 0:
                job.status = ImageJobStatus.TIMED_OUT
                raise ImageJobTimeoutError(
                    f"image job timed out after {cfg.timeout_seconds}s",
                    job_id=job.job_id,
                )
            await self._sleep(min(cfg.poll_interval_seconds, remaining))

    async def _heartbeat_loop(self, callback: HeartbeatCallback) -> None:
        interval = self._config.heartbeat_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                maybe = callback()
                if asyncio.iscoroutine(maybe):
                    await maybe
            except Exception as exc:
                self._logger.debug("Image heartbeat failed: %s", exc)
