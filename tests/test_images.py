from __future__ import annotations

import asyncio
import random

import pytest

from chat_agent_engine.core.config import ImageJobConfig
from chat_agent_engine.core.errors import ImageBackendError, ImageJobError, ImageJobTimeoutError
from chat_agent_engine.core.images import ImageJobPipeline, calculate_dimensions, parse_image_request
from chat_agent_engine.core.types import BackendJobStatus, ImageJobStatus


class StubImageBackend:
    def __init__(self, ready_after: int = 1, submit_failures: int = 0, fail_status: bool = False):
        self.ready_after = ready_after
        self.submit_failures = submit_failures
        self.fail_status = fail_status
        self.submitted = []
        self.status_calls = 0

    async def submit(self, spec):
        if self.submit_failures > 0:
            self.submit_failures -= 1
            raise ImageBackendError("queue unavailable")
        self.submitted.append(spec)
        return "job-1"

    async def status(self, job_id):
        self.status_calls += 1
        if self.fail_status:
            return BackendJobStatus(ready=False, failed=True, detail="node error")
        if self.status_calls >= self.ready_after:
            return BackendJobStatus(ready=True, artifact_ref="ref-1")
        return BackendJobStatus(ready=False)

    async def fetch(self, artifact_ref):
        return b"PNG" + artifact_ref.encode()


async def _no_sleep(_seconds):
    return None


def test_dimensions_for_wide_ratio_are_even_and_on_budget():
    width, height = calculate_dimensions("16:9", 2_000_000)
    assert width % 2 == 0 and height % 2 == 0
    assert abs(width / height - 16 / 9) < 0.01
    assert abs(width * height - 2_000_000) < 10_000


def test_square_default_dimensions():
    assert calculate_dimensions("1:1", 2_000_000) == (1414, 1414)


def test_parse_extracts_tokens_and_negative_prompt():
    spec = parse_image_request("a misty forest aspectratio:16:9 seed: 42 NEGATIVE: blurry, text")
    assert spec.aspect_ratio == "16:9"
    assert spec.seed == 42
    assert spec.prompt == "a misty forest"
    assert spec.negative_prompt == "blurry, text"
    assert spec.width > spec.height


def test_parse_defaults_ratio_and_random_seed():
    config = ImageJobConfig()
    spec = parse_image_request("castle at dusk", config, random.Random(7))
    assert spec.aspect_ratio == "1:1"
    assert 0 <= spec.seed < config.max_seed
    assert spec.negative_prompt == ""
    assert spec.prompt == "castle at dusk"


def test_parse_zero_ratio_falls_back_to_default():
    spec = parse_image_request("void aspectratio:0:9")
    assert spec.aspect_ratio == "1:1"


def test_pipeline_polls_until_ready():
    async def run_test():
        backend = StubImageBackend(ready_after=3)
        pipeline = ImageJobPipeline(backend, sleep=_no_sleep)
        artifact = await pipeline.generate("dragon over a lake seed:5")
        assert artifact.data == b"PNGref-1"
        assert artifact.filename == "generated_image.png"
        assert artifact.job.status is ImageJobStatus.READY
        assert artifact.job.polls == 3
        assert backend.submitted[0].seed == 5

    asyncio.run(run_test())


def test_submit_is_retried_once():
    async def run_test():
        backend = StubImageBackend(submit_failures=1)
        artifact = await ImageJobPipeline(backend, sleep=_no_sleep).generate("tower")
        assert artifact.job.status is ImageJobStatus.READY

    asyncio.run(run_test())


def test_submit_gives_up_after_one_retry():
    async def run_test():
        backend = StubImageBackend(submit_failures=2)
        with pytest.raises(ImageJobError):
            await ImageJobPipeline(backend, sleep=_no_sleep).generate("tower")
        assert backend.submitted == []

    asyncio.run(run_test())


def test_backend_failure_status_fails_the_job():
    async def run_test():
        backend = StubImageBackend(fail_status=True)
        with pytest.raises(ImageJobError) as excinfo:
            await ImageJobPipeline(backend, sleep=_no_sleep).generate("tower")
        assert not isinstance(excinfo.value, ImageJobTimeoutError)
        assert excinfo.value.job_id == "job-1"

    asyncio.run(run_test())


def test_polling_stops_at_the_deadline():
    async def run_test():
        now = {"t": 0.0}

        def clock():
            return now["t"]

        async def fake_sleep(seconds):
            now["t"] += seconds

        backend = StubImageBackend(ready_after=10_000)
        config = ImageJobConfig(poll_interval_seconds=1.0, timeout_seconds=5.0)
        pipeline = ImageJobPipeline(backend, config=config, sleep=fake_sleep, clock=clock)
        with pytest.raises(ImageJobTimeoutError):
            await pipeline.generate("endless")
        assert backend.status_calls <= 7
        assert now["t"] == pytest.approx(5.0)

    asyncio.run(run_test())


def test_heartbeat_fires_while_polling_and_stops_after():
    async def run_test():
        beats = []

        async def heartbeat():
            beats.append(1)

        backend = StubImageBackend(ready_after=6)
        config = ImageJobConfig(poll_interval_seconds=0.02, heartbeat_interval_seconds=0.01)
        pipeline = ImageJobPipeline(backend, config=config)
        await pipeline.generate("slow render", heartbeat=heartbeat)
        assert beats
        seen = len(beats)
        await asyncio.sleep(0.05)
        assert len(beats) == seen

    asyncio.run(run_test())


def test_heartbeat_is_cancelled_on_failure():
    async def run_test():
        beats = []
        backend = StubImageBackend(fail_status=True)
        config = ImageJobConfig(heartbeat_interval_seconds=0.001)
        pipeline = ImageJobPipeline(backend, config=config, sleep=_no_sleep)
        with pytest.raises(ImageJobError):
            await pipeline.generate("x", heartbeat=lambda: beats.append(1))
        await asyncio.sleep(0.02)
        assert beats == []
        assert [task for task in asyncio.all_tasks() if task is not asyncio.current_task()] == []

    asyncio.run(run_test())
