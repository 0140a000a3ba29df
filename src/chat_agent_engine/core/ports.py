from __future__ import annotations

from typing import Any, Protocol, Sequence

from .types import BackendJobStatus, ImageArtifact, ImageJobSpec


class RetrievalEnginePort(Protocol):
    async def query(self, prompt: str) -> str:
        ...


class RetrievalEngineFactory(Protocol):
    async def __call__(self, room_id: str, **options: Any) -> RetrievalEnginePort:
        ...


class NarrativeModelPort(Protocol):
    async def complete(
        self,
        system: str,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
    ) -> str:
        ...


class ImageBackendPort(Protocol):
    async def submit(self, spec: ImageJobSpec) -> str:
        ...

    async def status(self, job_id: str) -> BackendJobStatus:
        ...

    async def fetch(self, artifact_ref: str) -> bytes:
        ...


class ChatTransportPort(Protocol):
    async def send(
        self,
        room_id: str,
        content: str | None = None,
        *,
        attachments: Sequence[ImageArtifact] | None = None,
    ) -> None:
        ...
