from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


class TurnRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    AGENT = "agent"


class OperationMode(str, enum.Enum):
    SETUP = "setup"
    EXPLORATION = "exploration"
    COMBAT = "combat"


class ImageJobStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class InboundMessage:
    room_id: str
    author_id: str
    content: str
    author_is_bot: bool = False
    can_send: bool = True


@dataclass
class ChatBlock:
    role: str
    content: str

    def as_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ModeDecision:
    mode: OperationMode
    rules: str
    recovered: bool = False


@dataclass
class RouteDecision:
    specialist_id: Optional[str]
    suppress: bool = False
    raw_response: str = ""

    @property
    def dispatched(self) -> bool:
        return self.specialist_id is not None and not self.suppress


@dataclass
class ImageJobSpec:
    prompt: str
    negative_prompt: str
    width: int
    height: int
    seed: int
    aspect_ratio: str = "1:1"


@dataclass
class ImageJob:
    spec: ImageJobSpec
    status: ImageJobStatus = ImageJobStatus.SUBMITTED
    job_id: Optional[str] = None
    polls: int = 0
    error: Optional[str] = None


@dataclass
class BackendJobStatus:
    ready: bool
    artifact_ref: Optional[str] = None
    failed: bool = False
    detail: Optional[str] = None


@dataclass
class ImageArtifact:
    data: bytes
    filename: str
    job: ImageJob


@dataclass
class CompactionReport:
    history_length: int
    rolled: bool = False
    reduced: bool = False
    deleted_turns: int = 0
    summary_tokens: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class TurnOutcome:
    status: str
    mode: Optional[OperationMode] = None
    reply: Optional[str] = None
    specialist_id: Optional[str] = None
    image_sent: bool = False
    profiles_updated: list[str] = field(default_factory=list)
    compaction: Optional[CompactionReport] = None
