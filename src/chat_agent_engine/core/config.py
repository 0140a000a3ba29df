from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class CompactionConfig:
    batch_size: int = 10
    summary_token_limit: int = 10_000


@dataclass(frozen=True)
class ImageJobConfig:
    pixel_budget: int = 2_000_000
    default_aspect_ratio: str = "1:1"
    max_seed: int = 1_000_000_000
    poll_interval_seconds: float = 1.0
    heartbeat_interval_seconds: float = 9.0
    timeout_seconds: float = 120.0
    submit_retries: int = 1
    filename: str = "generated_image.png"


@dataclass(frozen=True)
class AgentConfig:
    mode_window: int = 10
    narrative_max_tokens: int = 1000
    message_chunk_chars: int = 2000
    ignored_keywords: tuple[str, ...] = ("aside", "earmuffs", "gmignore")
    retry_keyword: str = "retry"
    max_dice: int = 100
    max_dice_sides: int = 1000
    agent_label: str = "bot"
    failure_message: str = "OOPS I DONE GOOFED"
    heartbeat_message: str = "Still painting, hang tight..."
    compaction: CompactionConfig = field(default_factory=CompactionConfig)
    image: ImageJobConfig = field(default_factory=ImageJobConfig)
