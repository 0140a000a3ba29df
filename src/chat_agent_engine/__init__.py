from .backends import ComfyUIBackend, ComfyUIConfig
from .core.config import AgentConfig, CompactionConfig, ImageJobConfig
from .core.dispatcher import MessageDispatcher
from .core.handlers import AssistantHandler, GameMasterHandler
from .core.images import ImageJobPipeline
from .core.resources import RoomResourceCache
from .core.types import InboundMessage, TurnOutcome

__all__ = [
    "MessageDispatcher",
    "GameMasterHandler",
    "AssistantHandler",
    "ImageJobPipeline",
    "RoomResourceCache",
    "ComfyUIBackend",
    "ComfyUIConfig",
    "AgentConfig",
    "CompactionConfig",
    "ImageJobConfig",
    "InboundMessage",
    "TurnOutcome",
]
