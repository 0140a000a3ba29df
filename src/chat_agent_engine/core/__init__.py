from .compaction import CompactionScheduler, should_reduce, should_roll
from .config import AgentConfig, CompactionConfig, ImageJobConfig
from .dispatcher import MessageDispatcher
from .errors import (
    ChatAgentError,
    ImageBackendError,
    ImageJobError,
    ImageJobTimeoutError,
    ModelProtocolError,
)
from .handlers import AssistantHandler, GameMasterHandler
from .images import ImageJobPipeline, calculate_dimensions, parse_image_request
from .merger import merge_turns
from .modes import ModeClassifier, parse_mode_response, system_prompt_for
from .ports import (
    ChatTransportPort,
    ImageBackendPort,
    NarrativeModelPort,
    RetrievalEngineFactory,
    RetrievalEnginePort,
)
from .profiles import ProfileExtractor, parse_profile_blocks
from .resources import RoomResourceCache
from .router import SpecialistRouter, parse_route
from .types import (
    BackendJobStatus,
    ChatBlock,
    CompactionReport,
    ImageArtifact,
    ImageJob,
    ImageJobSpec,
    ImageJobStatus,
    InboundMessage,
    ModeDecision,
    OperationMode,
    RouteDecision,
    TurnOutcome,
    TurnRole,
)

__all__ = [
    "AgentConfig",
    "CompactionConfig",
    "ImageJobConfig",
    "CompactionScheduler",
    "should_roll",
    "should_reduce",
    "MessageDispatcher",
    "ChatAgentError",
    "ImageBackendError",
    "ImageJobError",
    "ImageJobTimeoutError",
    "ModelProtocolError",
    "AssistantHandler",
    "GameMasterHandler",
    "ImageJobPipeline",
    "calculate_dimensions",
    "parse_image_request",
    "merge_turns",
    "ModeClassifier",
    "parse_mode_response",
    "system_prompt_for",
    "ChatTransportPort",
    "ImageBackendPort",
    "NarrativeModelPort",
    "RetrievalEngineFactory",
    "RetrievalEnginePort",
    "ProfileExtractor",
    "parse_profile_blocks",
    "RoomResourceCache",
    "SpecialistRouter",
    "parse_route",
    "BackendJobStatus",
    "ChatBlock",
    "CompactionReport",
    "ImageArtifact",
    "ImageJob",
    "ImageJobSpec",
    "ImageJobStatus",
    "InboundMessage",
    "ModeDecision",
    "OperationMode",
    "RouteDecision",
    "TurnOutcome",
    "TurnRole",
]
