from __future__ import annotations

import logging
import random
from typing import Any, Callable, Sequence

from .compaction import CompactionScheduler
from .config import AgentConfig
from .images import ImageJobPipeline, build_image_description_prompt
from .merger import as_messages, merge_turns
from .modes import ModeClassifier, system_prompt_for
from .normalize import (
    chunk_text,
    contains_ignored_keyword,
    mention_for,
    replace_dice_rolls,
    split_on_marker,
    strip_mention,
)
from .ports import ChatTransportPort, ImageBackendPort, NarrativeModelPort
from .profiles import ProfileExtractor
from .resources import RoomResourceCache
from .router import IMAGE_SPECIALIST_ID, SpecialistRouter
from .types import ChatBlock, InboundMessage, OperationMode, TurnOutcome, TurnRole

SUMMARY_REQUEST = "summarize the campaign up to this point"
NO_SUMMARY_TEXT = "No campaign summary has been generated yet."
IMAGE_MARKER = "IMAGE:"
CONTINUE_TOKEN = "CONTINUE"


class RoomHandler:
    """Shared plumbing for per-message handlers.

    ``handle`` is the catch boundary: any error escaping the turn is logged
    and answered with one fixed failure message. Given an ``image_backend``
    and no ``image_pipeline``, the pipeline is built from ``config.image``.
    """

    role_name = ""

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        engines: RoomResourceCache,
        transport: ChatTransportPort,
        agent_id: str,
        *,
        image_pipeline: ImageJobPipeline | None = None,
        image_backend: ImageBackendPort | None = None,
        config: AgentConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        self._uow_factory = uow_factory
        self._engines = engines
        self._transport = transport
        self._agent_id = str(agent_id)
        self._config = config or AgentConfig()
        self._logger = logger or logging.getLogger(__name__)
        if image_pipeline is None and image_backend is not None:
            image_pipeline = ImageJobPipeline(image_backend, config=self._config.image, logger=self._logger)
        self._images = image_pipeline

    async def handle(self, message: InboundMessage) -> TurnOutcome:
        if not self.accepts(message):
            return TurnOutcome(status="ignored")
        try:
            return await self._handle(message)
        except Exception:
            self._logger.exception(
                "Error processing %s message from %s in room %s",
                self.role_name,
                message.author_id,
                message.room_id,
            )
            await self.report_failure(message.room_id)
            return TurnOutcome(status="failed")

    def accepts(self, message: InboundMessage) -> bool:
        return True

    async def _handle(self, message: InboundMessage) -> TurnOutcome:
        raise NotImplementedError

    async def report_failure(self, room_id: str) -> None:
        try:
            await self._transport.send(room_id, self._config.failure_message)
        except Exception:
            self._logger.warning("Could not deliver failure message to room %s", room_id, exc_info=True)

    async def send_text(self, room_id: str, text: str) -> None:
        for chunk in chunk_text(text, self._config.message_chunk_chars):
            await self._transport.send(room_id, chunk)

    def store_turn(self, room_id: str, author_id: str, role: TurnRole, content: str) -> None:
        with self._uow_factory() as uow:
            uow.turns.append(room_id, author_id, role.value, content)
            uow.commit()

    def heartbeat_for(self, room_id: str):
        async def _beat() -> None:
            await self._transport.send(room_id, self._config.heartbeat_message)

        return _beat


class GameMasterHandler(RoomHandler):
    """Runs one game-master turn: compaction, mode, narration, image, sheets."""

    role_name = "gm"

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        engines: RoomResourceCache,
        transport: ChatTransportPort,
        agent_id: str,
        narrative: NarrativeModelPort,
        *,
        image_pipeline: ImageJobPipeline | None = None,
        image_backend: ImageBackendPort | None = None,
        config: AgentConfig | None = None,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(
            uow_factory,
            engines,
            transport,
            agent_id,
            image_pipeline=image_pipeline,
            image_backend=image_backend,
            config=config,
            logger=logger,
        )
        self._narrative = narrative
        self._rng = rng
        self._compaction = CompactionScheduler(uow_factory, config=self._config.compaction, logger=logger)
        self._classifier = ModeClassifier(window=self._config.mode_window, logger=logger)
        self._profiles = ProfileExtractor(uow_factory, logger=logger)

    def accepts(self, message: InboundMessage) -> bool:
        if contains_ignored_keyword(message.content, self._config.ignored_keywords):
            self._logger.info(
                "Ignoring message from %s in room %s due to ignored keyword",
                message.author_id,
                message.room_id,
            )
            return False
        return True

    def build_model_input(self, history: Sequence[Any], summary: str, rules: str) -> list[ChatBlock]:
        seed = [
            ChatBlock(role="user", content=SUMMARY_REQUEST),
            ChatBlock(
                role="assistant",
                content=(
                    f"{summary or NO_SUMMARY_TEXT} "
                    f"the following rules apply to the current situation {rules}"
                ),
            ),
        ]
        return merge_turns(
            history,
            agent_id=self._agent_id,
            agent_label=self._config.agent_label,
            seed=seed,
        )

    async def _handle(self, message: InboundMessage) -> TurnOutcome:
        cfg = self._config
        room_id = message.room_id

        if message.content.strip().lower() == cfg.retry_keyword:
            self._logger.info("Retry requested by %s in room %s, not storing", message.author_id, room_id)
        else:
            content = replace_dice_rolls(
                message.content,
                self._rng,
                max_dice=cfg.max_dice,
                max_sides=cfg.max_dice_sides,
            )
            self.store_turn(room_id, message.author_id, TurnRole.USER, content)

        if not message.can_send:
            self._logger.info("No permission to send messages in room %s", room_id)
            return TurnOutcome(status="no_permission")

        async with self._engines.lease(room_id, load_rulebooks=True) as engine:
            compaction = await self._compaction.run(room_id, engine, agent_id=self._agent_id)

            with self._uow_factory() as uow:
                history = uow.turns.read(room_id)
                summary = uow.summaries.get(room_id)
                profiles = uow.profiles.list(room_id)

            decision = await self._classifier.classify(engine, history, profiles, agent_id=self._agent_id)
            self._logger.info("Room %s operation mode: %s", room_id, decision.mode.value)

            blocks = self.build_model_input(history, summary, decision.rules)
            response = await self._narrative.complete(
                system_prompt_for(decision.mode, profiles),
                as_messages(blocks),
                max_tokens=cfg.narrative_max_tokens,
            )
            narration, _ = split_on_marker(response or "", IMAGE_MARKER)
            narration = narration.strip()

            outcome = TurnOutcome(status="continued", mode=decision.mode, compaction=compaction)
            if narration and narration != CONTINUE_TOKEN:
                await self.send_text(room_id, narration)
                self.store_turn(room_id, self._agent_id, TurnRole.AGENT, narration)
                outcome.status = "replied"
                outcome.reply = narration

            if self._images is not None:
                situation = " ".join(block.content for block in blocks)
                outcome.image_sent = await self._send_scene_image(
                    room_id, engine, situation, narration, decision.mode
                )

            outcome.profiles_updated = await self._profiles.refresh(room_id, engine, narration, profiles)
        return outcome

    async def _send_scene_image(
        self,
        room_id: str,
        engine: Any,
        situation: str,
        narration: str,
        mode: OperationMode,
    ) -> bool:
        try:
            description = await engine.query(build_image_description_prompt(situation, narration, mode))
            description = (description or "").strip()
            if not description:
                self._logger.info("No image description generated for room %s", room_id)
                return False
            artifact = await self._images.generate(description, heartbeat=self.heartbeat_for(room_id))
            await self._transport.send(room_id, attachments=[artifact])
        except Exception as exc:
            self._logger.warning("Scene image step failed for room %s: %s", room_id, exc)
            return False
        return True


class AssistantHandler(RoomHandler):
    """Answers messages that mention the agent, via the specialist router."""

    role_name = "assistant"

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        engines: RoomResourceCache,
        transport: ChatTransportPort,
        agent_id: str,
        *,
        image_pipeline: ImageJobPipeline | None = None,
        image_backend: ImageBackendPort | None = None,
        config: AgentConfig | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(
            uow_factory,
            engines,
            transport,
            agent_id,
            image_pipeline=image_pipeline,
            image_backend=image_backend,
            config=config,
            logger=logger,
        )
        self._router = SpecialistRouter(logger=logger)

    def accepts(self, message: InboundMessage) -> bool:
        return mention_for(self._agent_id) in (message.content or "")

    async def _handle(self, message: InboundMessage) -> TurnOutcome:
        room_id = message.room_id
        query = strip_mention(message.content, self._agent_id)

        with self._uow_factory() as uow:
            stored = uow.turns.append(room_id, message.author_id, TurnRole.USER.value, query)
            uow.commit()
            history = [turn for turn in uow.turns.read(room_id) if turn.id != stored.id]
        self._logger.info("Room %s history length: %s", room_id, len(history) + 1)

        if not message.can_send:
            self._logger.info("No permission to send messages in room %s", room_id)
            return TurnOutcome(status="no_permission")

        history_text = "\n".join(f"{mention_for(turn.author_id)}: {turn.content}" for turn in history)
        async with self._engines.lease(room_id, load_rulebooks=False) as engine:
            decision, answer = await self._router.answer(engine, history_text, message.author_id, query)

        if decision.suppress or answer is None:
            return TurnOutcome(status="suppressed", specialist_id=decision.specialist_id)

        outcome = TurnOutcome(status="replied", reply=answer, specialist_id=decision.specialist_id)
        if decision.specialist_id == IMAGE_SPECIALIST_ID and self._images is not None and answer:
            artifact = await self._images.generate(answer, heartbeat=self.heartbeat_for(room_id))
            await self._transport.send(room_id, attachments=[artifact])
            outcome.image_sent = True
        else:
            await self.send_text(room_id, answer)

        if answer:
            self.store_turn(room_id, self._agent_id, TurnRole.ASSISTANT, answer)
        return outcome
