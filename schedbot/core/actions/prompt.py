"""PromptBroadcast: generate an AI message for the group."""

from __future__ import annotations

from loguru import logger

from schedbot.core.actions.base import ActionExecutor
from schedbot.core.config.schema import AssistantConfig
from schedbot.core.errors import ExternalServiceError
from schedbot.core.providers.content import ContentGenerator
from schedbot.core.schedule.types import ExecutionOutcome, PromptAction, ScheduleRecord
from schedbot.memory.store import BotStore

SCHEDULED_SUFFIX = (
    " - This is a presheduled prompt, DO NOT seek a response from anyone or offer follow ups."
)


class PromptBroadcastExecutor(ActionExecutor):
    def __init__(
        self,
        store: BotStore,
        generator: ContentGenerator,
        assistant: AssistantConfig,
    ) -> None:
        self.store = store
        self.generator = generator
        self.assistant = assistant

    def resolve_model(self, username: str) -> tuple[str, float | None]:
        """Creator's preferred model, and a temperature if that model accepts one."""
        prefs = self.store.get_preferences(username)
        model = prefs.get("model") or self.assistant.model
        temperature = prefs.get("temperature", self.assistant.temperature)
        bare = model.split("/")[-1]
        if bare not in self.assistant.temperature_models:
            temperature = None
        return model, temperature

    async def execute(self, record: ScheduleRecord) -> ExecutionOutcome:
        action = record.action
        if not isinstance(action, PromptAction):
            return ExecutionOutcome.failure(f"Not a prompt action: {action.kind}")

        model, temperature = self.resolve_model(record.creator_name)
        logger.debug(f"[sched:{record.id}] generating with {model}")
        try:
            content = await self.generator.generate(
                action.prompt + SCHEDULED_SUFFIX,
                model=model,
                temperature=temperature,
                conversation_token=record.conversation_token,
                max_tokens=self.assistant.max_tokens,
            )
        except ExternalServiceError as e:
            return ExecutionOutcome.failure(str(e))

        usage = {"total_tokens": content.total_tokens}
        usage.update({f"tool:{name}": n for name, n in content.tool_calls.items()})
        return ExecutionOutcome(
            success=True,
            text=content.text,
            image=content.image,
            usage=usage,
            model=content.model or model,
            conversation_token=content.conversation_token,
        )
