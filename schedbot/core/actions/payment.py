"""PaymentTransfer: submit a recurring token payment via the backend."""

from __future__ import annotations

from loguru import logger

from schedbot.core.actions.base import ActionExecutor
from schedbot.core.errors import ExternalServiceError
from schedbot.core.providers.payments import PaymentClient, PayUsersRequest, coin_version
from schedbot.core.schedule.types import ExecutionOutcome, PaymentAction, ScheduleRecord
from schedbot.memory.store import BotStore


class PaymentTransferExecutor(ActionExecutor):
    def __init__(self, store: BotStore, client: PaymentClient) -> None:
        self.store = store
        self.client = client

    @staticmethod
    def validate(action: PaymentAction) -> str | None:
        """Return an error message for an incomplete payment, else None."""
        if not action.amount_smallest_units or action.amount_smallest_units <= 0:
            return "Invalid amount"
        if not action.token_type:
            return "Missing token type"
        if not action.recipient_address:
            return "Missing recipient address"
        return None

    async def execute(self, record: ScheduleRecord) -> ExecutionOutcome:
        action = record.action
        if not isinstance(action, PaymentAction):
            return ExecutionOutcome.failure(f"Not a payment action: {action.kind}")

        problem = self.validate(action)
        if problem:
            return ExecutionOutcome.failure(problem)

        jwt = self.store.get_group_credentials(record.group_id)
        if not jwt:
            return ExecutionOutcome.failure("Missing group credentials")

        request = PayUsersRequest(
            amount=action.amount_smallest_units,
            users=[action.recipient_address],
            coin_type=action.token_type,
            version=coin_version(action.token_type),
        )
        try:
            tx_hash = await self.client.pay_members(jwt, request)
        except ExternalServiceError as e:
            return ExecutionOutcome.failure(str(e))

        logger.info(f"[sched:{record.id}] payment submitted: {tx_hash}")
        return ExecutionOutcome(success=True, tx_reference=tx_hash)
