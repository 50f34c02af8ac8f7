"""Prompt guard: rejects scheduled prompts that ask for forbidden actions."""

from __future__ import annotations

import json

import litellm
from loguru import logger
from pydantic import BaseModel

GUARD_SYSTEM_PROMPT = (
    "You review prompts that will run unattended on a schedule in a group chat. "
    "Forbidden: payments or transfers, withdrawals or funding, DAO or proposal creation, "
    "any on-chain transaction, and any flow needing real-time human confirmation. "
    "Allowed: informational queries, analytics, web or file search, time, market "
    "snapshots and image generation. "
    'Answer with JSON only: {"verdict": "P" or "F", "reason": "<short reason when F>"}.'
)


class GuardVerdict(BaseModel):
    allowed: bool
    reason: str | None = None
    total_tokens: int = 0


class PromptGuard:
    """LLM-backed classifier for prompts submitted to the schedule wizard."""

    def __init__(self, model: str) -> None:
        self.model = model

    async def check(self, prompt: str) -> GuardVerdict:
        """Classify ``prompt``. Fails open: a broken guard never blocks a schedule."""
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=[
                    {"role": "system", "content": GUARD_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
            )
            data = json.loads(response.choices[0].message.content or "{}")
        except Exception as e:
            logger.warning(f"Prompt guard check failed: {e}")
            return GuardVerdict(allowed=True)

        tokens = getattr(getattr(response, "usage", None), "total_tokens", 0) or 0
        if not isinstance(data, dict):
            logger.warning(f"Prompt guard returned non-object JSON: {type(data).__name__}")
            return GuardVerdict(allowed=True, total_tokens=tokens)
        if str(data.get("verdict", "P")).upper() == "F":
            return GuardVerdict(
                allowed=False,
                reason=data.get("reason") or "Prompt requests a forbidden action for scheduled runs",
                total_tokens=tokens,
            )
        return GuardVerdict(allowed=True, total_tokens=tokens)
