"""External collaborators: AI generation, payments backend, token lookup."""

from schedbot.core.providers.content import ContentGenerator, GeneratedContent, LiteLLMContentGenerator
from schedbot.core.providers.guard import GuardVerdict, PromptGuard
from schedbot.core.providers.payments import PaymentClient, PayUsersRequest, PurchaseRequest
from schedbot.core.providers.tokens import TokenInfo, TokenRegistry

__all__ = [
    "ContentGenerator",
    "GeneratedContent",
    "GuardVerdict",
    "LiteLLMContentGenerator",
    "PayUsersRequest",
    "PaymentClient",
    "PromptGuard",
    "PurchaseRequest",
    "TokenInfo",
    "TokenRegistry",
]
