"""schedbot: scheduled AI prompts and token payments for Telegram groups."""

__version__ = "0.1.0"
