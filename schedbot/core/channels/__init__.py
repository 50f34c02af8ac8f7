"""Channel handlers: Telegram Bot API client and webhook endpoint."""
