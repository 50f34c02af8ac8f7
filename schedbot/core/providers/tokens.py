"""Token symbol lookup for payment schedules."""

from __future__ import annotations

from pydantic import BaseModel

from schedbot.core.config.schema import PaymentsConfig


class TokenInfo(BaseModel):
    symbol: str
    token_type: str
    decimals: int


class TokenRegistry:
    """Resolve a user-typed symbol to an on-chain token type and precision."""

    def __init__(self, config: PaymentsConfig) -> None:
        self._tokens = {
            symbol.upper(): TokenInfo(symbol=symbol.upper(), token_type=t.token_type, decimals=t.decimals)
            for symbol, t in config.tokens.items()
        }
        # "APTOS" is accepted as an alias of the native coin
        if "APT" in self._tokens:
            self._tokens.setdefault("APTOS", self._tokens["APT"])

    def resolve(self, text: str) -> TokenInfo | None:
        """Case-insensitive for alphabetic symbols; emoji symbols match verbatim."""
        raw = text.strip()
        key = raw.upper() if any(c.isascii() and c.isalpha() for c in raw) else raw
        return self._tokens.get(key)

    def symbols(self) -> list[str]:
        return sorted({t.symbol for t in self._tokens.values()})
