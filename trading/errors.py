"""Error types raised inside the engine and converted to results at its edges."""

from __future__ import annotations


class TradingSetupError(RuntimeError):
    """Preconditions for an order are missing (price, mint, wallet, signing)."""

    def __init__(self, code: str, detail: str = "") -> None:
        self.code = code
        self.detail = detail
        super().__init__(f"{code}:{detail}" if detail else code)


class ChainSubmitError(RuntimeError):
    """A transaction reached the network but was rejected or never settled."""

    def __init__(self, code: str, detail: str = "") -> None:
        self.code = code
        self.detail = detail
        super().__init__(f"{code}:{detail}" if detail else code)
