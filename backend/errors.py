"""
Exceptions raised by the per-trade statistics core.

The HTTP layer maps these onto status codes; everything else treats them as
ordinary ValueError / KeyError.
"""


class InvalidDefinitionError(ValueError):
    """Requested trade definition is not one of the supported ones."""


class MissingSymbolError(KeyError):
    """Symbol has no position series (or instrument) in the ledger."""

    def __init__(self, symbol: str, portfolio: str = "") -> None:
        self.symbol = symbol
        self.portfolio = portfolio
        where = f" in portfolio '{portfolio}'" if portfolio else ""
        super().__init__(f"Symbol '{symbol}' not found{where}.")

    def __str__(self) -> str:
        return self.args[0]
