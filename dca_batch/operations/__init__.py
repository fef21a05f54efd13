"""
dca_batch.operations -- one handler per recurring operation kind.

Each handler prepares a fire (reads, normalization, ability steps, record
terms); the executor runs it.
"""

from dca_batch.operations.base import (
    AbilityStep,
    FireContext,
    OperationHandler,
    OperationRegistry,
    PreparedOperation,
)
from dca_batch.operations.dca_swap import DcaSwapHandler
from dca_batch.operations.options_trade import OptionsTradeHandler
from dca_batch.operations.settlement import SettlementHandler
from dca_batch.operations.transfer import TransferHandler
from dca_batch.operations.write_option import WriteOptionHandler

__all__ = [
    "AbilityStep",
    "DcaSwapHandler",
    "FireContext",
    "OperationHandler",
    "OperationRegistry",
    "OptionsTradeHandler",
    "PreparedOperation",
    "SettlementHandler",
    "TransferHandler",
    "WriteOptionHandler",
]
