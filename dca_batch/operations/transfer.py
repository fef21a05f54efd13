"""
Recurring ERC-20 transfer.

Parameters: ``recipient_address``, ``token_address``, ``amount`` (human).
Reads token decimals (fallback 18) and the owner's balance (no fallback;
a shortfall is fatal).  One step: ERC-20 transfer ability.
"""

from __future__ import annotations

from dca_kernel.domain.amounts import normalize_amount, quantize_amount

from dca_batch.abilities import AbilityClient
from dca_batch.domain.types import OperationKind
from dca_batch.operations.base import (
    AbilityStep,
    FireContext,
    PreparedOperation,
    param_address,
    read_token_decimals,
    require_balance,
    required_param,
)
from dca_batch.readers import TokenReader


class TransferHandler:
    kind = OperationKind.TRANSFER

    def __init__(
        self,
        transfer_client: AbilityClient,
        tokens: TokenReader,
        chain_id: int,
        rpc_url: str,
    ):
        self._client = transfer_client
        self._tokens = tokens
        self._chain_id = chain_id
        self._rpc_url = rpc_url

    def prepare(self, ctx: FireContext) -> PreparedOperation:
        recipient = param_address(ctx, "recipient_address")
        token = param_address(ctx, "token_address")
        amount = required_param(ctx, "amount")

        decimals = read_token_decimals(ctx, self._tokens, token)
        amount_raw = normalize_amount(amount, decimals)
        balance = require_balance(ctx, self._tokens, token, amount_raw, decimals)

        step = AbilityStep(
            client=self._client,
            params={
                "chain": str(self._chain_id),
                "rpcUrl": self._rpc_url,
                "tokenAddress": token,
                "to": recipient,
                "amount": str(amount_raw),
            },
            tx_hash_key="transferTxHash",
        )
        return PreparedOperation(
            steps=(step,),
            terms={
                "recipient_address": recipient,
                "token_address": token,
                "amount": quantize_amount(amount, decimals),
                "amount_raw": str(amount_raw),
                "decimals": decimals,
                "balance_before_raw": str(balance),
            },
        )
