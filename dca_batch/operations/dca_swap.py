"""
Recurring DCA swap through the Uniswap swap ability.

Parameters: ``token_in_address``, ``token_out_address``, ``amount_in``
(human) and optional ``slippage_bps``.  Token decimals fall back to 18;
a token-in balance shortfall is fatal.
"""

from __future__ import annotations

from dca_kernel.domain.amounts import normalize_amount, quantize_amount
from dca_kernel.exceptions import ValidationError

from dca_batch.abilities import AbilityClient
from dca_batch.domain.types import OperationKind
from dca_batch.operations.base import (
    AbilityStep,
    FireContext,
    PreparedOperation,
    param_address,
    param_int,
    read_token_decimals,
    require_balance,
    required_param,
)
from dca_batch.readers import TokenReader

DEFAULT_SLIPPAGE_BPS = 50


class DcaSwapHandler:
    kind = OperationKind.DCA_SWAP

    def __init__(
        self,
        swap_client: AbilityClient,
        tokens: TokenReader,
        chain_id: int,
        rpc_url: str,
    ):
        self._client = swap_client
        self._tokens = tokens
        self._chain_id = chain_id
        self._rpc_url = rpc_url

    def prepare(self, ctx: FireContext) -> PreparedOperation:
        token_in = param_address(ctx, "token_in_address")
        token_out = param_address(ctx, "token_out_address")
        if token_in == token_out:
            raise ValidationError("token_in_address and token_out_address must differ")
        amount_in = required_param(ctx, "amount_in")
        slippage_bps = param_int(ctx, "slippage_bps", DEFAULT_SLIPPAGE_BPS)

        decimals_in = read_token_decimals(ctx, self._tokens, token_in)
        decimals_out = read_token_decimals(ctx, self._tokens, token_out)
        amount_in_raw = normalize_amount(amount_in, decimals_in)
        require_balance(ctx, self._tokens, token_in, amount_in_raw, decimals_in)

        step = AbilityStep(
            client=self._client,
            params={
                "chainIdForUniswap": self._chain_id,
                "rpcUrlForUniswap": self._rpc_url,
                "tokenInAddress": token_in,
                "tokenInDecimals": decimals_in,
                "tokenOutAddress": token_out,
                "tokenOutDecimals": decimals_out,
                "tokenInAmount": str(amount_in_raw),
                "slippageBps": slippage_bps,
            },
            tx_hash_key="swapTxHash",
        )
        return PreparedOperation(
            steps=(step,),
            terms={
                "token_in_address": token_in,
                "token_out_address": token_out,
                "amount_in": quantize_amount(amount_in, decimals_in),
                "amount_in_raw": str(amount_in_raw),
                "token_in_decimals": decimals_in,
                "token_out_decimals": decimals_out,
                "slippage_bps": slippage_bps,
            },
        )
