"""
Recurring WETH/USDC settlement staged through a settlement router.

Parameters: ``from_address``, ``to_address``, optional ``weth_amount``
(default ``"1.0"``).

The USDC leg is priced at the current ETH spot price (no fallback: a
failed price lookup is fatal).  The router call
``stageSettlement(escrow, legs, validForSeconds)`` is ABI-encoded here and
signed and broadcast by the EVM transaction signer ability.  The keccak
hash of the encoded legs is recorded so the settlement can be matched
on-chain later.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from eth_abi import encode
from web3 import Web3

from dca_kernel.domain.amounts import normalize_amount, quantize_amount
from dca_kernel.exceptions import ValidationError

from dca_batch.abilities import AbilityClient
from dca_batch.domain.types import OperationKind
from dca_batch.operations.base import (
    AbilityStep,
    FireContext,
    PreparedOperation,
    fetch_required,
    param_address,
)
from dca_batch.readers import PriceOracle

WETH_DECIMALS = 18
USDC_DECIMALS = 6
VALID_FOR_SECONDS = 3600
DEFAULT_WETH_AMOUNT = "1.0"

LEG_TYPE = "(address,address,address,uint256)"
STAGE_SETTLEMENT_SIGNATURE = f"stageSettlement(address,{LEG_TYPE}[],uint256)"


def payment_legs(
    from_address: str,
    to_address: str,
    weth_address: str,
    usdc_address: str,
    weth_raw: int,
    usdc_raw: int,
) -> list[tuple[str, str, str, int]]:
    """WETH from ``from`` to ``to`` and USDC back; (from, to, token, amount)."""
    return [
        (from_address, to_address, weth_address, weth_raw),
        (to_address, from_address, usdc_address, usdc_raw),
    ]


def legs_hash(legs: list[tuple[str, str, str, int]]) -> str:
    return Web3.to_hex(Web3.keccak(encode([f"{LEG_TYPE}[]"], [legs])))


def stage_settlement_calldata(
    escrow: str, legs: list[tuple[str, str, str, int]], valid_for_seconds: int,
) -> str:
    selector = Web3.keccak(text=STAGE_SETTLEMENT_SIGNATURE)[:4]
    args = encode(
        ["address", f"{LEG_TYPE}[]", "uint256"],
        [escrow, legs, valid_for_seconds],
    )
    return Web3.to_hex(bytes(selector) + args)


class SettlementHandler:
    kind = OperationKind.SETTLEMENT

    def __init__(
        self,
        signer_client: AbilityClient,
        prices: PriceOracle,
        router_address: str,
        weth_address: str,
        usdc_address: str,
        chain_id: int,
        rpc_url: str,
        price_asset: str = "ethereum",
    ):
        self._client = signer_client
        self._prices = prices
        self._router = router_address.lower()
        self._weth = weth_address.lower()
        self._usdc = usdc_address.lower()
        self._chain_id = chain_id
        self._rpc_url = rpc_url
        self._price_asset = price_asset

    def prepare(self, ctx: FireContext) -> PreparedOperation:
        from_address = param_address(ctx, "from_address")
        to_address = param_address(ctx, "to_address")
        if from_address == to_address:
            raise ValidationError("from_address and to_address must differ")
        weth_amount = ctx.params.get("weth_amount") or DEFAULT_WETH_AMOUNT

        eth_price = Decimal(
            str(fetch_required(ctx, "ETH price", self._prices.spot_price, self._price_asset))
        )
        weth_raw = normalize_amount(weth_amount, WETH_DECIMALS)
        usdc_amount = eth_price * Decimal(quantize_amount(weth_amount, WETH_DECIMALS))
        usdc_raw = normalize_amount(usdc_amount, USDC_DECIMALS)

        legs = payment_legs(
            from_address, to_address, self._weth, self._usdc, weth_raw, usdc_raw,
        )
        transaction: dict[str, Any] = {
            "to": self._router,
            "data": stage_settlement_calldata(from_address, legs, VALID_FOR_SECONDS),
            "value": "0x0",
            "chainId": self._chain_id,
            "type": 2,
        }
        step = AbilityStep(
            client=self._client,
            params={
                "transaction": transaction,
                "chainId": self._chain_id,
                "rpcUrl": self._rpc_url,
            },
            tx_hash_key="transactionHash",
        )
        return PreparedOperation(
            steps=(step,),
            terms={
                "from_address": from_address,
                "to_address": to_address,
                "eth_price": str(eth_price),
                "weth_amount": quantize_amount(weth_amount, WETH_DECIMALS),
                "weth_amount_raw": str(weth_raw),
                "usdc_amount": quantize_amount(usdc_amount, USDC_DECIMALS),
                "usdc_amount_raw": str(usdc_raw),
                "legs_hash": legs_hash(legs),
                "valid_until": ctx.now_ts + VALID_FOR_SECONDS,
            },
        )
