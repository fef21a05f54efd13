"""
Conditional options trade: deposit into a vault when the premium is good enough.

Parameters: ``vault_address``, ``deposit_token``, ``deposit_amount``,
``expiry`` (epoch seconds), ``minimum_apy`` (percent), ``strike_threshold``
(percent above spot).

The fire is skipped, without error and with the job left enabled, when

    premium_per_unit < spot * (1 + strike_threshold / 100), or
    premium_per_unit / years_to_expiry * 100 < minimum_apy

(the annualized premium is 0 once the expiry has passed).  The premium
quote and the spot price have no fallback; deposit decimals fall back
to 18.
"""

from __future__ import annotations

from decimal import Decimal

from dca_kernel.domain.amounts import normalize_amount, parse_decimal, quantize_amount
from dca_kernel.logging_config import get_logger

from dca_batch.abilities import AbilityClient
from dca_batch.domain.types import OperationKind, PremiumQuote
from dca_batch.operations.base import (
    AbilityStep,
    FireContext,
    PreparedOperation,
    fetch_required,
    param_address,
    param_int,
    read_token_decimals,
    required_param,
)
from dca_batch.readers import PremiumQuoteSource, PriceOracle, TokenReader

logger = get_logger("batch.operations.options_trade")

SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)


def annualized_premium(premium_per_unit: Decimal, expiry_ts: int, now_ts: int) -> Decimal:
    """Premium per unit as an annual percentage; 0 at or after expiry."""
    years = Decimal(expiry_ts - now_ts) / SECONDS_PER_YEAR
    if years <= 0:
        return Decimal(0)
    return premium_per_unit / years * 100


class OptionsTradeHandler:
    kind = OperationKind.OPTIONS_TRADE

    def __init__(
        self,
        options_client: AbilityClient,
        quotes: PremiumQuoteSource,
        prices: PriceOracle,
        tokens: TokenReader,
        chain_id: int,
        rpc_url: str,
        price_asset: str = "ethereum",
    ):
        self._client = options_client
        self._quotes = quotes
        self._prices = prices
        self._tokens = tokens
        self._chain_id = chain_id
        self._rpc_url = rpc_url
        self._price_asset = price_asset

    def prepare(self, ctx: FireContext) -> PreparedOperation:
        vault = param_address(ctx, "vault_address")
        deposit_token = param_address(ctx, "deposit_token")
        deposit_amount = required_param(ctx, "deposit_amount")
        expiry = param_int(ctx, "expiry")
        minimum_apy = parse_decimal(ctx.params.get("minimum_apy", 0))
        strike_threshold = parse_decimal(ctx.params.get("strike_threshold", 0))

        quote: PremiumQuote = fetch_required(
            ctx, "premium data", self._quotes.fetch_quote, vault, expiry,
        )
        spot = Decimal(
            str(fetch_required(ctx, "spot price", self._prices.spot_price, self._price_asset))
        )
        premium = quote.premium_per_unit
        strike_price = spot * (1 + strike_threshold / 100)

        if premium < strike_price:
            logger.info(
                "options_trade_skipped",
                extra={
                    "reason": "strike_threshold_not_met",
                    "spot": spot,
                    "strike_price": strike_price,
                    "premium_per_unit": premium,
                },
            )
            return PreparedOperation.skip(
                "strike threshold not met",
                spot=str(spot),
                strike_price=str(strike_price),
                premium_per_unit=str(premium),
            )

        apy = annualized_premium(premium, expiry, ctx.now_ts)
        if apy < minimum_apy:
            logger.info(
                "options_trade_skipped",
                extra={
                    "reason": "minimum_apy_not_met",
                    "annualized_premium": apy,
                    "minimum_apy": minimum_apy,
                },
            )
            return PreparedOperation.skip(
                "minimum APY not met",
                annualized_premium=str(apy),
                minimum_apy=str(minimum_apy),
            )

        decimals = read_token_decimals(ctx, self._tokens, deposit_token)
        deposit_raw = normalize_amount(deposit_amount, decimals)

        step = AbilityStep(
            client=self._client,
            params={
                "depositAmount": str(deposit_raw),
                "depositToken": deposit_token,
                "vaultAddress": vault,
                "chainId": self._chain_id,
                "premiumPerUnit": str(premium),
                "rpcUrl": self._rpc_url,
                "signature": quote.signature,
            },
            tx_hash_key="transactionHash",
        )
        return PreparedOperation(
            steps=(step,),
            terms={
                "vault_address": vault,
                "deposit_token": deposit_token,
                "deposit_amount": quantize_amount(deposit_amount, decimals),
                "deposit_amount_raw": str(deposit_raw),
                "deposit_decimals": decimals,
                "premium_per_unit": str(premium),
                "spot": str(spot),
                "annualized_premium": f"{apy:.2f}",
                "expiry": expiry,
            },
        )
