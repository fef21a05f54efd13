"""
Recurring option write against an option vault.

Parameters: ``vault``, ``amount``, ``strike``, ``expiry``,
``premium_per_unit``, ``min_deposit``, ``max_deposit``, ``valid_until``,
``quote_id``, ``signature``.

Each amount is normalized at the decimals of its own token: deposit-side
amounts at the deposit token's, the strike at the conversion token's, the
premium at the premium token's.  Two steps: approve the deposit token to
the vault factory, then write the option.

Vault token info lookup failure falls back to 18 decimals and zero
addresses when ``vault_info_fallback`` is on; otherwise it is fatal.  A
malformed vault address and an already expired quote are always fatal.
"""

from __future__ import annotations

from dca_kernel.domain.amounts import normalize_amount, quantize_amount
from dca_kernel.exceptions import (
    CollaboratorTimeoutError,
    QuoteExpiredError,
    VaultInfoUnavailableError,
)
from dca_kernel.logging_config import get_logger

from dca_batch.abilities import AbilityClient
from dca_batch.domain.types import (
    OperationKind,
    VaultTokenInfo,
    fallback_vault_token_info,
)
from dca_batch.operations.base import (
    AbilityStep,
    FireContext,
    PreparedOperation,
    param_address,
    param_int,
    required_param,
)
from dca_batch.readers import VaultReader

logger = get_logger("batch.operations.write_option")


class WriteOptionHandler:
    kind = OperationKind.WRITE_OPTION

    def __init__(
        self,
        approval_client: AbilityClient,
        write_option_client: AbilityClient,
        vaults: VaultReader,
        vault_factory_address: str,
        chain_name: str,
        rpc_url: str,
        vault_info_fallback: bool = True,
    ):
        self._approval = approval_client
        self._write_option = write_option_client
        self._vaults = vaults
        self._factory = vault_factory_address.lower()
        self._chain_name = chain_name
        self._rpc_url = rpc_url
        self._fallback = vault_info_fallback

    def prepare(self, ctx: FireContext) -> PreparedOperation:
        vault = param_address(ctx, "vault")
        quote_id = str(required_param(ctx, "quote_id"))
        signature = str(required_param(ctx, "signature"))
        expiry = param_int(ctx, "expiry")
        valid_until = param_int(ctx, "valid_until")
        if valid_until <= ctx.now_ts:
            raise QuoteExpiredError(quote_id, valid_until, ctx.now_ts)

        info = self._vault_info(ctx, vault)

        amount = required_param(ctx, "amount")
        strike = required_param(ctx, "strike")
        premium = required_param(ctx, "premium_per_unit")
        min_deposit = required_param(ctx, "min_deposit")
        max_deposit = required_param(ctx, "max_deposit")

        amount_raw = normalize_amount(amount, info.deposit_decimals)
        strike_raw = normalize_amount(strike, info.conversion_decimals)
        premium_raw = normalize_amount(premium, info.premium_decimals)
        min_deposit_raw = normalize_amount(min_deposit, info.deposit_decimals)
        max_deposit_raw = normalize_amount(max_deposit, info.deposit_decimals)

        approval = AbilityStep(
            client=self._approval,
            params={
                "chain": self._chain_name,
                "rpcUrl": self._rpc_url,
                "tokenAddress": info.deposit_token,
                "spender": self._factory,
                "amount": str(amount_raw),
            },
            tx_hash_key="txHash",
            record_as="approval_tx_hash",
        )
        write = AbilityStep(
            client=self._write_option,
            params={
                "operation": "writeOption",
                "vault": vault,
                "amount": str(amount_raw),
                "strike": str(strike_raw),
                "expiry": str(expiry),
                "premiumPerUnit": str(premium_raw),
                "minDeposit": str(min_deposit_raw),
                "maxDeposit": str(max_deposit_raw),
                "validUntil": str(valid_until),
                "quoteId": quote_id,
                "signature": signature,
                "rpcUrl": self._rpc_url,
            },
            tx_hash_key="txHash",
        )
        return PreparedOperation(
            steps=(approval, write),
            terms={
                "vault": vault,
                "deposit_token": info.deposit_token,
                "amount": quantize_amount(amount, info.deposit_decimals),
                "amount_raw": str(amount_raw),
                "strike": quantize_amount(strike, info.conversion_decimals),
                "strike_raw": str(strike_raw),
                "premium_per_unit": quantize_amount(premium, info.premium_decimals),
                "premium_per_unit_raw": str(premium_raw),
                "min_deposit": quantize_amount(min_deposit, info.deposit_decimals),
                "min_deposit_raw": str(min_deposit_raw),
                "max_deposit": quantize_amount(max_deposit, info.deposit_decimals),
                "max_deposit_raw": str(max_deposit_raw),
                "deposit_decimals": info.deposit_decimals,
                "conversion_decimals": info.conversion_decimals,
                "premium_decimals": info.premium_decimals,
                "expiry": expiry,
                "valid_until": valid_until,
                "quote_id": quote_id,
                "vault_info_fallback": info.is_fallback,
            },
        )

    def _vault_info(self, ctx: FireContext, vault: str) -> VaultTokenInfo:
        try:
            return ctx.read("vault_info", self._vaults.vault_token_info, vault)
        except Exception as exc:
            if not self._fallback:
                if isinstance(exc, CollaboratorTimeoutError):
                    raise
                raise VaultInfoUnavailableError(vault, str(exc)) from exc
            logger.warning(
                "vault_info_fallback",
                extra={"vault_address": vault, "error": str(exc)},
            )
            return fallback_vault_token_info()
