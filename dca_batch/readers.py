"""
Auxiliary readers -- read-only lookups a fire needs before it can normalize.

Contract:
    ``TokenReader``        ERC-20 decimals and balances.
    ``VaultReader``        option-vault token configuration.
    ``PriceOracle``        spot price of an asset in USD.
    ``PremiumQuoteSource`` signed premium bid for a vault and expiry.

    Readers raise whatever their transport raises.  What a failure means
    (fallback, fatal, transient) is decided per operation kind by the
    handlers in ``dca_batch.operations``.

Architecture: dca_batch (adapter boundary).  ``Web3ChainReader`` reads
    contract state through an injected ``web3.Web3`` instance; the HTTP
    sources use ``requests``.  Nothing here is constructed at import time.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

import requests
from web3 import Web3

from dca_kernel.domain.addresses import normalize_address
from dca_kernel.logging_config import get_logger

from dca_batch.domain.types import PremiumQuote, VaultTokenInfo

logger = get_logger("batch.readers")

ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


def _view(name: str, output_type: str) -> dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": output_type}],
    }


OPTION_VAULT_ABI: list[dict[str, Any]] = [
    _view("depositToken", "address"),
    _view("conversionToken", "address"),
    _view("premiumToken", "address"),
    _view("strike", "uint256"),
    _view("expiry", "uint256"),
]


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class TokenReader(Protocol):
    def decimals(self, token_address: str) -> int: ...

    def balance_of(self, token_address: str, owner_address: str) -> int: ...


@runtime_checkable
class VaultReader(Protocol):
    def vault_token_info(self, vault_address: str) -> VaultTokenInfo: ...


@runtime_checkable
class PriceOracle(Protocol):
    def spot_price(self, asset: str) -> Decimal: ...


@runtime_checkable
class PremiumQuoteSource(Protocol):
    def fetch_quote(self, vault_address: str, expiry: int) -> PremiumQuote: ...


# =============================================================================
# web3 adapter
# =============================================================================


class Web3ChainReader:
    """``TokenReader`` and ``VaultReader`` over a web3 provider."""

    def __init__(self, w3: Web3):
        self._w3 = w3

    @classmethod
    def from_rpc_url(cls, rpc_url: str, request_timeout_s: float = 30.0) -> Web3ChainReader:
        return cls(
            Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout_s}))
        )

    def _contract(self, address: str, abi: list[dict[str, Any]]):
        return self._w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def decimals(self, token_address: str) -> int:
        return int(self._contract(token_address, ERC20_ABI).functions.decimals().call())

    def balance_of(self, token_address: str, owner_address: str) -> int:
        token = self._contract(token_address, ERC20_ABI)
        return int(
            token.functions.balanceOf(Web3.to_checksum_address(owner_address)).call()
        )

    def vault_token_info(self, vault_address: str) -> VaultTokenInfo:
        vault = self._contract(vault_address, OPTION_VAULT_ABI)
        deposit_token = vault.functions.depositToken().call()
        conversion_token = vault.functions.conversionToken().call()
        premium_token = vault.functions.premiumToken().call()
        strike = vault.functions.strike().call()
        expiry = vault.functions.expiry().call()

        info = VaultTokenInfo(
            deposit_token=normalize_address(deposit_token, "depositToken"),
            conversion_token=normalize_address(conversion_token, "conversionToken"),
            premium_token=normalize_address(premium_token, "premiumToken"),
            deposit_decimals=self.decimals(deposit_token),
            conversion_decimals=self.decimals(conversion_token),
            premium_decimals=self.decimals(premium_token),
            strike=int(strike),
            expiry=int(expiry),
        )
        logger.debug(
            "vault_token_info_fetched",
            extra={
                "vault_address": vault_address,
                "deposit_decimals": info.deposit_decimals,
                "conversion_decimals": info.conversion_decimals,
                "premium_decimals": info.premium_decimals,
            },
        )
        return info


# =============================================================================
# HTTP adapters
# =============================================================================


class HttpPriceOracle:
    """USD spot prices from a CoinGecko-compatible ``/simple/price`` endpoint."""

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        request_timeout_s: float = 10.0,
        session: requests.Session | None = None,
    ):
        self._base = base_url.rstrip("/")
        self._timeout = request_timeout_s
        self._session = session or requests.Session()

    def spot_price(self, asset: str) -> Decimal:
        r = self._session.get(
            f"{self._base}/simple/price",
            params={"ids": asset, "vs_currencies": "usd"},
            timeout=self._timeout,
        )
        r.raise_for_status()
        data = r.json()
        try:
            price = Decimal(str(data[asset]["usd"]))
        except (KeyError, TypeError) as exc:
            raise ValueError(f"No USD price for '{asset}' in response") from exc
        if not price.is_finite() or price <= 0:
            raise ValueError(f"Invalid USD price for '{asset}': {price}")
        return price


class HttpPremiumQuoteSource:
    """Signed premium quotes from ``GET {endpoint}?vault=...&expiry=...``.

    ``expiry`` is sent in epoch milliseconds.
    """

    def __init__(
        self,
        endpoint: str,
        request_timeout_s: float = 10.0,
        session: requests.Session | None = None,
    ):
        self._endpoint = endpoint
        self._timeout = request_timeout_s
        self._session = session or requests.Session()

    def fetch_quote(self, vault_address: str, expiry: int) -> PremiumQuote:
        r = self._session.get(
            self._endpoint,
            params={"vault": vault_address, "expiry": int(expiry) * 1000},
            timeout=self._timeout,
        )
        r.raise_for_status()
        data = r.json()
        if not isinstance(data, dict) or not (
            data.get("premiumPerUnit") and data.get("signature") and data.get("timestamp")
        ):
            raise ValueError("Invalid premium data structure")
        return PremiumQuote(
            premium_per_unit=Decimal(str(data["premiumPerUnit"])),
            signature=str(data["signature"]),
            timestamp=int(data["timestamp"]),
            vault_address=data.get("vaultAddress"),
            expiry=data.get("expiry"),
        )
