"""
AbilityClient -- two-phase precheck/execute protocol of the signing collaborator.

Contract:
    Each ability (ERC-20 transfer, ERC-20 approval, Uniswap swap, write
    option, EVM transaction signer, options) is exposed through one
    ``AbilityClient``.  A call is ``precheck(params, context)`` followed, only
    if it succeeded, by ``execute(params, context)``; both return an
    ``AbilityResult`` built from the raw ``{success, error?, result?}``
    payload.  ``context`` always carries the delegating owner's address.

Architecture: dca_batch (adapter boundary).  ``HttpAbilityClient`` talks to
    an ability-runner service over HTTP with ``requests``; tests inject
    fakes implementing the protocol.

Non-goals:
    - No retries here.  A failed fire is retried by the next scheduled fire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import requests

from dca_kernel.logging_config import get_logger

logger = get_logger("batch.abilities")

TX_HASH_FALLBACK_KEYS = ("txHash", "transactionHash")


class AbilityName(str, Enum):
    ERC20_TRANSFER = "erc20-transfer"
    ERC20_APPROVAL = "erc20-approval"
    UNISWAP_SWAP = "uniswap-swap"
    WRITE_OPTION = "derifun-write-option"
    EVM_TRANSACTION_SIGNER = "evm-transaction-signer"
    OPTIONS = "options"


@dataclass(frozen=True)
class AbilityContext:
    delegator_address: str

    def to_payload(self) -> dict[str, Any]:
        return {"delegatorPkpEthAddress": self.delegator_address}


@dataclass(frozen=True)
class AbilityResult:
    """Parsed ``{success, error?, result?}`` response."""

    success: bool
    error: str | None = None
    result: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> AbilityResult:
        if isinstance(payload, AbilityResult):
            return payload
        if not isinstance(payload, dict):
            return cls(
                success=False,
                error=f"malformed ability response: {payload!r}",
                raw={"response": repr(payload)},
            )
        result = payload.get("result")
        error = payload.get("error")
        return cls(
            success=bool(payload.get("success")),
            error=str(error) if error is not None else None,
            result=result if isinstance(result, dict) else {},
            raw=payload,
        )

    def tx_hash(self, key: str | None = None) -> str | None:
        """Transaction hash under ``key``, else under the common fallback keys."""
        keys = ((key,) if key else ()) + TX_HASH_FALLBACK_KEYS
        for candidate in keys:
            value = self.result.get(candidate)
            if value:
                return str(value)
        return None


@runtime_checkable
class AbilityClient(Protocol):
    """One ability of the signing-and-broadcast collaborator."""

    @property
    def ability(self) -> str: ...

    def precheck(self, params: dict[str, Any], context: AbilityContext) -> AbilityResult: ...

    def execute(self, params: dict[str, Any], context: AbilityContext) -> AbilityResult: ...


class HttpAbilityClient:
    """``AbilityClient`` posting JSON to an ability-runner service.

    Endpoints: ``POST {base_url}/abilities/{ability}/precheck`` and
    ``POST {base_url}/abilities/{ability}/execute``.  Non-2xx responses
    raise ``requests.HTTPError``, which the classifier treats like any
    other opaque collaborator error.
    """

    def __init__(
        self,
        ability: str,
        base_url: str,
        api_key: str | None = None,
        request_timeout_s: float = 30.0,
        session: requests.Session | None = None,
    ):
        self._ability = str(getattr(ability, "value", ability))
        self._base = base_url.rstrip("/")
        self._timeout = request_timeout_s
        self._session = session or requests.Session()
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    @property
    def ability(self) -> str:
        return self._ability

    def precheck(self, params: dict[str, Any], context: AbilityContext) -> AbilityResult:
        return self._post("precheck", params, context)

    def execute(self, params: dict[str, Any], context: AbilityContext) -> AbilityResult:
        return self._post("execute", params, context)

    def _post(
        self, phase: str, params: dict[str, Any], context: AbilityContext,
    ) -> AbilityResult:
        r = self._session.post(
            f"{self._base}/abilities/{self._ability}/{phase}",
            headers=self._headers,
            json={"params": params, "context": context.to_payload()},
            timeout=self._timeout,
        )
        r.raise_for_status()
        result = AbilityResult.from_payload(r.json())
        logger.debug(
            "ability_response",
            extra={"ability": self._ability, "phase": phase, "success": result.success},
        )
        return result
