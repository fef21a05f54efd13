"""
Executor configuration schema.

Frozen dataclasses populated by ``dca_config.loader`` from YAML plus
``DCA_*`` environment overrides.  ``ExecutorConfig`` is the runtime
artifact handed to ``DcaOrchestrator.from_config``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConfig:
    """Target chain and the contract addresses operations need."""

    chain_id: int
    chain_name: str
    rpc_url: str
    vault_factory_address: str = ""
    settlement_router_address: str = ""
    weth_address: str = ""
    usdc_address: str = ""


@dataclass(frozen=True)
class TimeoutConfig:
    """Seconds allowed for each class of external call."""

    call_seconds: float = 30.0
    persistence_seconds: float = 10.0
    http_request_seconds: float = 30.0


@dataclass(frozen=True)
class SchedulerConfig:
    tick_interval_seconds: float = 60.0
    max_parallel_fires: int = 4
    batch_limit: int | None = None
    lock_lifetime_seconds: int = 600


@dataclass(frozen=True)
class ClassifierConfig:
    """Fatal error-text markers: shared, plus extras per operation kind."""

    common_markers: tuple[str, ...] = ()
    kind_markers: dict[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class EndpointConfig:
    """HTTP collaborators: ability runner, price oracle, premium quotes."""

    ability_base_url: str
    ability_api_key: str | None = None
    price_oracle_url: str = "https://api.coingecko.com/api/v3"
    premium_quote_url: str | None = None
    price_asset: str = "ethereum"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutorConfig:
    """Effective configuration of one executor deployment."""

    app_id: int
    database_url: str
    chain: ChainConfig
    endpoints: EndpointConfig
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    vault_info_fallback: bool = True
    checksum: str = ""
