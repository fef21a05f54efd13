"""
DcaOrchestrator -- DI container for the recurring-operation executor.

Contract:
    Wires the OperationRegistry with one handler per operation kind,
    creates OperationExecutor, and optionally creates OperationScheduler.
    Single place where all executor dependencies are composed.

Architecture: dca_batch (top-level).  This is the canonical entry point
    for configuring and running recurring operations.

Invariants enforced:
    - Clock injection (all services receive the same Clock).
    - One FireGuard and one BoundedCaller per orchestrator, shared by
      every executor it creates.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Mapping

from sqlalchemy.orm import Session

from dca_kernel.domain.clock import Clock, SystemClock
from dca_kernel.logging_config import get_logger
from dca_kernel.services.execution_records import (
    ExecutionRecordStore,
    SqlExecutionRecordStore,
)

from dca_batch.abilities import AbilityClient, AbilityName, HttpAbilityClient
from dca_batch.domain.types import OperationKind
from dca_batch.operations import (
    DcaSwapHandler,
    OperationRegistry,
    OptionsTradeHandler,
    SettlementHandler,
    TransferHandler,
    WriteOptionHandler,
)
from dca_batch.readers import (
    HttpPremiumQuoteSource,
    HttpPriceOracle,
    PremiumQuoteSource,
    PriceOracle,
    Web3ChainReader,
)
from dca_batch.services.authorization_gate import AuthorizationGate, PermittedVersionStore
from dca_batch.services.bounded import BoundedCaller, FireGuard
from dca_batch.services.classifier import COMMON_FATAL_MARKERS, FailureClassifier
from dca_batch.services.executor import OperationExecutor
from dca_batch.services.job_store import JobStore, SqlJobStore
from dca_batch.services.scheduler import OperationScheduler

if TYPE_CHECKING:
    from dca_config.schema import ExecutorConfig

logger = get_logger("batch.orchestrator")


def _default_registry(
    config: ExecutorConfig,
    clients: Mapping[str, AbilityClient],
    chain_reader: Web3ChainReader,
    prices: PriceOracle,
    quotes: PremiumQuoteSource | None,
) -> OperationRegistry:
    """Create an OperationRegistry with a handler for every available kind."""
    chain = config.chain
    registry = OperationRegistry()
    registry.register(TransferHandler(
        transfer_client=clients[AbilityName.ERC20_TRANSFER.value],
        tokens=chain_reader,
        chain_id=chain.chain_id,
        rpc_url=chain.rpc_url,
    ))
    registry.register(DcaSwapHandler(
        swap_client=clients[AbilityName.UNISWAP_SWAP.value],
        tokens=chain_reader,
        chain_id=chain.chain_id,
        rpc_url=chain.rpc_url,
    ))
    registry.register(WriteOptionHandler(
        approval_client=clients[AbilityName.ERC20_APPROVAL.value],
        write_option_client=clients[AbilityName.WRITE_OPTION.value],
        vaults=chain_reader,
        vault_factory_address=chain.vault_factory_address,
        chain_name=chain.chain_name,
        rpc_url=chain.rpc_url,
        vault_info_fallback=config.vault_info_fallback,
    ))
    registry.register(SettlementHandler(
        signer_client=clients[AbilityName.EVM_TRANSACTION_SIGNER.value],
        prices=prices,
        router_address=chain.settlement_router_address,
        weth_address=chain.weth_address,
        usdc_address=chain.usdc_address,
        chain_id=chain.chain_id,
        rpc_url=chain.rpc_url,
        price_asset=config.endpoints.price_asset,
    ))
    if quotes is not None:
        registry.register(OptionsTradeHandler(
            options_client=clients[AbilityName.OPTIONS.value],
            quotes=quotes,
            prices=prices,
            tokens=chain_reader,
            chain_id=chain.chain_id,
            rpc_url=chain.rpc_url,
            price_asset=config.endpoints.price_asset,
        ))
    else:
        logger.warning(
            "operation_kind_unavailable",
            extra={
                "kind": OperationKind.OPTIONS_TRADE.value,
                "reason": "no premium quote endpoint configured",
            },
        )
    return registry


class DcaOrchestrator:
    """DI container for the recurring-operation executor.

    Contract:
        - ``from_config()`` factory creates a fully wired orchestrator.
        - ``create_executor()`` returns an OperationExecutor for ad-hoc fires.
        - ``create_scheduler()`` returns an OperationScheduler for
          background use.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
        - Does NOT create tables -- see ``dca_kernel.db.create_tables``.
    """

    def __init__(
        self,
        job_store: JobStore,
        record_store: ExecutionRecordStore,
        permitted_versions: PermittedVersionStore,
        registry: OperationRegistry,
        classifier: FailureClassifier | None = None,
        clock: Clock | None = None,
        call_timeout_seconds: float | None = 30.0,
        persistence_timeout_seconds: float | None = 10.0,
        tick_interval_seconds: float = 60,
        max_parallel_fires: int = 4,
        batch_limit: int | None = None,
    ) -> None:
        self._job_store = job_store
        self._record_store = record_store
        self._registry = registry
        self._classifier = classifier or FailureClassifier()
        self._clock = clock or SystemClock()
        self._gate = AuthorizationGate(permitted_versions, job_store)
        self._call_timeout = call_timeout_seconds
        self._persistence_timeout = persistence_timeout_seconds
        self._tick_interval = tick_interval_seconds
        self._max_parallel = max_parallel_fires
        self._batch_limit = batch_limit
        self._caller = BoundedCaller(default_timeout_seconds=call_timeout_seconds)
        self._guard = FireGuard()

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: ExecutorConfig,
        session_factory: Callable[[], Session],
        permitted_versions: PermittedVersionStore,
        clock: Clock | None = None,
        ability_clients: Mapping[str, AbilityClient] | None = None,
        chain_reader: Web3ChainReader | None = None,
        prices: PriceOracle | None = None,
        quotes: PremiumQuoteSource | None = None,
        registry: OperationRegistry | None = None,
    ) -> DcaOrchestrator:
        """Create a fully wired DcaOrchestrator from configuration.

        Args:
            config: Effective configuration from ``get_active_config()``.
            session_factory: Callable returning new sessions.
            permitted_versions: Source of the owners' current delegations.
            clock: Optional clock for deterministic testing.
            ability_clients: Optional clients keyed by ability name.  Any
                missing ability gets an ``HttpAbilityClient``.
            chain_reader, prices, quotes: Optional collaborator overrides.
            registry: Optional pre-configured registry. If None, builds
                the default registry from the collaborators above.
        """
        effective_clock = clock or SystemClock()
        http_timeout = config.timeouts.http_request_seconds

        if registry is None:
            clients: dict[str, AbilityClient] = {
                name.value: HttpAbilityClient(
                    name.value,
                    config.endpoints.ability_base_url,
                    api_key=config.endpoints.ability_api_key,
                    request_timeout_s=http_timeout,
                )
                for name in AbilityName
                if name.value not in (ability_clients or {})
            }
            clients.update(ability_clients or {})
            if quotes is None and config.endpoints.premium_quote_url:
                quotes = HttpPremiumQuoteSource(
                    config.endpoints.premium_quote_url, request_timeout_s=http_timeout,
                )
            registry = _default_registry(
                config,
                clients,
                chain_reader or Web3ChainReader.from_rpc_url(
                    config.chain.rpc_url, request_timeout_s=http_timeout,
                ),
                prices or HttpPriceOracle(
                    config.endpoints.price_oracle_url, request_timeout_s=http_timeout,
                ),
                quotes,
            )

        classifier = FailureClassifier(
            common_markers=config.classifier.common_markers or COMMON_FATAL_MARKERS,
            kind_markers={
                OperationKind(kind): markers
                for kind, markers in config.classifier.kind_markers.items()
            },
        )

        logger.info(
            "orchestrator_configured",
            extra={
                "kinds": [kind.value for kind in registry.list_kinds()],
                "config_checksum": config.checksum,
            },
        )
        return cls(
            job_store=SqlJobStore(
                session_factory,
                clock=effective_clock,
                lock_lifetime_seconds=config.scheduler.lock_lifetime_seconds,
            ),
            record_store=SqlExecutionRecordStore(session_factory, clock=effective_clock),
            permitted_versions=permitted_versions,
            registry=registry,
            classifier=classifier,
            clock=effective_clock,
            call_timeout_seconds=config.timeouts.call_seconds,
            persistence_timeout_seconds=config.timeouts.persistence_seconds,
            tick_interval_seconds=config.scheduler.tick_interval_seconds,
            max_parallel_fires=config.scheduler.max_parallel_fires,
            batch_limit=config.scheduler.batch_limit,
        )

    # -------------------------------------------------------------------------
    # Executor
    # -------------------------------------------------------------------------

    def create_executor(self) -> OperationExecutor:
        """Create an OperationExecutor wired with the orchestrator's dependencies."""
        return OperationExecutor(
            job_store=self._job_store,
            gate=self._gate,
            registry=self._registry,
            record_store=self._record_store,
            classifier=self._classifier,
            clock=self._clock,
            caller=self._caller,
            guard=self._guard,
            call_timeout_seconds=self._call_timeout,
            persistence_timeout_seconds=self._persistence_timeout,
        )

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def create_scheduler(
        self, tick_interval_seconds: float | None = None,
    ) -> OperationScheduler:
        """Create an OperationScheduler over a fresh executor.

        Args:
            tick_interval_seconds: Polling interval override.
        """
        return OperationScheduler(
            job_store=self._job_store,
            executor=self.create_executor(),
            clock=self._clock,
            tick_interval_seconds=(
                tick_interval_seconds
                if tick_interval_seconds is not None
                else self._tick_interval
            ),
            max_parallel_fires=self._max_parallel,
            batch_limit=self._batch_limit,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def job_store(self) -> JobStore:
        return self._job_store

    @property
    def record_store(self) -> ExecutionRecordStore:
        return self._record_store

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    @property
    def gate(self) -> AuthorizationGate:
        return self._gate

    @property
    def clock(self) -> Clock:
        return self._clock
