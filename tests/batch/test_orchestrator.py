"""
Tests for dca_batch.orchestrator -- DcaOrchestrator wiring.

Builds the orchestrator from the packaged default configuration with fake
abilities and readers, then fires through the executor and the scheduler
it creates against in-memory SQLite.
"""

import pytest

from dca_config import get_active_config

from dca_kernel.exceptions import OperationDisabledError

from dca_batch.abilities import AbilityName, HttpAbilityClient
from dca_batch.domain.types import FireStatus, OperationKind
from dca_batch.operations import OperationRegistry
from dca_batch.orchestrator import DcaOrchestrator
from dca_batch.services.executor import OperationExecutor
from dca_batch.services.scheduler import OperationScheduler

from tests.conftest import TOKEN, TOKEN_OUT, make_job
from tests.fakes import FakeAbilityClient, FakeTokenReader, FakeVaultReader, rejected


class FakeChainReader(FakeTokenReader):
    """Token and vault reads from one object, like Web3ChainReader."""

    def __init__(self, tokens: FakeTokenReader):
        super().__init__()
        self._decimals = tokens._decimals
        self._balances = tokens._balances
        self._vaults = FakeVaultReader(error=RuntimeError("no vault"))

    def vault_token_info(self, vault_address):
        return self._vaults.vault_token_info(vault_address)


@pytest.fixture
def config():
    return get_active_config(environ={})


@pytest.fixture
def clients():
    return {
        name.value: FakeAbilityClient(
            name.value,
            tx_hash=f"0x{name.value}",
            tx_hash_key="transferTxHash" if name == AbilityName.ERC20_TRANSFER else "txHash",
        )
        for name in AbilityName
    }


@pytest.fixture
def orchestrator(config, session_factory, permitted_versions, clock, clients, tokens, prices):
    return DcaOrchestrator.from_config(
        config,
        session_factory,
        permitted_versions,
        clock=clock,
        ability_clients=clients,
        chain_reader=FakeChainReader(tokens),
        prices=prices,
    )


class TestFromConfig:
    def test_registry_without_quote_endpoint(self, orchestrator):
        kinds = set(orchestrator.registry.list_kinds())
        assert kinds == {
            OperationKind.TRANSFER,
            OperationKind.DCA_SWAP,
            OperationKind.WRITE_OPTION,
            OperationKind.SETTLEMENT,
        }

    def test_unavailable_kind_logged(
        self, config, session_factory, permitted_versions, clock, clients, tokens, prices,
        captured_logs,
    ):
        DcaOrchestrator.from_config(
            config, session_factory, permitted_versions, clock=clock,
            ability_clients=clients, chain_reader=FakeChainReader(tokens), prices=prices,
        )
        logs = captured_logs()
        unavailable = [r for r in logs if r["message"] == "operation_kind_unavailable"]
        assert unavailable[0]["kind"] == "options_trade"
        configured = [r for r in logs if r["message"] == "orchestrator_configured"]
        assert configured[0]["config_checksum"] == config.checksum

    def test_registry_with_quotes(
        self, config, session_factory, permitted_versions, clock, clients, tokens, prices, quotes,
    ):
        orch = DcaOrchestrator.from_config(
            config, session_factory, permitted_versions, clock=clock,
            ability_clients=clients, chain_reader=FakeChainReader(tokens),
            prices=prices, quotes=quotes,
        )
        assert OperationKind.OPTIONS_TRADE in orch.registry
        assert len(orch.registry) == 5

    def test_missing_clients_default_to_http(
        self, config, session_factory, permitted_versions, clock, tokens, prices,
    ):
        orch = DcaOrchestrator.from_config(
            config, session_factory, permitted_versions, clock=clock,
            ability_clients={}, chain_reader=FakeChainReader(tokens), prices=prices,
        )
        client = orch.registry.get(OperationKind.TRANSFER)._client
        assert isinstance(client, HttpAbilityClient)
        assert client.ability == "erc20-transfer"

    def test_explicit_registry_is_used(self, config, session_factory, permitted_versions):
        registry = OperationRegistry()
        orch = DcaOrchestrator.from_config(
            config, session_factory, permitted_versions, registry=registry,
        )
        assert orch.registry is registry


class TestCreate:
    def test_executors_share_guard(self, orchestrator):
        first = orchestrator.create_executor()
        second = orchestrator.create_executor()
        assert isinstance(first, OperationExecutor)
        assert first.guard is second.guard

    def test_fire_transfer(self, orchestrator, clients):
        job = orchestrator.job_store.create(make_job())

        result = orchestrator.create_executor().fire(job.job_id)

        assert result.status == FireStatus.PERSISTED
        assert result.tx_hash == "0xerc20-transfer"
        record = orchestrator.record_store.get_by_tx_hash(result.tx_hash)
        assert record.schedule_id == job.job_id
        assert clients["erc20-transfer"].phases == ["precheck", "execute"]

    def test_configured_kind_markers(
        self, config, session_factory, permitted_versions, clock, clients, tokens, prices,
    ):
        clients["uniswap-swap"] = FakeAbilityClient(
            "uniswap-swap", precheck=rejected("No route for pair"),
        )
        orchestrator = DcaOrchestrator.from_config(
            config, session_factory, permitted_versions, clock=clock,
            ability_clients=clients, chain_reader=FakeChainReader(tokens), prices=prices,
        )
        job = orchestrator.job_store.create(make_job(
            kind=OperationKind.DCA_SWAP,
            parameters={
                "token_in_address": TOKEN,
                "token_out_address": TOKEN_OUT,
                "amount_in": "1",
            },
        ))

        with pytest.raises(OperationDisabledError):
            orchestrator.create_executor().fire(job.job_id)
        assert not orchestrator.job_store.load(job.job_id).enabled

    def test_scheduler(self, orchestrator):
        job = orchestrator.job_store.create(make_job())
        scheduler = orchestrator.create_scheduler(tick_interval_seconds=0.05)
        try:
            assert isinstance(scheduler, OperationScheduler)
            assert scheduler.tick() == 1
            assert orchestrator.job_store.load(job.job_id).last_run_at is not None
        finally:
            scheduler.shutdown()
