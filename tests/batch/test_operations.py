"""
Tests for dca_batch.operations -- per-kind preparation.

Each handler is driven directly through ``prepare()`` with a FireContext
whose reads run inline, so the normalized ability params, recorded terms,
skips and fatal conditions can be checked without the executor.
"""

from decimal import Decimal

import pytest
from eth_abi import decode
from web3 import Web3

from dca_kernel.domain.addresses import ZERO_ADDRESS
from dca_kernel.exceptions import (
    AuxiliaryDataUnavailableError,
    CollaboratorTimeoutError,
    InsufficientBalanceError,
    InvalidAddressError,
    OperationDisabledError,
    OperationNotRegisteredError,
    QuoteExpiredError,
    ValidationError,
    VaultInfoUnavailableError,
)

from dca_batch.domain.types import FireStatus, OperationKind, PremiumQuote, VaultTokenInfo
from dca_batch.operations import (
    DcaSwapHandler,
    OperationRegistry,
    OptionsTradeHandler,
    SettlementHandler,
    TransferHandler,
    WriteOptionHandler,
)
from dca_batch.operations.base import FireContext, PreparedOperation
from dca_batch.operations.options_trade import annualized_premium
from dca_batch.operations.settlement import (
    STAGE_SETTLEMENT_SIGNATURE,
    legs_hash,
    payment_legs,
)
from dca_batch.services.authorization_gate import AuthorizationGate
from dca_batch.services.executor import OperationExecutor

from tests.conftest import FIXED_NOW, OWNER, RECIPIENT, TOKEN, TOKEN_OUT, VAULT, make_job
from tests.fakes import FakeAbilityClient, FakePriceOracle, FakeQuoteSource, FakeVaultReader

RPC_URL = "http://rpc.test"
FACTORY = "0x" + "f6" * 20
ROUTER = "0x" + "07" * 20
WETH = "0x4200000000000000000000000000000000000006"
USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
NOW_TS = int(FIXED_NOW.timestamp())


def _inline(fn, *args, phase):
    return fn(*args)


def _ctx(job, reader_call=_inline) -> FireContext:
    return FireContext(job=job, now=FIXED_NOW, reader_call=reader_call)


def _timing_out(fn, *args, phase):
    raise CollaboratorTimeoutError(phase, 1.0)


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_register_and_get(self, tokens):
        registry = OperationRegistry()
        handler = TransferHandler(FakeAbilityClient("erc20-transfer"), tokens, 8453, RPC_URL)
        registry.register(handler)

        assert registry.get(OperationKind.TRANSFER) is handler
        assert OperationKind.TRANSFER in registry
        assert len(registry) == 1
        assert registry.list_kinds() == (OperationKind.TRANSFER,)

    def test_duplicate_rejected(self, tokens):
        registry = OperationRegistry()
        registry.register(TransferHandler(FakeAbilityClient("a"), tokens, 1, RPC_URL))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(TransferHandler(FakeAbilityClient("b"), tokens, 1, RPC_URL))

    def test_unknown_kind(self):
        with pytest.raises(OperationNotRegisteredError):
            OperationRegistry().get(OperationKind.SETTLEMENT)

    def test_skip_helper(self):
        prepared = PreparedOperation.skip("not now", spot="1")
        assert prepared.is_skip
        assert prepared.steps == ()
        assert prepared.terms == {"spot": "1"}


# =============================================================================
# Transfer
# =============================================================================


class TestTransfer:
    @pytest.fixture
    def handler(self, tokens):
        return TransferHandler(
            FakeAbilityClient("erc20-transfer", tx_hash_key="transferTxHash"),
            tokens, 8453, RPC_URL,
        )

    def test_params_and_terms(self, handler):
        prepared = handler.prepare(_ctx(make_job(parameters={
            "recipient_address": RECIPIENT, "token_address": TOKEN, "amount": "2.5",
        })))

        (step,) = prepared.steps
        assert step.ability == "erc20-transfer"
        assert step.tx_hash_key == "transferTxHash"
        assert step.params == {
            "chain": "8453",
            "rpcUrl": RPC_URL,
            "tokenAddress": TOKEN,
            "to": RECIPIENT,
            "amount": str(25 * 10**17),
        }
        assert prepared.terms["balance_before_raw"] == str(10 * 10**18)

    def test_six_decimal_token(self, handler, tokens):
        tokens.set_balance(TOKEN_OUT, OWNER, 10**9)
        prepared = handler.prepare(_ctx(make_job(parameters={
            "recipient_address": RECIPIENT, "token_address": TOKEN_OUT, "amount": "12.345678",
        })))
        assert prepared.steps[0].params["amount"] == "12345678"
        assert prepared.terms["amount"] == "12.345678"

    def test_exact_balance_is_enough(self, handler, tokens):
        tokens.set_balance(TOKEN, OWNER, 10**18)
        prepared = handler.prepare(_ctx(make_job()))
        assert prepared.terms["amount_raw"] == str(10**18)

    def test_shortfall_is_fatal(self, handler, tokens):
        tokens.set_balance(TOKEN, OWNER, 10**18 - 1)
        with pytest.raises(InsufficientBalanceError):
            handler.prepare(_ctx(make_job()))

    def test_missing_amount(self, handler):
        with pytest.raises(ValidationError, match="amount"):
            handler.prepare(_ctx(make_job(parameters={
                "recipient_address": RECIPIENT, "token_address": TOKEN,
            })))

    def test_bad_recipient(self, handler):
        with pytest.raises(InvalidAddressError):
            handler.prepare(_ctx(make_job(parameters={
                "recipient_address": "0x1234", "token_address": TOKEN, "amount": "1",
            })))

    def test_decimals_fallback_logged(self, handler, tokens, captured_logs):
        tokens.decimals_error = ConnectionError("rpc down")
        prepared = handler.prepare(_ctx(make_job()))

        assert prepared.terms["decimals"] == 18
        fallback = [r for r in captured_logs() if r["message"] == "token_decimals_fallback"]
        assert fallback[0]["token_address"] == TOKEN


# =============================================================================
# DCA swap
# =============================================================================


class TestDcaSwap:
    @pytest.fixture
    def handler(self, tokens):
        return DcaSwapHandler(FakeAbilityClient("uniswap-swap"), tokens, 8453, RPC_URL)

    def _job(self, **params):
        base = {"token_in_address": TOKEN, "token_out_address": TOKEN_OUT, "amount_in": "0.5"}
        base.update(params)
        return make_job(kind=OperationKind.DCA_SWAP, parameters=base)

    def test_params(self, handler):
        prepared = handler.prepare(_ctx(self._job()))

        (step,) = prepared.steps
        assert step.tx_hash_key == "swapTxHash"
        assert step.params["tokenInAmount"] == str(5 * 10**17)
        assert step.params["tokenInDecimals"] == 18
        assert step.params["tokenOutDecimals"] == 6
        assert step.params["slippageBps"] == 50
        assert step.params["chainIdForUniswap"] == 8453
        assert prepared.terms["amount_in"] == "0.500000000000000000"

    def test_custom_slippage(self, handler):
        prepared = handler.prepare(_ctx(self._job(slippage_bps=100)))
        assert prepared.terms["slippage_bps"] == 100

    def test_same_token_rejected(self, handler):
        with pytest.raises(ValidationError, match="must differ"):
            handler.prepare(_ctx(self._job(token_out_address=TOKEN)))

    def test_insufficient_token_in(self, handler, tokens):
        tokens.set_balance(TOKEN, OWNER, 0)
        with pytest.raises(InsufficientBalanceError):
            handler.prepare(_ctx(self._job()))

    def test_malformed_slippage_is_fatal(self, handler):
        with pytest.raises(ValidationError, match="slippage_bps"):
            handler.prepare(_ctx(self._job(slippage_bps="fifty")))

    def test_blank_slippage_uses_default(self, handler):
        prepared = handler.prepare(_ctx(self._job(slippage_bps="")))
        assert prepared.steps[0].params["slippageBps"] == 50


# =============================================================================
# Write option
# =============================================================================


def _write_option_job(**overrides):
    params = {
        "vault": VAULT,
        "amount": "100",
        "strike": "3500",
        "expiry": NOW_TS + 7 * 86400,
        "premium_per_unit": "1.25",
        "min_deposit": "10",
        "max_deposit": "1000",
        "valid_until": NOW_TS + 600,
        "quote_id": "quote-7",
        "signature": "0xfeed",
    }
    params.update(overrides)
    return make_job(kind=OperationKind.WRITE_OPTION, parameters=params)


class TestWriteOption:
    @pytest.fixture
    def vault_info(self):
        return VaultTokenInfo(
            deposit_token=TOKEN_OUT,
            conversion_token=TOKEN,
            premium_token=TOKEN_OUT,
            deposit_decimals=6,
            conversion_decimals=18,
            premium_decimals=6,
        )

    def _handler(self, vaults, fallback=True):
        return WriteOptionHandler(
            FakeAbilityClient("erc20-approval"),
            FakeAbilityClient("derifun-write-option"),
            vaults, FACTORY, "base", RPC_URL, vault_info_fallback=fallback,
        )

    def test_each_amount_at_its_own_decimals(self, vault_info):
        prepared = self._handler(FakeVaultReader(info=vault_info)).prepare(
            _ctx(_write_option_job())
        )

        approval, write = prepared.steps
        assert approval.ability == "erc20-approval"
        assert approval.record_as == "approval_tx_hash"
        assert approval.params["tokenAddress"] == TOKEN_OUT
        assert approval.params["spender"] == FACTORY
        assert approval.params["amount"] == str(100 * 10**6)

        assert write.params["amount"] == str(100 * 10**6)
        assert write.params["strike"] == str(3500 * 10**18)
        assert write.params["premiumPerUnit"] == str(1_250_000)
        assert write.params["minDeposit"] == str(10 * 10**6)
        assert write.params["maxDeposit"] == str(1000 * 10**6)
        assert write.params["validUntil"] == str(NOW_TS + 600)
        assert write.params["quoteId"] == "quote-7"
        assert prepared.terms["vault_info_fallback"] is False

    def test_fallback_zero_addresses(self, captured_logs):
        vaults = FakeVaultReader(error=RuntimeError("call reverted"))
        prepared = self._handler(vaults).prepare(_ctx(_write_option_job()))

        assert prepared.terms["deposit_token"] == ZERO_ADDRESS
        assert prepared.terms["deposit_decimals"] == 18
        assert prepared.steps[1].params["premiumPerUnit"] == str(125 * 10**16)
        assert any(r["message"] == "vault_info_fallback" for r in captured_logs())

    def test_fallback_disabled_is_fatal(self):
        vaults = FakeVaultReader(error=RuntimeError("call reverted"))
        with pytest.raises(VaultInfoUnavailableError):
            self._handler(vaults, fallback=False).prepare(_ctx(_write_option_job()))

    def test_timeout_without_fallback_stays_transient(self, vault_info):
        handler = self._handler(FakeVaultReader(info=vault_info), fallback=False)
        with pytest.raises(CollaboratorTimeoutError):
            handler.prepare(_ctx(_write_option_job(), reader_call=_timing_out))

    def test_expired_quote(self, vault_info):
        vaults = FakeVaultReader(info=vault_info)
        with pytest.raises(QuoteExpiredError):
            self._handler(vaults).prepare(_ctx(_write_option_job(valid_until=NOW_TS)))
        assert vaults.calls == []

    def test_malformed_vault(self, vault_info):
        with pytest.raises(InvalidAddressError):
            self._handler(FakeVaultReader(info=vault_info)).prepare(
                _ctx(_write_option_job(vault="not-an-address"))
            )

    @pytest.mark.parametrize("field", ["expiry", "valid_until"])
    @pytest.mark.parametrize("value", ["next friday", True, None])
    def test_malformed_timestamp_is_fatal(self, vault_info, field, value):
        vaults = FakeVaultReader(info=vault_info)
        with pytest.raises(ValidationError, match=field):
            self._handler(vaults).prepare(_ctx(_write_option_job(**{field: value})))
        assert vaults.calls == []


# =============================================================================
# Settlement
# =============================================================================


class TestSettlement:
    FROM = "0x" + "11" * 20
    TO = "0x" + "22" * 20

    def _handler(self, prices):
        return SettlementHandler(
            FakeAbilityClient("evm-transaction-signer"),
            prices, ROUTER, WETH, USDC, 8453, RPC_URL,
        )

    def _job(self, **params):
        base = {"from_address": self.FROM, "to_address": self.TO}
        base.update(params)
        return make_job(kind=OperationKind.SETTLEMENT, parameters=base)

    def test_legs_priced_at_spot(self, prices):
        prepared = self._handler(prices).prepare(_ctx(self._job()))

        assert prepared.terms["weth_amount_raw"] == str(10**18)
        assert prepared.terms["usdc_amount_raw"] == str(3000 * 10**6)
        assert prepared.terms["eth_price"] == "3000"
        assert prepared.terms["valid_until"] == NOW_TS + 3600

        legs = payment_legs(self.FROM, self.TO, WETH, USDC, 10**18, 3000 * 10**6)
        assert prepared.terms["legs_hash"] == legs_hash(legs)

    def test_unsigned_transaction_calldata(self, prices):
        prepared = self._handler(prices).prepare(_ctx(self._job(weth_amount="0.5")))

        (step,) = prepared.steps
        tx = step.params["transaction"]
        assert tx["to"] == ROUTER
        assert tx["chainId"] == 8453
        assert step.tx_hash_key == "transactionHash"

        data = bytes.fromhex(tx["data"][2:])
        assert data[:4] == bytes(Web3.keccak(text=STAGE_SETTLEMENT_SIGNATURE)[:4])
        escrow, legs, valid_for = decode(
            ["address", "(address,address,address,uint256)[]", "uint256"], data[4:],
        )
        assert escrow.lower() == self.FROM
        assert valid_for == 3600
        assert [leg[3] for leg in legs] == [5 * 10**17, 1500 * 10**6]
        assert legs[0][2].lower() == WETH
        assert legs[1][2].lower() == USDC

    def test_price_failure_is_fatal(self):
        with pytest.raises(AuxiliaryDataUnavailableError, match="ETH price"):
            self._handler(FakePriceOracle(error=ConnectionError("429"))).prepare(
                _ctx(self._job())
            )

    def test_price_timeout_is_not_wrapped(self, prices):
        with pytest.raises(CollaboratorTimeoutError):
            self._handler(prices).prepare(_ctx(self._job(), reader_call=_timing_out))

    def test_same_counterparty_rejected(self, prices):
        with pytest.raises(ValidationError):
            self._handler(prices).prepare(_ctx(self._job(to_address=self.FROM)))


# =============================================================================
# Options trade
# =============================================================================


def _options_job(**params):
    base = {
        "vault_address": VAULT,
        "deposit_token": TOKEN_OUT,
        "deposit_amount": "250",
        "expiry": NOW_TS + 365 * 86400,
        "minimum_apy": "5",
        "strike_threshold": "10",
    }
    base.update(params)
    return make_job(kind=OperationKind.OPTIONS_TRADE, parameters=base)


class TestOptionsTrade:
    def _handler(self, quotes, prices, tokens):
        return OptionsTradeHandler(
            FakeAbilityClient("options"), quotes, prices, tokens, 8453, RPC_URL,
        )

    def _job(self, **params):
        return _options_job(**params)

    def _quote(self, premium):
        return FakeQuoteSource(PremiumQuote(
            premium_per_unit=Decimal(premium), signature="0xsig", timestamp=NOW_TS,
        ))

    def test_conditions_met(self, prices, tokens):
        prepared = self._handler(self._quote("3400"), prices, tokens).prepare(
            _ctx(self._job())
        )

        assert not prepared.is_skip
        (step,) = prepared.steps
        assert step.params["depositAmount"] == str(250 * 10**6)
        assert step.params["premiumPerUnit"] == "3400"
        assert step.params["signature"] == "0xsig"
        assert prepared.terms["annualized_premium"] == "340000.00"

    def test_strike_threshold_not_met(self, prices, tokens):
        prepared = self._handler(self._quote("3200"), prices, tokens).prepare(
            _ctx(self._job())
        )
        assert prepared.is_skip
        assert prepared.skip_reason == "strike threshold not met"
        assert prepared.terms["strike_price"] == "3300.0"

    def test_minimum_apy_not_met_after_expiry(self, prices, tokens):
        prepared = self._handler(self._quote("3400"), prices, tokens).prepare(
            _ctx(self._job(expiry=NOW_TS - 1))
        )
        assert prepared.is_skip
        assert prepared.skip_reason == "minimum APY not met"

    def test_quote_failure_is_fatal(self, prices, tokens):
        handler = self._handler(FakeQuoteSource(error=ValueError("bad data")), prices, tokens)
        with pytest.raises(AuxiliaryDataUnavailableError, match="premium data"):
            handler.prepare(_ctx(self._job()))

    def test_malformed_expiry_is_fatal(self, prices, tokens):
        quotes = self._quote("3400")
        with pytest.raises(ValidationError, match="expiry"):
            self._handler(quotes, prices, tokens).prepare(_ctx(self._job(expiry="soon")))
        assert quotes.calls == []

    def test_annualized_premium(self):
        assert annualized_premium(Decimal("5"), NOW_TS + 365 * 86400, NOW_TS) == Decimal(500)
        assert annualized_premium(Decimal("5"), NOW_TS, NOW_TS) == Decimal(0)


class TestExecutorSkipPath:
    def test_skip_leaves_job_enabled(
        self, job_store, record_store, permitted_versions, prices, tokens, clock,
    ):
        client = FakeAbilityClient("options")
        registry = OperationRegistry()
        registry.register(OptionsTradeHandler(
            client,
            FakeQuoteSource(PremiumQuote(Decimal("1"), "0xsig", NOW_TS)),
            prices, tokens, 8453, RPC_URL,
        ))
        executor = OperationExecutor(
            job_store, AuthorizationGate(permitted_versions, job_store), registry,
            record_store, clock=clock,
        )
        job = job_store.create(_options_job())

        result = executor.fire(job.job_id)

        assert result.status == FireStatus.SKIPPED
        assert result.skip_reason == "strike threshold not met"
        assert client.calls == []
        assert job_store.load(job.job_id).enabled
        assert record_store.list_for_schedule(job.job_id) == ()


class TestExecutorMalformedParameters:
    def test_malformed_slippage_disables_job(
        self, job_store, record_store, permitted_versions, tokens, clock,
    ):
        client = FakeAbilityClient("uniswap-swap")
        registry = OperationRegistry()
        registry.register(DcaSwapHandler(client, tokens, 8453, RPC_URL))
        executor = OperationExecutor(
            job_store, AuthorizationGate(permitted_versions, job_store), registry,
            record_store, clock=clock,
        )
        job = job_store.create(make_job(kind=OperationKind.DCA_SWAP, parameters={
            "token_in_address": TOKEN,
            "token_out_address": TOKEN_OUT,
            "amount_in": "0.5",
            "slippage_bps": "fifty",
        }))

        with pytest.raises(OperationDisabledError) as exc_info:
            executor.fire(job.job_id)

        assert isinstance(exc_info.value.__cause__, ValidationError)
        stored = job_store.load(job.job_id)
        assert not stored.enabled
        assert "slippage_bps" in stored.disabled_reason
        assert client.calls == []
