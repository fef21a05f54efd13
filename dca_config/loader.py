"""
Configuration Loader (``dca_config.loader``).

Responsibility
--------------
Loads the YAML configuration file, applies ``DCA_*`` environment
overrides and parses the result into typed ``dca_config.schema``
dataclasses.  The single public entry point for runtime config is
``dca_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective configuration, secrets excluded.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Non-numeric override for a numeric field  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from dca_config.schema import (
    ChainConfig,
    ClassifierConfig,
    EndpointConfig,
    ExecutorConfig,
    SchedulerConfig,
    TimeoutConfig,
)

SECRET_KEYS = frozenset({"ability_api_key"})


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Cannot parse boolean from {value!r}")


# (environment variable, path into the config dict, converter)
ENV_OVERRIDES: tuple[tuple[str, tuple[str, ...], Callable[[str], Any]], ...] = (
    ("DCA_APP_ID", ("app_id",), int),
    ("DCA_DATABASE_URL", ("database_url",), str),
    ("DCA_VAULT_INFO_FALLBACK", ("vault_info_fallback",), parse_bool),
    ("DCA_CHAIN_ID", ("chain", "chain_id"), int),
    ("DCA_CHAIN_NAME", ("chain", "chain_name"), str),
    ("DCA_RPC_URL", ("chain", "rpc_url"), str),
    ("DCA_ABILITY_BASE_URL", ("endpoints", "ability_base_url"), str),
    ("DCA_ABILITY_API_KEY", ("endpoints", "ability_api_key"), str),
    ("DCA_PRICE_ORACLE_URL", ("endpoints", "price_oracle_url"), str),
    ("DCA_PREMIUM_QUOTE_URL", ("endpoints", "premium_quote_url"), str),
    ("DCA_CALL_TIMEOUT_SECONDS", ("timeouts", "call_seconds"), float),
    ("DCA_PERSISTENCE_TIMEOUT_SECONDS", ("timeouts", "persistence_seconds"), float),
    ("DCA_TICK_INTERVAL_SECONDS", ("scheduler", "tick_interval_seconds"), float),
    ("DCA_MAX_PARALLEL_FIRES", ("scheduler", "max_parallel_fires"), int),
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def apply_env_overrides(
    data: dict[str, Any], environ: Mapping[str, str],
) -> dict[str, Any]:
    """Return a copy of ``data`` with every set ``DCA_*`` override applied."""
    result = copy.deepcopy(data)
    for name, path, convert in ENV_OVERRIDES:
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from exc
        target = result
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = value
    return result


def parse_chain(data: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        chain_id=int(data["chain_id"]),
        chain_name=data["chain_name"],
        rpc_url=data["rpc_url"],
        vault_factory_address=data.get("vault_factory_address", ""),
        settlement_router_address=data.get("settlement_router_address", ""),
        weth_address=data.get("weth_address", ""),
        usdc_address=data.get("usdc_address", ""),
    )


def parse_endpoints(data: dict[str, Any]) -> EndpointConfig:
    defaults = EndpointConfig(ability_base_url="")
    return EndpointConfig(
        ability_base_url=data["ability_base_url"],
        ability_api_key=data.get("ability_api_key"),
        price_oracle_url=data.get("price_oracle_url") or defaults.price_oracle_url,
        premium_quote_url=data.get("premium_quote_url"),
        price_asset=data.get("price_asset") or defaults.price_asset,
    )


def parse_timeouts(data: dict[str, Any]) -> TimeoutConfig:
    defaults = TimeoutConfig()
    return TimeoutConfig(
        call_seconds=float(data.get("call_seconds", defaults.call_seconds)),
        persistence_seconds=float(
            data.get("persistence_seconds", defaults.persistence_seconds)
        ),
        http_request_seconds=float(
            data.get("http_request_seconds", defaults.http_request_seconds)
        ),
    )


def parse_scheduler(data: dict[str, Any]) -> SchedulerConfig:
    defaults = SchedulerConfig()
    batch_limit = data.get("batch_limit")
    max_parallel = int(data.get("max_parallel_fires", defaults.max_parallel_fires))
    if max_parallel < 1:
        raise ValueError(f"max_parallel_fires must be at least 1, got {max_parallel}")
    return SchedulerConfig(
        tick_interval_seconds=float(
            data.get("tick_interval_seconds", defaults.tick_interval_seconds)
        ),
        max_parallel_fires=max_parallel,
        batch_limit=int(batch_limit) if batch_limit is not None else None,
        lock_lifetime_seconds=int(
            data.get("lock_lifetime_seconds", defaults.lock_lifetime_seconds)
        ),
    )


def parse_classifier(data: dict[str, Any]) -> ClassifierConfig:
    return ClassifierConfig(
        common_markers=tuple(str(m) for m in data.get("common_markers") or ()),
        kind_markers={
            str(kind): tuple(str(m) for m in markers or ())
            for kind, markers in (data.get("kind_markers") or {}).items()
        },
    )


def parse_config(data: dict[str, Any]) -> ExecutorConfig:
    """
    Parse the effective config dict into an ``ExecutorConfig``.

    Raises:
        KeyError: if ``app_id``, ``database_url``, ``chain`` or
            ``endpoints`` (or their required keys) are missing.
    """
    return ExecutorConfig(
        app_id=int(data["app_id"]),
        database_url=data["database_url"],
        chain=parse_chain(data["chain"]),
        endpoints=parse_endpoints(data["endpoints"]),
        timeouts=parse_timeouts(data.get("timeouts") or {}),
        scheduler=parse_scheduler(data.get("scheduler") or {}),
        classifier=parse_classifier(data.get("classifier") or {}),
        vault_info_fallback=parse_bool(data.get("vault_info_fallback", True)),
        checksum=compute_checksum(data),
    )


def redact(data: Any) -> Any:
    """Copy of ``data`` without secret keys, at any depth."""
    if isinstance(data, dict):
        return {k: redact(v) for k, v in data.items() if k not in SECRET_KEYS}
    if isinstance(data, list):
        return [redact(v) for v in data]
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 of the canonical JSON serialization, secrets excluded.

    Identical effective configuration always produces identical checksums.
    """
    canonical = json.dumps(redact(data), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
