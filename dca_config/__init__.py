"""
dca_config -- single public entrypoint for executor configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or ``DCA_*`` environment variables directly.

Architecture position:
    Sits beside ``dca_batch``; the kernel never imports from
    ``dca_config``.  ``DcaOrchestrator.from_config`` consumes the result.

Failure modes:
    - ``FileNotFoundError`` -- the configured YAML file does not exist.
    - ``ValueError`` / ``KeyError`` -- malformed or incomplete config.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``config_loaded`` log entry with the checksum of the effective
    configuration, so each fire can be tied to the settings it ran under.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from dca_config.loader import apply_env_overrides, load_yaml_file, parse_config
from dca_config.schema import (
    ChainConfig,
    ClassifierConfig,
    EndpointConfig,
    ExecutorConfig,
    SchedulerConfig,
    TimeoutConfig,
)

_logger = logging.getLogger("dca_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ExecutorConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to ``DCA_CONFIG_PATH`` if set,
            else the packaged ``defaults.yaml``.
        environ: Environment to read overrides from (default
            ``os.environ``).

    Returns:
        The effective ``ExecutorConfig``.
    """
    env = os.environ if environ is None else environ
    source = Path(path or env.get("DCA_CONFIG_PATH") or DEFAULT_CONFIG_PATH)

    data = apply_env_overrides(load_yaml_file(source), env)
    config = parse_config(data)

    _logger.info(
        "config_loaded",
        extra={
            "config_path": str(source),
            "checksum": config.checksum,
            "app_id": config.app_id,
            "chain_id": config.chain.chain_id,
        },
    )
    return config


__all__ = [
    "ChainConfig",
    "ClassifierConfig",
    "EndpointConfig",
    "ExecutorConfig",
    "SchedulerConfig",
    "TimeoutConfig",
    "get_active_config",
]
