"""
approval_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the only way to obtain configuration at runtime through
    ``get_active_config()``: engine settings (database, request-number
    format, pagination) and the seedable template catalog.

Architecture position:
    Configuration -- YAML-driven.  This package sits above
    ``approval_kernel``.  The kernel never imports from
    ``approval_config``; ``EngineSettings.workflow_options()`` translates
    settings into the kernel's ``WorkflowOptions``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema or structural errors.

Audit relevance:
    Every successful call emits an ``approval_config_loaded`` log entry
    with the config id, version, checksum and template count.
"""

from __future__ import annotations

import os
from pathlib import Path

from approval_config.loader import load_config_file
from approval_config.schema import ActiveConfig, CatalogSeed, EngineSettings, TemplateSeed
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_ENV_VAR = "APPROVAL_CONFIG"


def get_active_config(config_path: Path | str | None = None) -> ActiveConfig:
    """The only public configuration entrypoint.

    Args:
        config_path: YAML document to load.  Defaults to the
            ``APPROVAL_CONFIG`` environment variable, then to
            ``approval_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the document does not exist.
        ValueError: If validation fails.
    """
    path = Path(config_path or os.environ.get(CONFIG_ENV_VAR) or _DEFAULT_CONFIG_PATH)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    config = load_config_file(path)
    _logger.info(
        "approval_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "template_count": len(config.catalog.templates),
        },
    )
    return config


__all__ = [
    "ActiveConfig",
    "CatalogSeed",
    "EngineSettings",
    "TemplateSeed",
    "get_active_config",
]
