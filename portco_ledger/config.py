"""Configuration management for portco-ledger.

This module centralizes file-system paths, environment variables, and split
configuration loaders used by the ingestion and reconciliation pipeline.

Split configuration files
-------------------------
* ``config.json``: document service providers, grid limits, number formats,
  source priorities, and canonicalization thresholds
* ``canonical_metrics.json``: canonical metric vocabulary and static synonyms
* ``guides/<company>.json``: optional company-specific extraction guides

Environment variables
---------------------
``DATA_DIR``, ``AUDIT_DIR``, ``LOGS_DIR``, and ``CACHE_DIR`` override default
directories; the Document Understanding Service relies on ``OPENROUTER_API_KEY``
(OpenAI-compatible) with ``MISTRAL_API_KEY`` as a fallback provider.
Directories are created eagerly on import so downstream callers can rely on
their existence.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, cast

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = Path(os.getenv("CONFIG_DIR", PROJECT_ROOT / "config"))
GUIDES_DIR = CONFIG_DIR / "guides"
DATA_DIR = Path(os.getenv("DATA_DIR", PROJECT_ROOT / "data"))
AUDIT_DIR = Path(os.getenv("AUDIT_DIR", PROJECT_ROOT / "audit"))
LOGS_DIR = Path(os.getenv("LOGS_DIR", PROJECT_ROOT / "logs"))
CACHE_DIR = Path(os.getenv("CACHE_DIR", DATA_DIR / "cache"))

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
AUDIT_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)
CACHE_DIR.mkdir(parents=True, exist_ok=True)

# API Keys
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
MISTRAL_API_KEY = os.getenv("MISTRAL_API_KEY", "")

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def _load_json_config(path: Path, label: str) -> dict[str, Any]:
    """Read a JSON configuration file, raising a descriptive error if absent."""
    if not path.exists():
        msg = f"{label} not found: {path}"
        raise FileNotFoundError(msg)

    with path.open(encoding="utf-8") as f:
        return json.load(f)  # type: ignore[no-any-return]


def get_config() -> dict[str, Any]:
    """Load the primary project configuration.

    Returns
    -------
    dict[str, Any]
        Parsed contents of ``config/config.json``.

    Raises
    ------
    FileNotFoundError
        If ``config/config.json`` is missing.
    json.JSONDecodeError
        If the file exists but is not valid JSON.
    """
    return _load_json_config(CONFIG_DIR / "config.json", "Configuration file")


def get_canonical_metrics() -> dict[str, Any]:
    """Load the canonical metric vocabulary and static synonym table.

    Returns
    -------
    dict[str, Any]
        Mapping with ``vocabulary`` (category → metric ids) and ``synonyms``
        (snake_case label → canonical id).

    Raises
    ------
    FileNotFoundError
        If ``config/canonical_metrics.json`` is missing.
    """
    return _load_json_config(CONFIG_DIR / "canonical_metrics.json", "Canonical metrics")


def get_section(section: str) -> dict[str, Any]:
    """Return one top-level section of ``config.json`` (empty if absent)."""
    return cast("dict[str, Any]", get_config().get(section, {}))


def get_decimal_comma_currencies() -> frozenset[str]:
    """Return currency codes whose documents use ``,`` as decimal separator."""
    formats = get_section("number_formats")
    return frozenset(c.upper() for c in formats.get("decimal_comma_currencies", []))


def get_default_currency() -> str:
    """Return the currency hint used when a guide does not name one."""
    return cast("str", get_section("number_formats").get("default_currency", "USD"))


def get_default_target_metrics() -> list[str]:
    """Return metric ids sought in documents when no guide is available."""
    return cast("list[str]", get_config().get("default_target_metrics", []))


def setup_logging(name: str = "portco_ledger") -> logging.Logger:
    """Configure a console+file logger if not already present.

    Parameters
    ----------
    name : str, optional
        Logger namespace; reused to avoid duplicate handlers.

    Returns
    -------
    logging.Logger
        Logger with INFO-level console handler and DEBUG-level daily file
        handler under ``LOGS_DIR``.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_format = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
        console_handler.setFormatter(console_format)
        logger.addHandler(console_handler)

        # File handler
        log_filename = f"{datetime.now(UTC).strftime('%Y-%m-%d')}_run.log"
        file_handler = logging.FileHandler(LOGS_DIR / log_filename)
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)

    return logger


def validate_api_keys() -> dict[str, bool]:
    """Report availability of Document Understanding Service API keys.

    Returns
    -------
    dict[str, bool]
        Flags for ``openrouter`` and ``mistral`` indicating whether the
        corresponding environment variables are set.
    """
    return {
        "openrouter": bool(OPENROUTER_API_KEY),
        "mistral": bool(MISTRAL_API_KEY),
    }


def get_openrouter_client(timeout_seconds: float = 60.0) -> Any:
    """Instantiate an OpenAI-compatible client against OpenRouter.

    Parameters
    ----------
    timeout_seconds : float, optional
        Upper bound for a single request, including reading the response.

    Returns
    -------
    openai.OpenAI
        Client configured with ``OPENROUTER_API_KEY`` and OpenRouter base URL.

    Raises
    ------
    ValueError
        If ``OPENROUTER_API_KEY`` is absent.
    """
    if not OPENROUTER_API_KEY:
        msg = "OPENROUTER_API_KEY is not set"
        raise ValueError(msg)

    import httpx
    from openai import OpenAI

    return OpenAI(
        api_key=OPENROUTER_API_KEY,
        base_url=OPENROUTER_BASE_URL,
        timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
        max_retries=0,
    )


def get_mistral_client(timeout_seconds: float = 60.0) -> Any:
    """Instantiate the synchronous Mistral SDK client.

    Parameters
    ----------
    timeout_seconds : float, optional
        Upper bound for a single request.

    Returns
    -------
    mistralai.Mistral
        Client configured with ``MISTRAL_API_KEY`` for chat completions.

    Raises
    ------
    ValueError
        If ``MISTRAL_API_KEY`` is absent.
    """
    if not MISTRAL_API_KEY:
        msg = "MISTRAL_API_KEY is not set"
        raise ValueError(msg)

    from mistralai import Mistral

    return Mistral(api_key=MISTRAL_API_KEY, timeout_ms=int(timeout_seconds * 1000))


# =============================================================================
# Company Guides
# =============================================================================


def get_guide_path(company: str) -> Path:
    """Return the expected path of a company's extraction guide."""
    return GUIDES_DIR / f"{company}.json"


def list_configured_companies() -> list[str]:
    """Return company slugs that ship an extraction guide, sorted."""
    if not GUIDES_DIR.exists():
        return []
    return sorted(p.stem for p in GUIDES_DIR.glob("*.json"))


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries, allowing overrides in ``overlay``.

    Parameters
    ----------
    base : dict[str, Any]
        Original mapping.
    overlay : dict[str, Any]
        Values that override or extend ``base``.

    Returns
    -------
    dict[str, Any]
        New merged mapping.
    """
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_merged_section(section: str, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a config section with caller overrides deep-merged on top."""
    return _deep_merge(get_section(section), overrides or {})
