"""
Valuation source declarations (YAML).

Example:

    sources:
      - name: realty_mole
        type: http_json
        url: https://api.realtymole.com/api/v1/avm
        params: {address: "123 Main St"}
        api_key_env: REALTY_MOLE_API_KEY
        api_key_param: apiKey
        value_path: avm.value
        confidence_path: avm.confidence
        default_confidence: 0.75
        weight: 0.3
      - name: appraisal_2024
        type: static
        value: 1000000
        confidence: 0.85
        weight: 0.4

A source whose api_key_env is not set is skipped with a warning.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import yaml

from offerbot.errors import StartupError
from offerbot.oracle.sources import HttpJsonPriceSource, PriceSource, StaticPriceSource

log = logging.getLogger("offerbot")


def _optional_float(entry: Dict[str, Any], key: str) -> Optional[float]:
    raw = entry.get(key)
    return None if raw is None else float(raw)


def build_source(entry: Dict[str, Any], timeout: float, client: Optional[httpx.AsyncClient] = None) -> Optional[PriceSource]:
    """One YAML entry -> one source, or None when it is disabled / lacks its key."""
    name = str(entry.get("name") or "").strip()
    if not name:
        raise StartupError(f"valuation source without a name: {entry!r}")
    if not entry.get("enabled", True):
        log.info(json.dumps({"event": "source_disabled", "source": name}))
        return None

    kind = entry.get("type", "http_json")
    try:
        if kind == "static":
            return StaticPriceSource(
                name=name,
                value=float(entry["value"]),
                confidence=float(entry.get("confidence", 0.75)),
                weight=_optional_float(entry, "weight"),
            )
        if kind == "http_json":
            api_key = None
            key_env = entry.get("api_key_env")
            if key_env:
                api_key = os.getenv(key_env)
                if not api_key:
                    log.warning(json.dumps({"event": "source_skipped", "source": name, "reason": f"{key_env} not set"}))
                    return None
            return HttpJsonPriceSource(
                name=name,
                url=str(entry["url"]),
                value_path=str(entry["value_path"]),
                confidence_path=entry.get("confidence_path"),
                default_confidence=float(entry.get("default_confidence", 0.75)),
                weight=_optional_float(entry, "weight"),
                params=entry.get("params") or {},
                headers=entry.get("headers") or {},
                api_key=api_key,
                api_key_param=entry.get("api_key_param"),
                timeout=float(entry.get("timeout_sec", timeout)),
                client=client,
            )
    except KeyError as exc:
        raise StartupError(f"valuation source {name!r} is missing {exc.args[0]!r}") from exc
    except (TypeError, ValueError) as exc:
        raise StartupError(f"valuation source {name!r} is invalid: {exc}") from exc

    raise StartupError(f"valuation source {name!r} has unknown type {kind!r}")


def load_sources(path: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> List[PriceSource]:
    """Read the YAML source list. A missing file yields no sources."""
    file_path = Path(path)
    if not file_path.is_file():
        log.warning(json.dumps({"event": "sources_file_missing", "path": path}))
        return []
    try:
        doc = yaml.safe_load(file_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise StartupError(f"cannot parse {path}: {exc}") from exc

    entries = doc.get("sources", []) if isinstance(doc, dict) else doc
    if not isinstance(entries, list):
        raise StartupError(f"{path}: 'sources' must be a list")

    sources: List[PriceSource] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise StartupError(f"{path}: every source must be a mapping, got {entry!r}")
        source = build_source(entry, timeout, client)
        if source is not None:
            sources.append(source)

    names = [s.name for s in sources]
    if len(set(names)) != len(names):
        raise StartupError(f"{path}: duplicate source names in {names}")
    log.info(json.dumps({"event": "sources_loaded", "path": path, "sources": names}))
    return sources
