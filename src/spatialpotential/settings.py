"""
Settings bootstrap for spatialpotential.

Configuration lives in YAML so model parameters (decay family, span, beta,
grid resolution, classification) are version-controlled next to the data they
were used on:

- `config/default.yaml` holds the base parameters,
- `config/scenarios/<name>.yaml` overrides only what a scenario changes,
- `.env` may set environment variables without overriding existing ones.

`load_settings()` merges these, creates runtime directories, configures logging
and records where every value came from (`_meta`), so each output can be traced
back to its exact parameters.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from spatialpotential.data.schemas import PotentialRequest
from spatialpotential.log import configure_logging


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    # Never mutate the caller's mapping.
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            # Nested sections merge key by key so a scenario can change just `decay.span`.
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> dict[str, Any]:
    # Missing files mean "no overrides"; scenarios are optional.
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML must be a mapping: {path}")
    return data


def _load_dotenv_if_present(dotenv_path: Path) -> None:
    if not dotenv_path.exists():
        return
    for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        # Values already in the environment win over .env.
        os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def _resolve_project_root(config_path: Path) -> Path:
    config_dir = config_path.resolve().parent
    # config/default.yaml -> project root is the parent of config/.
    if config_dir.name == "config":
        return config_dir.parent
    return config_dir


def load_settings(config_path: Path, scenario: str | None = None) -> dict[str, Any]:
    """
    Load base config and merge a scenario override file if present.
    Also initializes runtime directories and logging.
    """
    config_path = Path(config_path).resolve()
    root = _resolve_project_root(config_path)
    _load_dotenv_if_present(root / ".env")

    settings = _load_yaml(config_path)
    scenario_path = None
    if scenario:
        scenario_path = root / "config" / "scenarios" / f"{scenario}.yaml"
        settings = _deep_merge(settings, _load_yaml(scenario_path))

    project = settings.setdefault("project", {})
    # SPATIALPOTENTIAL_OUTPUTS_DIR lets batch jobs redirect outputs without editing YAML.
    outputs_dir = os.getenv("SPATIALPOTENTIAL_OUTPUTS_DIR") or project.get("outputs_dir", "outputs")
    paths = {
        "root": root,
        "outputs_dir": root / outputs_dir,
        "logs_dir": root / project.get("logs_dir", "logs"),
    }
    for key in ("outputs_dir", "logs_dir"):
        paths[key].mkdir(parents=True, exist_ok=True)

    logger = configure_logging(paths["logs_dir"], level=str(project.get("log_level", "INFO")))

    settings["_meta"] = {
        "config_path": str(config_path),
        "scenario": scenario,
        "scenario_path": str(scenario_path) if scenario_path else None,
    }
    settings["paths"] = {k: str(v) for k, v in paths.items()}
    logger.info("Loaded settings: config=%s scenario=%s", config_path, scenario)
    return settings


def build_request(settings: dict[str, Any], **overrides: Any) -> PotentialRequest:
    """
    Turn the YAML sections into a validated request; keyword overrides (CLI flags) win.
    `None` overrides are ignored so unset flags fall back to the config.
    """
    decay = settings.get("decay", {}) or {}
    grid = settings.get("grid", {}) or {}
    distance = settings.get("distance", {}) or {}
    classify = settings.get("classify", {}) or {}

    data: dict[str, Any] = {
        "family": decay.get("family", "exponential"),
        "span": decay.get("span"),
        "beta": decay.get("beta"),
        "variables": list(settings.get("variables", []) or []),
        "frame": distance.get("frame", "planar"),
        "metric": distance.get("metric", "euclidean"),
        "workers": distance.get("workers", 1),
        "chunk_size": distance.get("chunk_size", 4096),
        "max_pairs": distance.get("max_pairs", 100_000_000),
        "resolution": grid.get("resolution"),
        "buffer": grid.get("buffer"),
        "max_cells": grid.get("max_cells", 1_000_000),
        "breaks_method": classify.get("method", "quantile"),
        "nclass": classify.get("nclass", 8),
        "breaks": classify.get("breaks"),
        "comparable": classify.get("comparable", True),
    }
    data.update({k: v for k, v in overrides.items() if v is not None})
    return PotentialRequest.parse(data)
