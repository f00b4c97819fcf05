"""Configuration loader for Plansmith."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict
import os
import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "plansmith" / "config.yaml"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config() -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if DEFAULT_CONFIG_PATH.exists():
        data = yaml.safe_load(DEFAULT_CONFIG_PATH.read_text()) or {}
    if USER_CONFIG_PATH.exists():
        override = yaml.safe_load(USER_CONFIG_PATH.read_text()) or {}
        data = _deep_merge(data, override)

    # Environment overrides - Server
    host = os.getenv("PLANSMITH_HOST")
    port = os.getenv("PLANSMITH_PORT")
    if host:
        data.setdefault("server", {})["host"] = host
    if port:
        try:
            data.setdefault("server", {})["port"] = int(port)
        except ValueError:
            pass

    # Environment overrides - Data directory
    data_dir = os.getenv("PLANSMITH_DATA_DIR")
    if data_dir:
        data["data_dir"] = data_dir

    # Environment overrides - Indicators source
    indicators_url = os.getenv("PLANSMITH_INDICATORS_URL")
    if indicators_url:
        data.setdefault("indicators", {})["base_url"] = indicators_url

    # Environment overrides - Scoring
    hard_fail = os.getenv("PLANSMITH_HARD_FAIL_ON_ZERO")
    if hard_fail is not None:
        data.setdefault("scoring", {})["hard_fail_on_zero"] = hard_fail.lower() in ("true", "1", "yes")

    # Environment overrides - Pipeline timeouts
    call_timeout = os.getenv("PLANSMITH_CALL_TIMEOUT")
    if call_timeout:
        try:
            data.setdefault("pipeline", {})["call_timeout_seconds"] = float(call_timeout)
        except ValueError:
            pass

    strategy_timeout = os.getenv("PLANSMITH_STRATEGY_TIMEOUT")
    if strategy_timeout:
        try:
            data.setdefault("generator", {})["strategy_timeout_seconds"] = float(strategy_timeout)
        except ValueError:
            pass

    return data


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def server(self) -> Dict[str, Any]:
        return self.raw.get("server", {})

    @property
    def data_dir(self) -> Path:
        default = str(Path.home() / ".plansmith")
        return Path(self.raw.get("data_dir") or default).expanduser()

    @property
    def encoder(self) -> Dict[str, Any]:
        return self.raw.get("encoder", {})

    @property
    def lexicon(self) -> Dict[str, Any]:
        return self.raw.get("lexicon", {})

    @property
    def regimes(self) -> Dict[str, Any]:
        return self.raw.get("regimes", {})

    @property
    def catalog(self) -> list[dict]:
        return self.raw.get("catalog", [])

    @property
    def generator(self) -> Dict[str, Any]:
        return self.raw.get("generator", {})

    @property
    def scoring(self) -> Dict[str, Any]:
        return self.raw.get("scoring", {})

    @property
    def selection(self) -> Dict[str, Any]:
        return self.raw.get("selection", {})

    @property
    def feedback(self) -> Dict[str, Any]:
        return self.raw.get("feedback", {})

    @property
    def indicators(self) -> Dict[str, Any]:
        return self.raw.get("indicators", {})

    @property
    def pipeline(self) -> Dict[str, Any]:
        return self.raw.get("pipeline", {})

    @property
    def call_timeout_seconds(self) -> float:
        """Overall budget for one synthesis call in seconds. Default 2 seconds."""
        return float(self.pipeline.get("call_timeout_seconds", 2.0))

    @property
    def strategy_timeout_seconds(self) -> float:
        """Budget for the strategy fan-out in seconds. Default half a second."""
        return float(self.generator.get("strategy_timeout_seconds", 0.5))

    @property
    def candidate_cache_size(self) -> int:
        return int(self.pipeline.get("candidate_cache_size", 512))


def get_config() -> Config:
    return Config(load_config())
