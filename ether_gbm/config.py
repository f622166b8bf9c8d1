"""Configuration loading and validation."""

import yaml
from dataclasses import dataclass, field
from typing import List, Optional

from .gbm import BIASES


@dataclass
class FeedConfig:
    symbol: str = "ethusdt"
    url_template: str = "wss://stream.binance.com:9443/ws/{symbol}@trade"
    history_len: int = 150           # trailing ticks kept for display only
    reconnect_max_delay: float = 30.0

    @property
    def url(self) -> str:
        return self.url_template.format(symbol=self.symbol.lower())


@dataclass
class VolatilityConfig:
    url: str = "https://www.deribit.com/api/v2/public/get_dvol_index"
    index_name: str = "eth_dvol"
    poll_interval: float = 60.0      # seconds between refreshes
    timeout: float = 10.0
    fallback_pct: float = 60.0       # used (and flagged "estimated") when the index is unavailable
    max_pct: float = 1000.0          # readings and overrides above this are rejected


@dataclass
class ModelConfig:
    steps: int = 40                  # cone resolution
    default_target: Optional[float] = None
    initial_target_mult: float = 0.998  # first price seeds target = round(spot * mult)
    horizon_minutes: float = 10.0
    horizon_bounds: List[float] = field(default_factory=lambda: [1.0, 1440.0])
    bias: str = "neutral"


@dataclass
class OutputConfig:
    base_dir: str = "outputs"
    charts: bool = True


@dataclass
class PipelineConfig:
    feed: FeedConfig = field(default_factory=FeedConfig)
    volatility: VolatilityConfig = field(default_factory=VolatilityConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


def load_config(path: str) -> PipelineConfig:
    """Load and validate configuration from a YAML file."""
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}

    cfg = PipelineConfig()

    for section in ("feed", "volatility", "model", "output"):
        if section not in raw:
            continue
        target = getattr(cfg, section)
        for k, v in (raw[section] or {}).items():
            if v is not None and hasattr(target, k):
                setattr(target, k, v)

    _validate(cfg)
    return cfg


def _validate(cfg: PipelineConfig):
    """Validate configuration constraints."""
    assert "{symbol}" in cfg.feed.url_template, "url_template must contain {symbol}"
    assert cfg.feed.history_len >= 1, "history_len must be >= 1"
    assert cfg.feed.reconnect_max_delay > 0, "reconnect_max_delay must be positive"

    assert cfg.volatility.poll_interval > 0, "poll_interval must be positive"
    assert cfg.volatility.timeout > 0, "timeout must be positive"
    assert cfg.volatility.fallback_pct > 0, "fallback_pct must be positive"
    assert cfg.volatility.max_pct >= cfg.volatility.fallback_pct, "max_pct must be >= fallback_pct"

    assert cfg.model.steps >= 1, "steps must be >= 1"
    assert cfg.model.initial_target_mult > 0, "initial_target_mult must be positive"
    if cfg.model.default_target is not None:
        assert cfg.model.default_target > 0, "default_target must be positive"
    assert len(cfg.model.horizon_bounds) == 2, "horizon_bounds must be [min, max]"
    lo, hi = cfg.model.horizon_bounds
    assert 0 < lo <= hi, f"horizon_bounds must satisfy 0 < min <= max, got {cfg.model.horizon_bounds}"
    assert lo <= cfg.model.horizon_minutes <= hi, \
        f"horizon_minutes {cfg.model.horizon_minutes} outside bounds {cfg.model.horizon_bounds}"
    assert cfg.model.bias in BIASES, \
        f"bias must be one of {BIASES}, got {cfg.model.bias!r}"
