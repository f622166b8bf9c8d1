"""
ether_gbm: Live GBM Target-Probability Engine

Estimates the probability that a live asset price finishes on the far side
of a chosen target within a chosen horizon, modelling price as Geometric
Brownian Motion, and projects the forward 1/2/3-sigma probability cone.
Live spot comes from a trade stream, volatility from an implied-volatility
index with a flagged constant fallback.
"""

__version__ = "1.0.0"

__all__ = [
    # Config
    "PipelineConfig",
    "FeedConfig",
    "VolatilityConfig",
    "ModelConfig",
    "OutputConfig",
    "load_config",
    # Model
    "normal_cdf",
    "ModelInputs",
    "ModelOutputs",
    "GbmParameters",
    "InvalidInputError",
    "derive_parameters",
    "terminal_probability",
    "target_direction",
    "evaluate",
    # Projection
    "ProjectionPoint",
    "project_cone",
    "cone_to_frame",
    # Session
    "MarketState",
    "HistoryPoint",
    "ModelSnapshot",
    "ModelSession",
    # Data
    "parse_trade_message",
    "parse_volatility_response",
    "stream_prices",
    "poll_volatility",
    # Output
    "write_outputs",
    "format_notebook",
]

from .config import (
    PipelineConfig,
    FeedConfig,
    VolatilityConfig,
    ModelConfig,
    OutputConfig,
    load_config,
)
from .normal import normal_cdf
from .gbm import (
    ModelInputs,
    ModelOutputs,
    GbmParameters,
    InvalidInputError,
    derive_parameters,
    terminal_probability,
    target_direction,
    evaluate,
)
from .projection import ProjectionPoint, project_cone, cone_to_frame
from .market_state import MarketState, HistoryPoint, ModelSnapshot, ModelSession
from .data_layer import parse_trade_message, parse_volatility_response, stream_prices, poll_volatility
from .output import write_outputs, format_notebook
