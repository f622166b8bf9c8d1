"""
Output generation: JSON summary, CSV cone/history, matplotlib cone chart,
and a plain-text "solution notebook" that walks through the calculation.

Files written to <base_dir>/<run_id>/:
    summary.json     inputs, outputs, provenance flags
    cone.csv         one row per projection point
    history.csv      trailing observed ticks
    charts/cone.png  history + mean path + 1/2/3-sigma bands + target line
"""

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict

import numpy as np
import pandas as pd

from .gbm import ABOVE
from .market_state import ModelSnapshot
from .projection import SIGMA_LEVELS, cone_to_frame

logger = logging.getLogger(__name__)

_STYLE = {
    "figure.facecolor": "#FAFAFA",
    "axes.facecolor": "#FFFFFF",
    "axes.edgecolor": "#CCCCCC",
    "axes.grid": True,
    "grid.alpha": 0.25,
    "grid.color": "#CCCCCC",
    "font.size": 10,
    "axes.titlesize": 12,
    "axes.labelsize": 10,
    "legend.fontsize": 8,
    "legend.framealpha": 0.9,
}

_COLOR_PRICE = "#3B82F6"
_COLOR_MEAN = "#A5B4FC"
_COLOR_ABOVE = "#10B981"
_COLOR_BELOW = "#EF4444"
_BAND_COLORS = {1: "#0EA5E9", 2: "#4338CA", 3: "#7E22CE"}
_BAND_ALPHA = {1: 0.25, 2: 0.15, 3: 0.08}
_BAND_LABELS = {1: "1σ (68%)", 2: "2σ (95%)", 3: "3σ (99.7%)"}


def snapshot_to_dict(snapshot: ModelSnapshot) -> Dict[str, Any]:
    """Flatten a snapshot into JSON-friendly primitives (cone and history excluded)."""
    inp, out, mkt = snapshot.inputs, snapshot.outputs, snapshot.market
    return {
        "anchor": snapshot.anchor.isoformat(),
        "market": {
            "spot": mkt.spot,
            "price_status": mkt.price_status,
            "volatility_pct": mkt.volatility_pct,
            "volatility_source": mkt.volatility_source,
        },
        "inputs": {
            "spot": inp.spot,
            "target": inp.target,
            "horizon_minutes": inp.horizon_minutes,
            "volatility_pct": inp.volatility_pct,
            "bias": inp.bias,
        },
        "outputs": {
            "mu": out.mu,
            "sigma": out.sigma,
            "t_years": out.t_years,
            "log_distance": out.log_distance,
            "drift_rate": out.drift_rate,
            "drift_term": out.drift_term,
            "diffusion_term": out.diffusion_term,
            "z_score": out.z_score if math.isfinite(out.z_score) else None,
            "probability": out.probability,
            "direction": out.direction,
            "degenerate": out.is_degenerate,
        },
        "unit_convention": {
            "volatility_pct": "annualized volatility in percent",
            "sigma": "volatility_pct / 100",
            "t_years": "horizon_minutes / 525600",
            "probability": "P(terminal price on the target side of spot)",
        },
        "cone_points": len(snapshot.cone),
        "history_points": len(snapshot.history),
    }


def history_to_frame(snapshot: ModelSnapshot) -> pd.DataFrame:
    return pd.DataFrame({
        "timestamp": [h.timestamp for h in snapshot.history],
        "price": [h.price for h in snapshot.history],
        "is_latest": [h.is_latest for h in snapshot.history],
    })


def write_outputs(snapshot: ModelSnapshot, cfg, run_id: str) -> Path:
    """
    Write all output files to <base_dir>/<run_id>/.

    Returns the output directory path.
    """
    out_dir = Path(cfg.output.base_dir) / run_id
    out_dir.mkdir(parents=True, exist_ok=True)

    summary_path = out_dir / "summary.json"
    summary = snapshot_to_dict(snapshot)
    summary["run_id"] = run_id
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2, default=_json_serializer)
    logger.info("Wrote %s", summary_path)

    cone_path = out_dir / "cone.csv"
    cone_df = cone_to_frame(snapshot.cone, anchor=snapshot.anchor)
    cone_df.to_csv(cone_path, index=False)
    logger.info("Wrote %s (%d rows)", cone_path, len(cone_df))

    history_path = out_dir / "history.csv"
    history_to_frame(snapshot).to_csv(history_path, index=False)
    logger.info("Wrote %s (%d rows)", history_path, len(snapshot.history))

    if cfg.output.charts:
        charts_dir = out_dir / "charts"
        charts_dir.mkdir(parents=True, exist_ok=True)
        _chart_cone(snapshot, cone_df, charts_dir)

    return out_dir


def _json_serializer(obj):
    """Handle numpy types and non-finite floats in JSON serialization."""
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating,)):
        return float(obj) if np.isfinite(obj) else None
    return str(obj)


def _chart_cone(snapshot: ModelSnapshot, cone_df: pd.DataFrame, charts_dir: Path):
    """History line feeding into the projected cone, with the target marked."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    plt.rcParams.update(_STYLE)
    fig, ax = plt.subplots(figsize=(14, 6))

    times = pd.to_datetime(cone_df["timestamp"])
    # Widest band first so the narrower ones draw on top
    for n in sorted(SIGMA_LEVELS, reverse=True):
        ax.fill_between(
            times, cone_df[f"sigma{n}_lower"], cone_df[f"sigma{n}_upper"],
            color=_BAND_COLORS[n], alpha=_BAND_ALPHA[n], linewidth=0, label=_BAND_LABELS[n],
        )
    ax.plot(times, cone_df["mean"], color=_COLOR_MEAN, linestyle="--", linewidth=1.0, label="Mean")

    if snapshot.history:
        hist = history_to_frame(snapshot)
        hist_times = pd.to_datetime(hist["timestamp"])
        ax.plot(hist_times, hist["price"], color=_COLOR_PRICE, linewidth=2.0, label="Price")
        latest = hist[hist["is_latest"]]
        ax.scatter(pd.to_datetime(latest["timestamp"]), latest["price"],
                   color="white", edgecolors=_COLOR_PRICE, s=40, zorder=5)

    target_color = _COLOR_ABOVE if snapshot.outputs.direction == ABOVE else _COLOR_BELOW
    ax.axhline(snapshot.inputs.target, color=target_color, linestyle=(0, (4, 2)),
               linewidth=1.0, alpha=0.8, label="Target")

    ax.set_title(
        f"P({snapshot.outputs.direction} {snapshot.inputs.target:,.2f} in "
        f"{snapshot.inputs.horizon_minutes:g} min) = {snapshot.outputs.probability * 100:.2f}%"
    )
    ax.set_ylabel("Price")
    ax.legend(loc="upper left")
    fig.autofmt_xdate()
    fig.tight_layout()
    path = charts_dir / "cone.png"
    fig.savefig(path, dpi=150)
    plt.close(fig)
    logger.info("Chart saved to %s", path)


def _fmt(value: float, digits: int) -> str:
    if math.isinf(value):
        return "+inf" if value > 0 else "-inf"
    return f"{value:.{digits}f}"


def format_notebook(snapshot: ModelSnapshot, symbol: str = "ETH") -> str:
    """Plain-text walk-through of one calculation: query, variables, steps, result."""
    inp, out, mkt = snapshot.inputs, snapshot.outputs, snapshot.market
    flags = []
    if mkt.volatility_source != "live":
        flags.append(f"volatility {mkt.volatility_source}")
    if mkt.price_status != "live":
        flags.append(f"price {mkt.price_status}")

    lines = [
        "SOLUTION NOTEBOOK",
        "-" * 60,
        f'  QUERY > "If the price of {symbol} is {inp.spot:.2f}, what is the probability',
        f'          that it will be {out.direction} {inp.target:g} in {inp.horizon_minutes:g} minutes?"',
        "",
        "  1. Variables",
        f"     Price (S0)        {inp.spot:>14.2f}",
        f"     Target (K)        {inp.target:>14g}",
        f"     Volatility (sig)  {inp.volatility_pct:>13.2f}%",
        f"     Time (t)          {out.t_years:>14.6f} yrs",
        f"     Bias (mu)         {out.mu:>14.3f}  ({inp.bias})",
        "",
        "  2. Execution",
        f"     A. Log distance    ln(K / S0)                 = {_fmt(out.log_distance, 5)}",
        f"     B. Drift adjusted  (mu - 0.5 sig^2) * t       = {_fmt(out.drift_term, 5)}",
        f"     C. Z-score         (LogDist - Drift) / sig*rt = {_fmt(out.z_score, 4)}",
        "",
        f"  FINAL PROBABILITY: {out.probability * 100:.2f}%",
    ]
    if out.is_degenerate:
        lines.append("  (zero diffusion: deterministic outcome)")
    if flags:
        lines.append(f"  [{', '.join(flags)}]")
    return "\n".join(lines)
