"""
Forward probability cone: mean path plus 1/2/3-sigma bands in log-price space.

For step i of N over a horizon of m minutes:

    t_i       = (i * m / N) / 525600
    drift_i   = (mu - 0.5 * sigma^2) * t_i
    diff_i    = sigma * sqrt(t_i)
    mean_i    = S * exp(drift_i)
    band_n(i) = [S * exp(drift_i - n * diff_i), S * exp(drift_i + n * diff_i)]

Point 0 is the bridge to observed history: mean and every band equal S exactly.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .gbm import MINUTES_PER_YEAR, GbmParameters

SIGMA_LEVELS = (1, 2, 3)
DEFAULT_STEPS = 40


@dataclass(frozen=True)
class ProjectionPoint:
    time_offset: float          # minutes from the last observed price
    mean_price: float
    band1: Tuple[float, float]  # (lower, upper), ~68%
    band2: Tuple[float, float]  # ~95%
    band3: Tuple[float, float]  # ~99.7%

    def band(self, n: int) -> Tuple[float, float]:
        return (self.band1, self.band2, self.band3)[n - 1]


def project_cone(
    spot: float,
    params: GbmParameters,
    horizon_minutes: float,
    steps: int = DEFAULT_STEPS,
) -> Tuple[ProjectionPoint, ...]:
    """
    Project the cone over [0, horizon_minutes] in `steps` equal intervals.

    Returns steps + 1 points with strictly increasing time offsets.
    """
    if steps < 1:
        raise ValueError(f"steps must be >= 1, got {steps}")

    offsets = np.arange(steps + 1, dtype=np.float64) * (horizon_minutes / steps)
    step_t = offsets / MINUTES_PER_YEAR
    drift = params.drift_rate * step_t
    diffusion = params.sigma * np.sqrt(step_t)

    mean = spot * np.exp(drift)
    lower = {n: spot * np.exp(drift - n * diffusion) for n in SIGMA_LEVELS}
    upper = {n: spot * np.exp(drift + n * diffusion) for n in SIGMA_LEVELS}

    points = [
        ProjectionPoint(
            time_offset=0.0,
            mean_price=spot,
            band1=(spot, spot),
            band2=(spot, spot),
            band3=(spot, spot),
        )
    ]
    for i in range(1, steps + 1):
        points.append(ProjectionPoint(
            time_offset=float(offsets[i]),
            mean_price=float(mean[i]),
            band1=(float(lower[1][i]), float(upper[1][i])),
            band2=(float(lower[2][i]), float(upper[2][i])),
            band3=(float(lower[3][i]), float(upper[3][i])),
        ))
    return tuple(points)


def cone_to_frame(
    cone: Sequence[ProjectionPoint],
    anchor: Optional[datetime] = None,
) -> pd.DataFrame:
    """Flatten a cone into one row per point; adds absolute timestamps when anchored."""
    df = pd.DataFrame({
        "time_offset_min": [p.time_offset for p in cone],
        "mean": [p.mean_price for p in cone],
    })
    for n in SIGMA_LEVELS:
        df[f"sigma{n}_lower"] = [p.band(n)[0] for p in cone]
        df[f"sigma{n}_upper"] = [p.band(n)[1] for p in cone]
    if anchor is not None:
        df.insert(0, "timestamp", [anchor + timedelta(minutes=p.time_offset) for p in cone])
    return df
