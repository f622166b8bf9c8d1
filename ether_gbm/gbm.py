"""
Closed-form GBM terminal probability.

Under GBM the terminal log-price is normal:

    ln(S_T / S_0) ~ N((mu - 0.5 * sigma^2) * t, sigma^2 * t)

Unit convention (MANDATORY):
    - volatility_pct: annualized volatility in percent (60 = 60%)
    - sigma = volatility_pct / 100
    - t = horizon_minutes / 525600   (minutes per 365-day year)

Drift bias is a modelling simplification, not a calibrated drift:
    neutral: mu = 0
    bull:    mu = +0.5 * sigma
    bear:    mu = -0.5 * sigma

z = (ln(K/S) - (mu - 0.5*sigma^2)*t) / (sigma*sqrt(t)) locates the target in
the terminal distribution, so Phi(z) = P(S_T < K).

"probability" always means the chance of finishing on the target's side of
spot: 1 - Phi(z) when the target is above spot, Phi(z) otherwise. It is NOT
the chance of an up-move and NOT a barrier-touch probability.
"""

import math
from dataclasses import dataclass

from .normal import normal_cdf

MINUTES_PER_YEAR = 525600.0

BIASES = ("bear", "neutral", "bull")
ABOVE = "above"
BELOW = "below"


class InvalidInputError(ValueError):
    """Raised when a model input is outside its valid domain."""


@dataclass(frozen=True)
class ModelInputs:
    """Immutable snapshot of everything one recomputation needs."""
    spot: float
    target: float
    horizon_minutes: float
    volatility_pct: float
    bias: str = "neutral"

    def __post_init__(self):
        for name in ("spot", "target", "horizon_minutes"):
            check_positive(name, getattr(self, name))
        check_non_negative("volatility_pct", self.volatility_pct)
        check_bias(self.bias)


@dataclass(frozen=True)
class GbmParameters:
    """Derived GBM terms for one set of inputs."""
    mu: float               # annualized drift implied by the bias
    sigma: float            # annualized diffusion coefficient (decimal)
    t_years: float
    log_distance: float     # ln(K / S)
    drift_rate: float       # mu - 0.5 * sigma^2 (Ito-corrected log drift)
    drift_term: float       # drift_rate * t
    diffusion_term: float   # sigma * sqrt(t)
    z_score: float


@dataclass(frozen=True)
class ModelOutputs(GbmParameters):
    probability: float
    direction: str

    @property
    def is_degenerate(self) -> bool:
        """True when there is no diffusion and the outcome is deterministic."""
        return self.diffusion_term == 0.0


def _is_finite(value) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def check_positive(name: str, value) -> float:
    if not _is_finite(value) or float(value) <= 0:
        raise InvalidInputError(f"{name} must be a positive finite number, got {value!r}")
    return float(value)


def check_non_negative(name: str, value) -> float:
    if not _is_finite(value) or float(value) < 0:
        raise InvalidInputError(f"{name} must be a non-negative finite number, got {value!r}")
    return float(value)


def check_bias(value) -> str:
    if value not in BIASES:
        raise InvalidInputError(f"bias must be one of {BIASES}, got {value!r}")
    return value


def bias_drift(sigma: float, bias: str) -> float:
    """Annualized drift for a bias: +/- half a volatility unit, 0 when neutral."""
    if bias == "bull":
        return 0.5 * sigma
    if bias == "bear":
        return -0.5 * sigma
    return 0.0


def derive_parameters(inputs: ModelInputs) -> GbmParameters:
    """
    Turn (spot, target, horizon, volatility, bias) into GBM terms and a z-score.

    With no diffusion (sigma == 0) the terminal price is deterministic and the
    z-score is +inf / -inf by the side of the target. A target exactly at spot
    maps to z = 0.
    """
    t_years = inputs.horizon_minutes / MINUTES_PER_YEAR
    sigma = inputs.volatility_pct / 100.0
    mu = bias_drift(sigma, inputs.bias)

    log_distance = math.log(inputs.target / inputs.spot)
    drift_rate = mu - 0.5 * sigma ** 2
    drift_term = drift_rate * t_years
    diffusion_term = sigma * math.sqrt(t_years)

    if diffusion_term > 0.0:
        z_score = (log_distance - drift_term) / diffusion_term
    elif log_distance > 0.0:
        z_score = math.inf
    elif log_distance < 0.0:
        z_score = -math.inf
    else:
        z_score = 0.0

    return GbmParameters(
        mu=mu,
        sigma=sigma,
        t_years=t_years,
        log_distance=log_distance,
        drift_rate=drift_rate,
        drift_term=drift_term,
        diffusion_term=diffusion_term,
        z_score=z_score,
    )


def target_direction(spot: float, target: float) -> str:
    """'above' only when target > spot strictly; a target at spot is 'below'."""
    return ABOVE if target > spot else BELOW


def terminal_probability(z_score: float, direction: str) -> float:
    """
    Probability of the terminal price finishing on the target side.

    z = 0 is pinned to exactly 0.5 so an at-target query is symmetric. A NaN
    z-score propagates as a NaN probability instead of being clamped.
    """
    if z_score == 0.0:
        return 0.5
    cdf = normal_cdf(z_score)
    p = float(1.0 - cdf if direction == ABOVE else cdf)
    if math.isnan(p):
        return p
    return min(1.0, max(0.0, p))


def evaluate(inputs: ModelInputs) -> ModelOutputs:
    """Full model pass: derived parameters plus direction and probability."""
    params = derive_parameters(inputs)
    direction = target_direction(inputs.spot, inputs.target)
    probability = terminal_probability(params.z_score, direction)
    return ModelOutputs(
        mu=params.mu,
        sigma=params.sigma,
        t_years=params.t_years,
        log_distance=params.log_distance,
        drift_rate=params.drift_rate,
        drift_term=params.drift_term,
        diffusion_term=params.diffusion_term,
        z_score=params.z_score,
        probability=probability,
        direction=direction,
    )
