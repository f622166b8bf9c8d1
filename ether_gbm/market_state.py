"""
Live market state and the session that turns it into model snapshots.

Data flow:
    adapters -> ModelSession.update_* -> ModelInputs -> evaluate / project_cone
             -> ModelSnapshot (consumed by output / presentation)

State is held in frozen dataclasses and replaced wholesale on every accepted
update; rejected updates leave the last valid state untouched. The session
never owns a connection, only scalar snapshots pushed by the adapters.

Provenance flags:
    price_status:      "absent" (no tick yet) | "live" | "stale" (feed dropped)
    volatility_source: "live" | "manual" (user override) | "estimated" (fallback)
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Deque, Optional, Tuple

from .config import PipelineConfig
from .gbm import (
    InvalidInputError,
    ModelInputs,
    ModelOutputs,
    check_bias,
    check_non_negative,
    check_positive,
    evaluate,
)
from .projection import ProjectionPoint, project_cone

logger = logging.getLogger(__name__)

PRICE_ABSENT = "absent"
PRICE_LIVE = "live"
PRICE_STALE = "stale"

VOL_LIVE = "live"
VOL_MANUAL = "manual"
VOL_ESTIMATED = "estimated"


@dataclass(frozen=True)
class MarketState:
    spot: Optional[float] = None
    volatility_pct: float = 60.0
    volatility_source: str = VOL_ESTIMATED
    price_status: str = PRICE_ABSENT
    last_tick: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryPoint:
    timestamp: datetime
    price: float
    is_latest: bool = False


@dataclass(frozen=True)
class ModelSnapshot:
    """Everything the presentation layer needs for one frame."""
    market: MarketState
    inputs: ModelInputs
    outputs: ModelOutputs
    cone: Tuple[ProjectionPoint, ...]
    history: Tuple[HistoryPoint, ...]
    anchor: datetime  # wall-clock time of cone point 0


class ModelSession:
    """
    Orchestrates live inputs, user parameters and recomputation.

    Every accepted update triggers a synchronous recompute. Outputs and cone
    are only rebuilt when the ModelInputs tuple actually changed.
    """

    def __init__(self, cfg: Optional[PipelineConfig] = None):
        self.cfg = cfg or PipelineConfig()
        self._market = MarketState(volatility_pct=self.cfg.volatility.fallback_pct)
        self._live_vol = self.cfg.volatility.fallback_pct
        self._live_vol_source = VOL_ESTIMATED
        self._manual_vol: Optional[float] = None

        self._target: Optional[float] = self.cfg.model.default_target
        self._horizon = float(self.cfg.model.horizon_minutes)
        self._bias = self.cfg.model.bias

        self._history: Deque[Tuple[datetime, float]] = deque(maxlen=self.cfg.feed.history_len)

        self._inputs: Optional[ModelInputs] = None
        self._outputs: Optional[ModelOutputs] = None
        self._cone: Tuple[ProjectionPoint, ...] = ()
        self.recompute_count = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def market(self) -> MarketState:
        return self._market

    @property
    def target(self) -> Optional[float]:
        return self._target

    @property
    def horizon_minutes(self) -> float:
        return self._horizon

    @property
    def bias(self) -> str:
        return self._bias

    @property
    def inputs(self) -> Optional[ModelInputs]:
        return self._inputs

    @property
    def outputs(self) -> Optional[ModelOutputs]:
        return self._outputs

    def history(self) -> Tuple[HistoryPoint, ...]:
        n = len(self._history)
        return tuple(
            HistoryPoint(timestamp=ts, price=price, is_latest=(i == n - 1))
            for i, (ts, price) in enumerate(self._history)
        )

    def snapshot(self) -> Optional[ModelSnapshot]:
        """Current frame, or None until a first price (and a target) exist."""
        if self._outputs is None or self._inputs is None:
            return None
        anchor = self._market.last_tick or datetime.now(timezone.utc)
        return ModelSnapshot(
            market=self._market,
            inputs=self._inputs,
            outputs=self._outputs,
            cone=self._cone,
            history=self.history(),
            anchor=anchor,
        )

    # ------------------------------------------------------------------
    # Adapter-facing updates
    # ------------------------------------------------------------------

    def update_price(self, price: float, timestamp: Optional[datetime] = None) -> bool:
        """Accept a trade tick as the new spot. Invalid prices are dropped."""
        try:
            price = check_positive("price", price)
        except InvalidInputError as e:
            logger.warning("Dropping price tick: %s", e)
            return False

        ts = timestamp or datetime.now(timezone.utc)
        if self._market.price_status != PRICE_LIVE:
            logger.info("Price feed live at %.2f", price)
        self._market = replace(self._market, spot=price, price_status=PRICE_LIVE, last_tick=ts)
        self._history.append((ts, price))

        if self._target is None:
            self._target = float(math.floor(price * self.cfg.model.initial_target_mult + 0.5))  # half up
            logger.info("Initial target set to %.2f from first price %.2f", self._target, price)

        logger.debug("Tick %.4f at %s", price, ts.isoformat())
        self.recompute()
        return True

    def mark_disconnected(self) -> None:
        """Price feed dropped: keep the last spot but flag it stale."""
        if self._market.price_status == PRICE_LIVE:
            logger.warning("Price feed disconnected, holding last spot %.2f as stale",
                           self._market.spot)
            self._market = replace(self._market, price_status=PRICE_STALE)

    def update_volatility(self, volatility_pct: float) -> bool:
        """Accept a live volatility index reading (annualized percent)."""
        try:
            volatility_pct = self._check_volatility("volatility_pct", volatility_pct, check_non_negative)
        except InvalidInputError as e:
            logger.warning("Dropping volatility update: %s", e)
            return False
        previous = (self._live_vol, self._live_vol_source)
        self._live_vol, self._live_vol_source = volatility_pct, VOL_LIVE
        if not self._refresh_volatility():
            self._live_vol, self._live_vol_source = previous
            logger.warning("Dropping volatility update %.4g%%", volatility_pct)
            return False
        if previous[1] != VOL_LIVE:
            logger.info("Volatility index live at %.2f%%", volatility_pct)
        return True

    def volatility_unavailable(self) -> None:
        """Volatility source failed: fall back to the configured constant."""
        fallback = self.cfg.volatility.fallback_pct
        logger.warning("Volatility index unavailable, using %.2f%% (estimated)", fallback)
        self._live_vol = fallback
        self._live_vol_source = VOL_ESTIMATED
        self._refresh_volatility()

    # ------------------------------------------------------------------
    # User-facing parameters
    # ------------------------------------------------------------------

    def set_target(self, target: float) -> bool:
        try:
            self._target = check_positive("target", target)
        except InvalidInputError as e:
            logger.warning("Rejected target: %s", e)
            return False
        self.recompute()
        return True

    def set_horizon(self, minutes: float) -> bool:
        lo, hi = self.cfg.model.horizon_bounds
        try:
            minutes = check_positive("horizon_minutes", minutes)
            if not lo <= minutes <= hi:
                raise InvalidInputError(f"horizon_minutes must be within [{lo}, {hi}], got {minutes}")
        except InvalidInputError as e:
            logger.warning("Rejected horizon: %s", e)
            return False
        self._horizon = minutes
        self.recompute()
        return True

    def set_bias(self, bias: str) -> bool:
        try:
            self._bias = check_bias(bias)
        except InvalidInputError as e:
            logger.warning("Rejected bias: %s", e)
            return False
        self.recompute()
        return True

    def set_volatility_override(self, volatility_pct: Optional[float]) -> bool:
        """Replace the live volatility with a manual value; None returns to live."""
        previous = self._manual_vol
        if volatility_pct is None:
            self._manual_vol = None
        else:
            try:
                self._manual_vol = self._check_volatility("volatility override", volatility_pct, check_positive)
            except InvalidInputError as e:
                logger.warning("Rejected volatility override: %s", e)
                return False
        if not self._refresh_volatility():
            self._manual_vol = previous
            logger.warning("Rejected volatility override %r", volatility_pct)
            return False
        return True

    def _check_volatility(self, name: str, value: float, check) -> float:
        value = check(name, value)
        cap = self.cfg.volatility.max_pct
        if value > cap:
            raise InvalidInputError(f"{name} must be at most {cap}, got {value}")
        return value

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def _refresh_volatility(self) -> bool:
        if self._manual_vol is not None:
            vol, source = self._manual_vol, VOL_MANUAL
        else:
            vol, source = self._live_vol, self._live_vol_source
        market = replace(self._market, volatility_pct=vol, volatility_source=source)
        if self._evaluate(market, self._target) is None:
            return False
        self._market = market
        self.recompute()
        return True

    def _evaluate(self, market: MarketState, target: Optional[float]):
        """
        Evaluate the model on a candidate state without committing it.

        Returns (inputs, outputs), (None, None) when spot or target is still
        missing, or None when the model cannot be evaluated on the candidate.
        """
        if market.spot is None or target is None:
            return None, None
        try:
            inputs = ModelInputs(
                spot=market.spot,
                target=target,
                horizon_minutes=self._horizon,
                volatility_pct=market.volatility_pct,
                bias=self._bias,
            )
            if inputs == self._inputs:
                return inputs, self._outputs
            return inputs, evaluate(inputs)
        except (InvalidInputError, ArithmeticError) as e:
            logger.warning("Model cannot be evaluated (vol %.4g%%): %s", market.volatility_pct, e)
            return None

    def recompute(self) -> Optional[ModelOutputs]:
        """Rebuild outputs and cone if the input tuple changed."""
        result = self._evaluate(self._market, self._target)
        if result is None:
            return self._outputs
        inputs, outputs = result
        if inputs is None or inputs == self._inputs:
            return self._outputs

        self._inputs = inputs
        self._outputs = outputs
        self._cone = project_cone(inputs.spot, outputs, inputs.horizon_minutes, self.cfg.model.steps)
        self.recompute_count += 1
        return outputs
