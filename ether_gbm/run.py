"""
CLI entry point for the live GBM target-probability engine.

Usage:
    python -m ether_gbm.run --config configs/ethusdt.yaml --spot 3000 --target 3030 --horizon 60
    python -m ether_gbm.run --config configs/ethusdt.yaml --live --duration 120
"""

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import datetime
from typing import Optional

import aiohttp

from .config import PipelineConfig, load_config
from .data_layer import poll_volatility, stream_prices
from .gbm import BIASES, InvalidInputError
from .market_state import ModelSession, ModelSnapshot
from .output import format_notebook, write_outputs

logger = logging.getLogger("ether_gbm")


def build_session(cfg: PipelineConfig, args: argparse.Namespace) -> ModelSession:
    """
    Create a session and apply user parameters from the command line.

    Raises InvalidInputError naming the first flag the session rejected.
    """
    session = ModelSession(cfg)
    params = [
        ("--target", args.target, session.set_target),
        ("--horizon", args.horizon, session.set_horizon),
        ("--bias", args.bias, session.set_bias),
        ("--vol", args.vol, session.set_volatility_override),
    ]
    for flag, value, setter in params:
        if value is not None and not setter(value):
            raise InvalidInputError(f"{flag} {value!r} rejected")
    return session


async def run_live(cfg: PipelineConfig, session: ModelSession, duration: float) -> Optional[ModelSnapshot]:
    """Run both adapters for `duration` seconds and return the final snapshot."""
    stop = asyncio.Event()
    async with aiohttp.ClientSession() as http:
        tasks = [
            asyncio.ensure_future(stream_prices(http, cfg, session, stop)),
            asyncio.ensure_future(poll_volatility(http, cfg, session, stop)),
        ]
        try:
            await asyncio.sleep(duration)
        finally:
            stop.set()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for name, result in zip(("price stream", "volatility poll"), results):
                if isinstance(result, Exception):
                    logger.error("%s task failed: %s", name, result, exc_info=result)
    return session.snapshot()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Live GBM target-probability engine",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to YAML configuration file (defaults built in)",
    )
    parser.add_argument("--spot", type=float, default=None, help="Spot price for an offline evaluation")
    parser.add_argument("--target", type=float, default=None, help="Target price")
    parser.add_argument("--horizon", type=float, default=None, help="Horizon in minutes")
    parser.add_argument("--bias", type=str, default=None, choices=list(BIASES), help="Drift bias")
    parser.add_argument("--vol", type=float, default=None, help="Manual volatility override (percent)")
    parser.add_argument(
        "--live", action="store_true",
        help="Stream live price and volatility instead of using --spot",
    )
    parser.add_argument(
        "--duration", type=float, default=60.0,
        help="Seconds to run in --live mode",
    )
    parser.add_argument(
        "--run-id", type=str, default=None,
        help="Custom run ID (default: auto-generated)",
    )
    parser.add_argument("--no-write", action="store_true", help="Skip writing output files")
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not args.live and args.spot is None:
        parser.error("--spot is required unless --live is given")

    cfg = load_config(args.config) if args.config else PipelineConfig()
    run_id = args.run_id or f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"

    try:
        session = build_session(cfg, args)
    except InvalidInputError as e:
        parser.error(str(e))

    print("=" * 60)
    print("GBM Target-Probability Engine")
    print("=" * 60)
    print(f"  run_id:   {run_id}")
    print(f"  mode:     {'live ' + cfg.feed.symbol.upper() if args.live else 'offline'}")
    print(f"  steps:    {cfg.model.steps}")
    print()

    if args.live:
        try:
            snapshot = asyncio.run(run_live(cfg, session, args.duration))
        except KeyboardInterrupt:
            logger.warning("Interrupted, using last snapshot")
            snapshot = session.snapshot()
    else:
        if not session.update_price(args.spot):
            logger.error("Invalid spot price: %r", args.spot)
            return 1
        snapshot = session.snapshot()

    if snapshot is None:
        logger.error("No model output: no price received")
        return 1

    print(format_notebook(snapshot, symbol=cfg.feed.symbol.upper()))
    print()

    if not args.no_write:
        out_dir = write_outputs(snapshot, cfg, run_id)
        print(f"  outputs:  {out_dir}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
