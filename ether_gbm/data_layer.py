"""
Live data adapters: Binance trade stream for spot, Deribit DVOL for volatility.

Adapters only parse payloads and push scalars into a ModelSession; they hold
the connections, the session never does.

    price:      wss://stream.binance.com:9443/ws/<symbol>@trade
                {"e": "trade", "p": "3012.45", "T": 1700000000000, ...}
    volatility: GET .../public/get_dvol_index?index_name=eth_dvol
                {"result": {"index_price": 58.3, ...}}

A malformed payload drops that one update. A failed volatility poll switches
the session to its fallback volatility (flagged "estimated"). A dropped price
stream marks the spot stale and reconnects with capped exponential backoff.
"""

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

import aiohttp

from .config import PipelineConfig
from .market_state import ModelSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tick:
    timestamp: datetime
    price: float


def parse_trade_message(raw: Union[str, bytes]) -> Optional[Tick]:
    """Parse one trade message; returns None for anything unusable."""
    try:
        data = json.loads(raw)
        price = float(data["p"])
    except (ValueError, TypeError, KeyError) as e:
        logger.warning("Malformed trade message dropped: %s", e)
        return None

    if not math.isfinite(price) or price <= 0:
        logger.warning("Trade message with invalid price dropped: %r", data.get("p"))
        return None

    trade_ms = data.get("T")
    try:
        ts = datetime.fromtimestamp(float(trade_ms) / 1000.0, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        ts = datetime.now(timezone.utc)
    return Tick(timestamp=ts, price=price)


def parse_volatility_response(payload: Any) -> float:
    """Extract the annualized volatility index (percent) from a DVOL response."""
    try:
        value = float(payload["result"]["index_price"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed volatility payload: {e!r}") from e
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"Volatility index out of range: {value}")
    return value


async def fetch_volatility_index(http: aiohttp.ClientSession, cfg: PipelineConfig) -> float:
    """One GET against the volatility index endpoint."""
    timeout = aiohttp.ClientTimeout(total=cfg.volatility.timeout)
    async with http.get(
        cfg.volatility.url,
        params={"index_name": cfg.volatility.index_name},
        timeout=timeout,
    ) as resp:
        resp.raise_for_status()
        payload = await resp.json(content_type=None)
    return parse_volatility_response(payload)


async def refresh_volatility(
    session: ModelSession,
    fetch: Callable[[], Awaitable[float]],
) -> bool:
    """Run one fetch and push the result, or the fallback on failure."""
    try:
        value = await fetch()
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.warning("Volatility fetch failed: %s", e)
        session.volatility_unavailable()
        return False
    return session.update_volatility(value)


async def poll_volatility(
    http: aiohttp.ClientSession,
    cfg: PipelineConfig,
    session: ModelSession,
    stop: asyncio.Event,
) -> None:
    """Refresh immediately, then every poll_interval seconds until stopped."""
    interval = cfg.volatility.poll_interval
    logger.info("Polling %s (%s) every %.0fs", cfg.volatility.url, cfg.volatility.index_name, interval)
    while not stop.is_set():
        try:
            await refresh_volatility(session, lambda: fetch_volatility_index(http, cfg))
        except Exception:
            logger.exception("Volatility poll cycle failed, retrying next interval")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def stream_prices(
    http: aiohttp.ClientSession,
    cfg: PipelineConfig,
    session: ModelSession,
    stop: asyncio.Event,
) -> None:
    """Consume the trade stream with auto-reconnect until stopped."""
    url = cfg.feed.url
    attempt = 0
    while not stop.is_set():
        try:
            logger.info("Connecting to %s", url)
            async with http.ws_connect(url, heartbeat=20) as ws:
                attempt = 0
                logger.info("Connected to %s", url)
                await _consume(ws, session, stop)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Price stream error: %s", e)
        except Exception:
            logger.exception("Price stream crashed, reconnecting")

        session.mark_disconnected()
        if stop.is_set():
            break
        attempt += 1
        delay = min(2 ** attempt, cfg.feed.reconnect_max_delay)
        logger.info("Reconnecting in %.0fs (attempt %d)", delay, attempt)
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass


async def _consume(ws: aiohttp.ClientWebSocketResponse, session: ModelSession, stop: asyncio.Event) -> None:
    stop_wait = asyncio.ensure_future(stop.wait())
    try:
        while not stop.is_set():
            recv = asyncio.ensure_future(ws.receive())
            done, _ = await asyncio.wait({recv, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
            if recv not in done:
                recv.cancel()
                break
            msg = recv.result()
            if msg.type == aiohttp.WSMsgType.TEXT:
                handle_trade_message(session, msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning("WebSocket error: %s", ws.exception())
                break
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                logger.warning("WebSocket closed by server")
                break
    finally:
        stop_wait.cancel()


def handle_trade_message(session: ModelSession, raw: Union[str, bytes]) -> bool:
    """Parse a raw trade message and push it into the session."""
    tick = parse_trade_message(raw)
    if tick is None:
        return False
    return session.update_price(tick.price, tick.timestamp)
