"""
Pairwise merge of a primary and a hedge tick stream.

Streams are zipped by arrival position: the n-th primary tick pairs with the
n-th hedge tick. Upstream feeds must already be aligned. A pair is emitted
only once both sides have produced their next tick; pairs whose timestamps
differ by more than ``max_latency_delta_ms`` are dropped and reported.
"""

import asyncio
from typing import AsyncIterable, AsyncIterator, Callable, Optional

import structlog

from syntharb.models.schemas import MarketTick

logger = structlog.get_logger()

StaleCallback = Callable[[MarketTick, MarketTick, int], None]


async def _next_or_none(iterator: AsyncIterator[MarketTick]) -> Optional[MarketTick]:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return None


async def _close(iterator: AsyncIterator[MarketTick]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


async def _next_pair(
    primary_iter: AsyncIterator[MarketTick],
    hedge_iter: AsyncIterator[MarketTick],
    stop_event: Optional[asyncio.Event],
) -> Optional[list]:
    """
    Fetch the next tick from both sides.

    Returns None when ``stop_event`` fires first; the pending fetches are
    cancelled in that case.
    """
    pending = asyncio.gather(
        _next_or_none(primary_iter),
        _next_or_none(hedge_iter),
        return_exceptions=True,
    )
    if stop_event is None:
        return await pending

    stopper = asyncio.create_task(stop_event.wait())
    try:
        done, _ = await asyncio.wait(
            {pending, stopper},
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        pending.cancel()
        stopper.cancel()
        raise
    stopper.cancel()

    if pending in done:
        return pending.result()

    pending.cancel()
    await asyncio.wait({pending})
    return None


async def merge_streams(
    primary: AsyncIterable[MarketTick],
    hedge: AsyncIterable[MarketTick],
    max_latency_delta_ms: int,
    on_stale: Optional[StaleCallback] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> AsyncIterator[tuple[MarketTick, MarketTick]]:
    """
    Yield synchronized (primary, hedge) tick pairs.

    Ends cleanly when either stream is exhausted or ``stop_event`` is set,
    including while waiting on an idle feed. Feed exceptions propagate.
    """
    primary_iter = aiter(primary)
    hedge_iter = aiter(hedge)

    try:
        while True:
            if stop_event is not None and stop_event.is_set():
                logger.debug("Merge stopped")
                break

            results = await _next_pair(primary_iter, hedge_iter, stop_event)
            if results is None:
                logger.debug("Merge stopped while waiting for ticks")
                break

            for result in results:
                if isinstance(result, BaseException):
                    raise result

            primary_tick, hedge_tick = results
            if primary_tick is None or hedge_tick is None:
                logger.debug(
                    "Tick stream exhausted",
                    primary_done=primary_tick is None,
                    hedge_done=hedge_tick is None,
                )
                break

            skew_ms = abs(primary_tick.timestamp_ms - hedge_tick.timestamp_ms)
            if skew_ms > max_latency_delta_ms:
                logger.debug(
                    "Stale tick pair dropped",
                    primary=primary_tick.market_id,
                    hedge=hedge_tick.market_id,
                    skew_ms=skew_ms,
                    max_ms=max_latency_delta_ms,
                )
                if on_stale is not None:
                    on_stale(primary_tick, hedge_tick, skew_ms)
                continue

            yield primary_tick, hedge_tick
    finally:
        await _close(primary_iter)
        await _close(hedge_iter)
