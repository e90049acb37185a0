"""Follow live auction leaders from a running bid feed server.

Usage::

    python scripts/follow_auction.py http://localhost:4000 --topic 123_456
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from bidfeed.client.reconnector import BackoffPolicy, ClientReconnector
from bidfeed.client.state import LeaderBoard
from bidfeed.client.transports import transport_factory
from bidfeed.config import get_server_config
from bidfeed.subscribers.fsm import ChannelKind

logger = logging.getLogger("follow_auction")


def _parse_args() -> argparse.Namespace:
    settings = get_server_config().client
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("base_url", help="server base url, http:// or https://")
    parser.add_argument("--topic", action="append", default=[], help="auction topic; repeat for several")
    parser.add_argument(
        "--transport",
        choices=[kind.value for kind in ChannelKind],
        default=settings.primary_transport,
    )
    parser.add_argument("--max-retries", type=int, default=settings.max_retries)
    parser.add_argument("--backoff-base", type=float, default=settings.backoff_base_seconds)
    parser.add_argument("--backoff-max", type=float, default=settings.backoff_max_seconds)
    parser.add_argument("--stable-seconds", type=float, default=settings.stable_seconds)
    return parser.parse_args()


async def follow(args: argparse.Namespace) -> None:
    board = LeaderBoard()

    def on_event(event: dict) -> None:
        if board.apply(event):
            leader = board.get(event["topic"])
            print(f"{event['topic']}: {leader.leading_bidder or '-'} ${leader.current_bid:,.2f}", flush=True)

    reconnector = ClientReconnector(
        transport_factory(args.base_url, args.topic),
        on_event,
        primary=ChannelKind(args.transport),
        policy=BackoffPolicy(
            base_seconds=args.backoff_base,
            max_seconds=args.backoff_max,
            max_retries=args.max_retries,
            stable_seconds=args.stable_seconds,
        ),
        on_state_change=lambda state: logger.info("connection %s", state.value),
    )
    task = reconnector.start()
    try:
        await task
    finally:
        await reconnector.stop()
        logger.info("stopped after %d transport failovers", reconnector.failovers)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    try:
        asyncio.run(follow(_parse_args()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
