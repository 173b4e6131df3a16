"""
Command-line entry point.

    python -m watch_peer host --source movie.mp4 --room alpha --quality high
    python -m watch_peer guest --room alpha --record out.mp4
"""

import argparse
import asyncio
import logging
import signal
import sys

from . import config
from .config import QualityMode
from .coordinator import RoomCoordinator
from .relay_directory import RelayDirectoryCache
from .surface import PlayerSurface
from .transport import SignalingChannel

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("watch")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="watch_peer", description="Watch a video together over WebRTC")
    parser.add_argument("--signaling", default=config.SIGNALING_URL, help="signaling websocket URL")
    parser.add_argument("--ice-endpoint", default=config.ICE_ENDPOINT, help="relay directory URL")
    parser.add_argument("--scope", default=config.SCOPE)
    sub = parser.add_subparsers(dest="role", required=True)

    host = sub.add_parser("host", help="create a room and share a video")
    host.add_argument("--source", required=True, help="local file or remote URL")
    host.add_argument("--room", default="")
    host.add_argument(
        "--quality",
        choices=[m.value for m in QualityMode],
        default=config.DEFAULT_QUALITY.value,
    )
    host.add_argument("--loop", action="store_true", help="loop the source")

    guest = sub.add_parser("guest", help="join a room")
    guest.add_argument("--room", required=True)
    guest.add_argument("--record", default=None, help="write the received stream to a file")
    return parser


async def run(args) -> None:
    channel = SignalingChannel(args.signaling, scope=args.scope)
    if args.role == "host":
        surface = PlayerSurface(args.source, loop=args.loop)
    else:
        surface = PlayerSurface(record_to=args.record)
    room = RoomCoordinator(channel, surface, RelayDirectoryCache(args.ice_endpoint))
    channel.on_reconnect = room.rejoin

    if not await channel.connect():
        logger.error("Could not reach signaling server at %s", args.signaling)
        await channel.close()
        return

    if args.role == "host":
        session = await room.create_room(args.room)
        logger.info("Room id: %s", session.room_id)
        await room.start_stream(args.quality)
        await room.play(0.0)
    else:
        await room.join_room(args.room)

    try:
        await channel.run(room.handle)
    finally:
        await room.close()
        await surface.close()


def _signal(sig, frame):
    logger.info("signal received, exiting")
    sys.exit(0)


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    signal.signal(signal.SIGTERM, _signal)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
