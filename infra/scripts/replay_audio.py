import argparse
import asyncio
import os
import sys
from pathlib import Path

import websockets

sys.path.append(os.path.join(os.getcwd(), "apps", "api"))

from asr_relay.config import require_api_key, settings  # noqa: E402
from asr_relay.errors import MissingAPIKeyError  # noqa: E402
from asr_relay.logging_config import setup_logging  # noqa: E402
from asr_relay.routers.relay import get_relay_options  # noqa: E402
from asr_relay.services.downstream_relay import FileAudioSource  # noqa: E402
from asr_relay.services.session_coordinator import (  # noqa: E402
    SessionCoordinator,
    SessionOutcome,
    UpstreamConnector,
)
from asr_relay.services.upstream_session import UpstreamSession  # noqa: E402

DEFAULT_CHUNK_SIZE = 1024
DEFAULT_INTERVAL_MS = 20


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stream a local PCM file for recognition.")
    parser.add_argument("--file", required=True, help="Path to the audio file (e.g. 16 kHz PCM)")
    parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, help="Bytes per frame")
    parser.add_argument(
        "--interval-ms",
        type=float,
        default=DEFAULT_INTERVAL_MS,
        help="Delay between frames in milliseconds",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.task_start_timeout_seconds,
        help="Seconds to wait for task-started (and for task-finished after EOF)",
    )
    parser.add_argument(
        "--relay-url",
        default=None,
        help="Stream through a running relay (e.g. ws://localhost:8000/ws) instead of upstream",
    )
    return parser.parse_args()


async def replay_direct(
    audio_file: Path,
    chunk_size: int,
    interval: float,
    timeout: float,
    connector: UpstreamConnector = UpstreamSession.connect,
) -> int:
    options = get_relay_options()
    source = FileAudioSource(audio_file, chunk_size=chunk_size, interval_seconds=interval)
    await source.accept()
    coordinator = SessionCoordinator(
        source,
        options.upstream,
        options.params,
        connector=connector,
        task_start_timeout=timeout,
        finish_drain_timeout=timeout,
    )
    outcome = await coordinator.run()
    print(f"Session ended: {outcome.value} ({len(source.results)} results)")
    for text in source.results:
        print(text)
    if outcome in (SessionOutcome.TASK_FINISHED, SessionOutcome.DOWNSTREAM_CLOSED):
        return 0
    return 1


async def replay_via_relay(
    relay_url: str, audio_file: Path, chunk_size: int, interval: float
) -> int:
    async with websockets.connect(relay_url) as ws:

        async def print_results() -> None:
            async for message in ws:
                print(f"Result: {message}")

        reader = asyncio.create_task(print_results())
        with audio_file.open("rb") as handle:
            while chunk := handle.read(chunk_size):
                await ws.send(chunk)
                await asyncio.sleep(interval)
        print("Audio sent, waiting for trailing results...")
        await asyncio.sleep(2)
        await ws.close()
        await asyncio.gather(reader, return_exceptions=True)
    return 0


def main() -> None:
    args = parse_args()
    audio_file = Path(args.file)
    if not audio_file.exists():
        raise FileNotFoundError(f"Audio file not found: {audio_file}")
    interval = args.interval_ms / 1000.0

    if args.relay_url:
        sys.exit(asyncio.run(replay_via_relay(args.relay_url, audio_file, args.chunk_size, interval)))

    setup_logging(settings.log_level, settings.log_json)
    try:
        require_api_key(settings)
    except MissingAPIKeyError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(replay_direct(audio_file, args.chunk_size, interval, args.timeout)))


if __name__ == "__main__":
    main()
