"""Run the rate-limited transcript worker until interrupted."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import get_settings
from src.pipeline.collaborators import build_tracker, build_worker

logger = logging.getLogger("run_worker")


async def main(max_iterations: int | None, seed: int | None, register: list[str]) -> None:
    settings = get_settings()
    worker = build_worker(settings, seed=seed)

    if register:
        tracker = build_tracker(settings)
        for item_id in register:
            await tracker.register(item_id)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises.
            pass

    iterations = await worker.run(max_iterations=max_iterations)
    logger.info("Done! %d iterations.", iterations)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--max-iterations", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None, help="Seed the rate limiter RNG")
    parser.add_argument("--register", nargs="*", default=[], help="Item ids to queue before starting")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main(args.max_iterations, args.seed, args.register))
