import argparse
import logging
import sys
from pathlib import Path

import zmq

from STEMFIELD.config import Config
from STEMFIELD.src.core.errors import StreamError
from STEMFIELD.src.core.pipeline import process

logger = logging.getLogger("STEMFIELD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aggregate a detector block stream into bright/dark field images")
    parser.add_argument("input", help="Path to the raw block stream")
    parser.add_argument("--stream-id", type=int, required=True, help="Stream identifier used in output names")
    parser.add_argument("--width", type=int, required=True, help="Output grid width")
    parser.add_argument("--height", type=int, required=True, help="Output grid height")
    parser.add_argument("--concurrency", type=int, default=None, help="Worker threads (-1 = all cores)")
    parser.add_argument("--url", default=None, help="ZeroMQ endpoint to publish to instead of writing files")
    parser.add_argument("--output-dir", default=None, help="Directory for .bin output files")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file")
    parser.add_argument("--preview", action="store_true", help="Also save a PNG preview of both fields")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = Config.load(args.config)
    if args.output_dir is not None:
        config.OUTPUT_DIR = args.output_dir
    if args.preview:
        config.SAVE_PREVIEW = True
    concurrency = args.concurrency if args.concurrency is not None else config.CONCURRENCY

    try:
        process(
            args.input,
            args.stream_id,
            concurrency,
            args.width,
            args.height,
            url=args.url,
            config=config,
        )
    except (StreamError, ValueError, OSError, zmq.ZMQError):
        logger.exception("Processing of %s failed", args.input)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
