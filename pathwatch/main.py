import argparse
import logging
import sys
import threading
from logging.handlers import TimedRotatingFileHandler

from . import constants
from .engine import NetworkHealthEngine


def configure_logging(verbose=False, log_file=None):
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        file_handler = TimedRotatingFileHandler(log_file, when="midnight", backupCount=7, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger


def main(argv=None):
    parser = argparse.ArgumentParser(description="Continuously probe network path health.")
    parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        metavar="SECONDS",
        help="Print a text snapshot every SECONDS (default: 5).",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Stop after SECONDS instead of running until interrupted.",
    )
    parser.add_argument(
        "--bloat-test",
        type=float,
        nargs="?",
        const=constants.BLOAT_DEFAULT_DURATION,
        default=None,
        metavar="SECONDS",
        help="Run the upload bufferbloat test once the idle baseline has warmed up.",
    )
    parser.add_argument("--log-file", help="Also write logs to a daily-rotated file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log individual probe failures.")
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    configure_logging(args.verbose, args.log_file)

    engine = NetworkHealthEngine()
    done = threading.Event()
    engine.start()

    if args.bloat_test:
        def bloat_after_warmup():
            # baseline needs at least BLOAT_MIN_BASELINE_SAMPLES public samples
            if not done.wait(constants.BLOAT_MIN_BASELINE_SAMPLES * 2 * constants.TICK_INTERVAL):
                engine.run_upload_bloat_test(args.bloat_test)
                print(engine.build_text_snapshot(), flush=True)

        threading.Thread(target=bloat_after_warmup, daemon=True, name="bloat-cli").start()

    elapsed = 0.0
    try:
        while not done.wait(args.interval):
            print(engine.build_text_snapshot(), flush=True)
            elapsed += args.interval
            if args.duration is not None and elapsed >= args.duration:
                break
    except KeyboardInterrupt:
        pass
    finally:
        done.set()
        engine.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
