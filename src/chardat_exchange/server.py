# server.py
import sys

# ruff: noqa: E402, I001

# Python version check - must be at the very beginning
MIN_PY = (3, 11)
if sys.version_info < MIN_PY:
    sys.stderr.write(
        f"ERROR: chardat-exchange requires Python {MIN_PY[0]}.{MIN_PY[1]}+ "
        f"(current: {sys.version.split()[0]}).\n"
    )
    sys.exit(1)

import argparse
import logging
import threading
import time
import tomllib
from pathlib import Path

import zmq

from . import protocol
from .client import ChunkSender
from .config import (
    ConfigurationError,
    DefaultConfigError,
    ExchangeConfig,
    create_config_from_args,
)
from .errors import SnapshotFormatError
from .logging_utils import configure_logging, shutdown_logging
from .network_utils import receiver_endpoints
from .storage import SnapshotStore
from .transfer import TransferReceiver

logger = logging.getLogger(__name__)


def get_version() -> str:
    """
    Return the package version.
    Priority:
      1) importlib.metadata for 'chardat-exchange' (when installed)
      2) parse nearest pyproject.toml (when running from source)
      3) 'unknown'
    """
    import importlib.metadata as im

    try:
        return im.version("chardat-exchange")
    except im.PackageNotFoundError:
        pass

    for parent in Path(__file__).resolve().parents:
        toml_path = parent / "pyproject.toml"
        if toml_path.exists():
            data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
            v = (data.get("project") or {}).get("version")
            if v:
                return v
            break

    return "unknown"


class ExchangeServer:
    """Receives chunked character data on a PULL socket.

    Decoded protocol messages are fed to a :class:`TransferReceiver`; a periodic
    thread expires transfers that stalled.
    """

    POLL_TIMEOUT = 100  # ms
    CLEANUP_INTERVAL = 1.0
    STATUS_LOG_INTERVAL = 30.0
    MAIN_LOOP_SLEEP = 0.05

    def __init__(
        self,
        receiver: TransferReceiver,
        port: int = 5560,
        bind_host: str = "*",
        poll_timeout: int = POLL_TIMEOUT,
        cleanup_interval: float = CLEANUP_INTERVAL,
        context: zmq.Context | None = None,
    ):
        self.receiver = receiver
        self.port = port
        self.bind_host = bind_host
        self.poll_timeout = poll_timeout
        self.cleanup_interval = cleanup_interval

        self._own_context = context is None
        self.context = context or zmq.Context()
        self.pull: zmq.Socket | None = None
        self.endpoint: str | None = None

        self.running = False
        self.receive_thread: threading.Thread | None = None
        self.periodic_thread: threading.Thread | None = None

        self._stats_lock = threading.Lock()
        self.message_count = 0
        self.invalid_message_count = 0

    def _increment_stat(self, stat_name: str, amount: int = 1):
        with self._stats_lock:
            setattr(self, stat_name, getattr(self, stat_name) + amount)

    def start(self):
        """Bind the PULL socket and start the receive and periodic threads.

        A port of 0 binds to a random free port; ``endpoint`` holds the result.
        """
        try:
            self.pull = self.context.socket(zmq.PULL)
            self.pull.setsockopt(zmq.LINGER, 0)
            if self.port == 0:
                self.port = self.pull.bind_to_random_port(f"tcp://{self.bind_host}")
            else:
                self.pull.bind(f"tcp://{self.bind_host}:{self.port}")
            self.endpoint = self.pull.getsockopt_string(zmq.LAST_ENDPOINT)
        except zmq.error.ZMQError as e:
            if self.pull is not None:
                self.pull.close()
                self.pull = None
            if e.errno == zmq.EADDRINUSE:
                logger.error(
                    f"Error: Another receiver is already running on port {self.port}"
                )
                raise SystemExit(1) from e
            logger.error(f"ZMQ Error: {e}")
            raise
        logger.info(f"PULL socket bound to {self.endpoint}")

        self.running = True
        self.receive_thread = threading.Thread(
            target=self._receive_loop, name="ReceiveThread", daemon=True
        )
        self.periodic_thread = threading.Thread(
            target=self._periodic_loop, name="PeriodicThread", daemon=True
        )
        self.receive_thread.start()
        self.periodic_thread.start()
        logger.info("Receiver is ready and waiting for character data...")

    def stop(self):
        logger.info("Stopping receiver...")
        self.running = False
        if self.receive_thread:
            self.receive_thread.join()
        if self.periodic_thread:
            self.periodic_thread.join()
        if self.pull is not None:
            self.pull.close()
            self.pull = None
        if self._own_context:
            self.context.term()
        logger.info(
            f"Receiver stopped. Messages: {self.message_count}, "
            f"invalid: {self.invalid_message_count}, "
            f"transfers completed: {self.receiver.completed_count}, "
            f"failed: {self.receiver.failed_count}"
        )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.stop()

    def handle_message(self, message_bytes: bytes):
        msg_type, message = protocol.deserialize(message_bytes)
        if message is None:
            self._increment_stat("invalid_message_count")
            logger.warning(
                f"Dropping invalid message (type={msg_type}, {len(message_bytes)} bytes)"
            )
            return
        self.receiver.handle_message(message)

    def _receive_loop(self):
        logger.debug("Receive loop started")
        while self.running:
            try:
                if self.pull.poll(self.poll_timeout, zmq.POLLIN):
                    message_bytes = self.pull.recv()
                    self._increment_stat("message_count")
                    self.handle_message(message_bytes)
            except zmq.error.ZMQError as e:
                if not self.running:
                    break
                logger.error(f"ZMQ error in receive loop: {e}")
            except Exception:
                logger.exception("Error in receive loop")
        logger.debug("Receive loop ended")

    def _periodic_loop(self):
        logger.debug("Periodic loop started")
        last_cleanup = 0.0
        last_log = time.monotonic()
        while self.running:
            try:
                current_time = time.monotonic()
                if current_time - last_cleanup >= self.cleanup_interval:
                    self.receiver.expire_stale()
                    last_cleanup = current_time
                if current_time - last_log >= self.STATUS_LOG_INTERVAL:
                    logger.info(
                        f"Status: transfer state={self.receiver.state.value}, "
                        f"messages={self.message_count}, "
                        f"completed={self.receiver.completed_count}"
                    )
                    last_log = current_time
                time.sleep(self.MAIN_LOOP_SLEEP)
            except Exception:
                logger.exception("Error in periodic loop")
        logger.debug("Periodic loop ended")


# ----------------------------------------------------------------------
# Command line
# ----------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chardat-exchange",
        description="Store, send and receive character snapshot blobs",
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {get_version()}",
        help="Show version and exit",
    )
    parser.add_argument("--config", type=Path, help="Path to a TOML config file")
    parser.add_argument("--storage-dir", type=Path, help="Directory of .chardat files")
    parser.add_argument("--log-dir", type=Path, help="Enable JSON file logging here")
    parser.add_argument(
        "--log-level-console",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Console log level",
    )
    parser.add_argument(
        "--log-json-console", action="store_true", help="Emit console logs as JSON"
    )
    parser.add_argument("--log-rotation", help="loguru rotation rule, e.g. '10 MB'")
    parser.add_argument("--log-retention", help="loguru retention rule, e.g. '1 week'")

    commands = parser.add_subparsers(dest="command", required=True)

    receive = commands.add_parser("receive", help="Receive transfers and store them")
    receive.add_argument("--port", dest="transfer_port", type=int, help="PULL port")
    receive.add_argument(
        "--serve-rest", action="store_true", help="Also serve the store over HTTP"
    )
    receive.add_argument("--rest-port", type=int, help="REST bridge port")

    send = commands.add_parser("send", help="Send a stored character to a receiver")
    send.add_argument("--id", dest="character_id", type=int, required=True)
    send.add_argument("--target", dest="target_id", type=int, help="Target id (default: --id)")
    send.add_argument("--host", dest="transfer_host", help="Receiver host")
    send.add_argument("--port", dest="transfer_port", type=int, help="Receiver port")
    send.add_argument("--chunk-size", type=int, help="Bytes per chunk")

    inspect = commands.add_parser("inspect", help="Summarize a stored character")
    inspect.add_argument("--id", dest="character_id", type=int, required=True)

    return parser


def run_receive(config: ExchangeConfig, store: SnapshotStore, serve_rest: bool) -> int:
    receiver = TransferReceiver(config.session_timeout)
    receiver.on_transfer_complete.add_listener(store.save)

    server = ExchangeServer(
        receiver,
        port=config.transfer_port,
        poll_timeout=config.poll_timeout,
        cleanup_interval=config.session_cleanup_interval,
    )
    rest_server = None
    try:
        server.start()
        for endpoint in receiver_endpoints(server.port):
            logger.info(f"  Reachable at {endpoint}")
        if serve_rest:
            from .rest_bridge import create_app, run_uvicorn_in_thread

            _, rest_server = run_uvicorn_in_thread(
                create_app(store), config.rest_host, config.rest_port
            )
        logger.info("Receiver started successfully. Press Ctrl+C to stop.")
        while True:
            try:
                time.sleep(1)
            except KeyboardInterrupt:
                logger.info("Received interrupt signal (Ctrl+C)...")
                break
    except SystemExit:
        logger.info("Receiver startup failed. Exiting...")
        return 1
    finally:
        if rest_server is not None:
            rest_server.should_exit = True
        if server.running:
            server.stop()
    return 0


def run_send(config: ExchangeConfig, store: SnapshotStore, args: argparse.Namespace) -> int:
    result = store.load(args.character_id)
    if not result.ok:
        logger.error(f"Cannot send character {args.character_id}: {result.status.value}")
        return 1
    target_id = args.target_id if args.target_id is not None else args.character_id
    with ChunkSender(config.transfer_host, config.transfer_port) as sender:
        sender.send_blob(target_id, result.data, config.chunk_size)
    return 0


def run_inspect(store: SnapshotStore, character_id: int) -> int:
    from .rest_bridge import summarize

    result = store.load(character_id)
    if not result.ok:
        logger.error(f"Cannot inspect character {character_id}: {result.status.value}")
        return 1
    try:
        summary = summarize(result.data)
    except SnapshotFormatError as e:
        logger.error(f"{result.path} is not valid character data: {e}")
        return 1
    print(summary.model_dump_json(by_alias=True, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config, overrides = create_config_from_args(args)
    except (ConfigurationError, DefaultConfigError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except (FileNotFoundError, tomllib.TOMLDecodeError) as e:
        print(f"ERROR: Cannot read config file: {e}", file=sys.stderr)
        return 2

    configure_logging(
        Path(config.log_dir) if config.log_dir else None,
        console_level=config.log_level_console,
        console_json=config.log_json_console,
        rotation=config.log_rotation,
        retention=config.log_retention,
    )
    logger.info(f"chardat-exchange {get_version()} ({args.command})")
    for override in overrides:
        logger.info(
            f"  Config {override.key}: {override.default_value!r} -> {override.new_value!r}"
        )

    store = SnapshotStore(config.storage_dir, config.storage_extension)
    try:
        if args.command == "receive":
            return run_receive(config, store, args.serve_rest)
        if args.command == "send":
            return run_send(config, store, args)
        if args.command == "inspect":
            return run_inspect(store, args.character_id)
        parser.error(f"Unknown command {args.command}")
        return 2
    finally:
        shutdown_logging()


__all__ = ["ExchangeServer", "build_parser", "get_version", "main"]
