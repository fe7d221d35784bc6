#!/usr/bin/env python3
"""
Facility Link command line.

Usage:
    facility-link send    [--config FILE] [--peer-public-key PATH] [--key-size 256|384]
                          [--interval SECONDS] [--remote HOST:PORT] [--snapshot FILE] ...
    facility-link receive [--config FILE] [--private-key PATH] [--listen HOST:PORT]
                          [--output FILE] [--timeout SECONDS] ...
    facility-link keygen  DIRECTORY [--key-size 256|384] [--name NAME]

Fatal errors are printed as ``<name>: [<component>: ]<message>`` and exit with status 1.
"""

import argparse
import json
import logging
import signal
import sys
from typing import List, Optional, TextIO

from . import __version__
from .config import ReceiverConfig, SenderConfig
from .crypto.identity import generate_identity
from .errors import ConfigurationError, FacilityLinkError
from .protocol.packet import Packet
from .receiver import TelemetryReceiver
from .sender import TelemetrySender
from .telemetry.record import TelemetryRecord

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s"
    )


def _install_signal_handlers(stop) -> None:
    def handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="facility-link", description="Encrypted storage-network telemetry link")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    send = sub.add_parser("send", help="Collect telemetry and push it to the receiver")
    send.add_argument("--config", help="JSON config file")
    send.add_argument("--name", help="Process name used in diagnostics")
    send.add_argument("--peer-public-key", help="Receiver public key (PEM)")
    send.add_argument("--private-key", help="This sender's private key (PEM, optional)")
    send.add_argument("--key-size", type=int, choices=(256, 384), help="Curve strength in bits")
    send.add_argument("--interval", type=float, help="Seconds between ticks")
    send.add_argument("--sender-id", help="Identifier stamped into packet headers")
    send.add_argument("--session-policy", choices=("per-process", "per-tick"), help="Ephemeral key rotation")
    send.add_argument("--digest", choices=("md5", "sha256"), help="Key digest")
    send.add_argument("--bind", dest="local_address", help="Local HOST:PORT")
    send.add_argument("--remote", dest="remote_address", help="Receiver HOST:PORT")
    send.add_argument("--snapshot", dest="snapshot_path", help="Controller snapshot JSON file")
    send.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")

    receive = sub.add_parser("receive", help="Receive and decrypt telemetry")
    receive.add_argument("--config", help="JSON config file")
    receive.add_argument("--name", help="Process name used in diagnostics")
    receive.add_argument("--private-key", help="Receiver private key (PEM)")
    receive.add_argument("--key-size", type=int, choices=(256, 384), help="Expected curve strength")
    receive.add_argument("--digest", choices=("md5", "sha256"), help="Key digest")
    receive.add_argument("--timeout", dest="receive_timeout", type=float, help="Receive poll timeout in seconds")
    receive.add_argument("--listen", dest="local_address", help="Local HOST:PORT")
    receive.add_argument("--remote", dest="remote_address", help="Sender HOST:PORT")
    receive.add_argument("--output", help="Append decoded records to this JSON-lines file")
    receive.add_argument("--once", action="store_true", help="Exit after the first packet")
    receive.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")

    keygen = sub.add_parser("keygen", help="Generate a long-lived EC key pair")
    keygen.add_argument("directory", help="Output directory")
    keygen.add_argument("--key-size", type=int, choices=(256, 384), default=384)
    keygen.add_argument("--name", default="ec-key", help="File name stem")
    keygen.add_argument("--force", action="store_true", help="Overwrite existing files")

    return parser


def _fatal(error: FacilityLinkError, name: Optional[str] = None) -> int:
    print(error.diagnostic(name) if name else error.message, file=sys.stderr)
    return 1


def _resolve(config_cls, args: argparse.Namespace, fields: List[str]):
    config = config_cls.from_file(args.config) if args.config else config_cls()
    config = config_cls.from_env(config)
    config = config.with_overrides(**{f: getattr(args, f, None) for f in fields})
    return config.validate()


def run_sender(args: argparse.Namespace) -> int:
    config = _resolve(SenderConfig, args, [
        "name", "peer_public_key", "private_key", "key_size", "interval", "sender_id",
        "session_policy", "digest", "local_address", "remote_address", "snapshot_path", "log_level",
    ])
    _setup_logging(config.log_level)

    try:
        sender = TelemetrySender.from_config(config)
    except FacilityLinkError as e:
        return _fatal(e, config.name)
    _install_signal_handlers(sender.stop)
    try:
        sender.run()
    except FacilityLinkError as e:
        return _fatal(e, config.name)
    finally:
        sender.close()
    return 0


def _record_writer(stream: Optional[TextIO]):
    """JSON-lines writer for ``stream``, or a logger when there is none."""

    def write(record: TelemetryRecord, packet: Packet) -> None:
        line = json.dumps({"senderID": packet.header.sender_id, "record": record.to_dict()}, sort_keys=True)
        if stream is None:
            logger.info(f"Record {line}")
            return
        stream.write(line + "\n")
        stream.flush()

    return write


def run_receiver(args: argparse.Namespace) -> int:
    config = _resolve(ReceiverConfig, args, [
        "name", "private_key", "key_size", "digest", "receive_timeout",
        "local_address", "remote_address", "output", "log_level",
    ])
    _setup_logging(config.log_level)

    output = None
    if config.output:
        try:
            output = open(config.output, 'a')
        except OSError as e:
            print(f"{config.name}: output: {config.output}: {e.strerror or e}", file=sys.stderr)
            return 1

    try:
        receiver = TelemetryReceiver.from_config(config, on_record=_record_writer(output))
    except FacilityLinkError as e:
        if output is not None:
            output.close()
        return _fatal(e, config.name)
    _install_signal_handlers(receiver.stop)
    try:
        receiver.run(max_packets=1 if args.once else None)
    finally:
        receiver.close()
        if output is not None:
            output.close()
    return 0


def run_keygen(args: argparse.Namespace) -> int:
    _setup_logging("INFO")
    try:
        private_path, public_path = generate_identity(
            args.directory, args.key_size, args.name, overwrite=args.force
        )
    except (FileExistsError, OSError) as e:
        print(f"keygen: {e}", file=sys.stderr)
        return 1
    print(f"private key: {private_path}")
    print(f"public key:  {public_path}")
    return 0


COMMANDS = {
    "send": run_sender,
    "receive": run_receiver,
    "keygen": run_keygen,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.command](args)
    except ConfigurationError as e:
        # message already carries the process name
        return _fatal(e)


if __name__ == "__main__":
    sys.exit(main())
