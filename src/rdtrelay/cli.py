from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict

from .bench import run_benchmark
from .client import Client
from .constants import DEFAULT_TIMEOUT_MS, MAX_RETRIES, WINDOW_SIZE
from .errors import TransportUnavailable
from .net import Impairment, PeerEndpoint
from .relay import Hub
from .sender import Metrics


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload, file=sys.stderr)


def _window_opts(args: argparse.Namespace) -> dict:
    return dict(window_size=args.window_size, max_retries=args.max_retries, timeout_ms=args.timeout_ms)


def _metrics(m: Metrics) -> dict:
    return {
        "packets": m.packets_sent,
        "bytes": m.bytes_sent,
        "retransmits": m.retransmits,
        "timeouts": m.timeouts,
        "naks": m.naks,
        "abandoned": m.abandoned,
    }


def cmd_hub(args: argparse.Namespace) -> int:
    impair = Impairment(args.loss_rate, args.delay_ms)
    hub = Hub.listening(args.listen_host, args.listen_port, impairment=impair, **_window_opts(args))
    try:
        hub.serve()
    except KeyboardInterrupt:
        logging.info("hub interrupted; shutting down")
    finally:
        hub.close()

    _emit({"role": "hub", **asdict(hub.stats), "relayed": hub.relay.forwarded}, args.json)
    return 0


def cmd_client(args: argparse.Namespace) -> int:
    impair = Impairment(args.loss_rate, args.delay_ms)

    def show(text: str, origin: PeerEndpoint) -> None:
        print(text, flush=True)

    client = Client.connect(
        args.server_host,
        args.server_port,
        impairment=impair,
        on_message=show,
        **_window_opts(args),
    ).start()
    failed = False
    try:
        for line in sys.stdin:
            line = line.rstrip("\n")
            if line:
                client.send(line)
        if not client.flush(args.linger):
            logging.warning("unacknowledged messages left after %.1fs", args.linger)
    except KeyboardInterrupt:
        logging.info("client interrupted; in-flight messages are abandoned")
    except TransportUnavailable as e:
        logging.error("giving up: %s", e)
        failed = True
    finally:
        client.close()

    _emit({"role": "client", **_metrics(client.session.metrics)}, args.json)
    return 1 if failed or client.failure is not None else 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        clients=args.clients,
        messages=args.messages,
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
        **_window_opts(args),
    )
    _emit({"role": "bench", **asdict(r)}, args.json)
    return 0 if r.messages_delivered == r.messages_expected else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rdtrelay", description="Reliable message relay over UDP (sliding window + CRC-16).")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--window-size", type=int, default=WINDOW_SIZE)
        x.add_argument("--max-retries", type=int, default=MAX_RETRIES)
        x.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
        x.add_argument("--loss-rate", type=float, default=0.0, help="simulate packet loss")
        x.add_argument("--delay-ms", type=int, default=0, help="simulate per-datagram delay")
        x.add_argument("--json", action="store_true")

    hub = sub.add_parser("hub", help="accept peers and relay their messages")
    add_common(hub)
    hub.add_argument("--listen-host", default="0.0.0.0")
    hub.add_argument("--listen-port", type=int, required=True)
    hub.set_defaults(func=cmd_hub)

    client = sub.add_parser("client", help="send stdin lines to a hub, print relayed messages")
    add_common(client)
    client.add_argument("--server-host", required=True)
    client.add_argument("--server-port", type=int, required=True)
    client.add_argument("--linger", type=float, default=5.0, help="seconds to wait for ACKs after EOF")
    client.set_defaults(func=cmd_client)

    bench = sub.add_parser("bench", help="loopback hub + clients benchmark")
    add_common(bench)
    bench.add_argument("--clients", type=int, default=3)
    bench.add_argument("--messages", type=int, default=50)
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
