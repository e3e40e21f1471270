"""Entry point for the ``netspec-render`` command."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event
from typing import Optional

import yaml
from oslo_config import cfg

from netspec.errors import UnsupportedTypeError
from netspec_operator import ReconcileResult, Reconciler

from .config import dump_applied_spec, dump_objects, load_bootstrap_facts, load_network_spec
from .options import build_render_settings, register_render_opts
from .watchers import FileSpecWatcher

LOG = logging.getLogger(__name__)

APPLIED_SPEC_NAME = "applied-spec.yaml"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def _load_conf(config_file: Optional[Path]) -> cfg.ConfigOpts:
    conf = cfg.ConfigOpts()
    register_render_opts(conf)
    conf(args=[], default_config_files=[str(config_file)] if config_file else [])
    return conf


def _applied_path(args: argparse.Namespace) -> Optional[Path]:
    if args.previous is not None:
        return args.previous
    if args.output is not None:
        return args.output.parent / APPLIED_SPEC_NAME
    return None


def _emit(result: ReconcileResult, args: argparse.Namespace) -> int:
    if not result.accepted:
        for err in result.errors:
            print(f"error: {err}", file=sys.stderr)
        return 1

    if args.output is not None:
        dump_objects(result.objects, args.output)
        LOG.info("wrote %d objects to %s", len(result.objects), args.output)
    else:
        sys.stdout.write(
            yaml.safe_dump_all([o.to_dict() for o in result.objects], default_flow_style=False, sort_keys=False)
        )

    applied = _applied_path(args)
    if applied is not None:
        dump_applied_spec(result.spec, applied)
        LOG.debug("wrote applied spec to %s", applied)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Render cluster network objects")
    parser.add_argument("--spec", type=Path, required=True, help="Path to the network spec YAML")
    parser.add_argument("--facts", type=Path, default=None, help="Path to the bootstrap facts YAML")
    parser.add_argument(
        "--previous",
        type=Path,
        default=None,
        help="Path to the previously applied spec; updated on success",
    )
    parser.add_argument("--output", type=Path, default=None, help="Write objects here instead of stdout")
    parser.add_argument("--config-file", type=Path, default=None, help="oslo.config file with a [render] section")
    parser.add_argument("--watch", action="store_true", help="Re-render whenever the spec file changes")
    parser.add_argument("--interval", type=float, default=5.0, help="Polling interval in watch mode")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    settings = build_render_settings(_load_conf(args.config_file))
    reconciler = Reconciler(settings=settings)

    previous = None
    if args.previous is not None and args.previous.exists():
        previous = load_network_spec(args.previous)

    if not args.watch:
        try:
            result = reconciler.reconcile(
                load_network_spec(args.spec), load_bootstrap_facts(args.facts), previous
            )
        except UnsupportedTypeError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        return _emit(result, args)

    stop_event = Event()
    watcher = FileSpecWatcher(
        reconciler=reconciler,
        path=args.spec,
        facts_loader=lambda: load_bootstrap_facts(args.facts),
        interval=args.interval,
        stop_event=stop_event,
        on_result=lambda result: _emit(result, args),
        previous=previous,
    )

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    watcher.start()
    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()
    watcher.join()

    LOG.info("render agent stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
