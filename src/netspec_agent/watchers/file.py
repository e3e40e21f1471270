"""File-based network spec watcher."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Event, Thread
from typing import Callable, Optional, Tuple

import yaml

from netspec.config import BootstrapFacts, NetworkSpec
from netspec.errors import UnsupportedTypeError
from netspec_operator import ReconcileResult, Reconciler

from ..config import parse_network_spec

LOG = logging.getLogger(__name__)

ResultCallback = Callable[[ReconcileResult], None]


class FileSpecWatcher(Thread):
    """Poll a YAML spec file and run one reconcile pass per content change."""

    def __init__(
        self,
        reconciler: Reconciler,
        path: Path,
        facts_loader: Callable[[], BootstrapFacts],
        interval: float,
        stop_event: Event,
        on_result: Optional[ResultCallback] = None,
        previous: Optional[NetworkSpec] = None,
    ) -> None:
        super().__init__(daemon=True)
        self._reconciler = reconciler
        self._path = Path(path)
        self._facts_loader = facts_loader
        self._interval = interval
        self._stop_event = stop_event
        self._on_result = on_result
        self._previous = previous
        self._last_seen: Optional[Tuple[str, BootstrapFacts]] = None

    @property
    def previous(self) -> Optional[NetworkSpec]:
        """Last accepted spec, fed to the change check of the next pass."""
        return self._previous

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("spec watcher encountered an error")
            self._stop_event.wait(self._interval)

    def poll(self) -> Optional[ReconcileResult]:
        """Run a pass when the spec text or the bootstrap facts changed.

        The pair is remembered only once it has been handled, so a facts
        loader failure is retried on the next poll.
        """
        if not self._path.exists():
            LOG.debug("spec file %s does not exist yet", self._path)
            return None

        text = self._path.read_text()
        facts = self._facts_loader()
        seen = (text, facts)
        if seen == self._last_seen:
            return None

        try:
            spec = parse_network_spec(yaml.safe_load(text))
        except (yaml.YAMLError, ValueError) as exc:
            LOG.warning("invalid spec file %s: %s", self._path, exc)
            self._last_seen = seen
            return None

        try:
            result = self._reconciler.reconcile(spec, facts, self._previous)
        except UnsupportedTypeError as exc:
            LOG.error("cannot reconcile %s: %s", self._path, exc)
            self._last_seen = seen
            return None

        self._last_seen = seen
        if result.accepted:
            self._previous = result.applied_spec()
        if self._on_result is not None:
            self._on_result(result)
        return result
