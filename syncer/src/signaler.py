from __future__ import annotations

import logging
import os
import re
import signal
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import psutil

from syncer.src.errors import ProcessNotFoundError, SignalDeliveryError


def _ancestor_pids(pid: int) -> list[int]:
    try:
        return [parent.pid for parent in psutil.Process(pid).parents()]
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


@dataclass(frozen=True)
class ProcessMatch:
    pid: int
    cmdline: str


class ProcessSignaler:
    """Finds the companion process in the shared PID namespace and signals it.

    The pod must run with ``shareProcessNamespace: true`` so the main
    container's processes are visible here.  Matching is a regular
    expression search over the space-joined command line, so a plain
    substring such as ``vault server`` works as-is.

    The syncer itself and its ancestors are never candidates.  Their
    command lines carry the pattern as an argument when the sidecar is
    started through a wrapper such as ``sh -c`` or ``tini``.

    When several processes match, the lowest PID is signaled.  In a
    container the entrypoint normally has the lowest PID of its process
    tree, so this picks the parent rather than one of its workers.
    """

    def __init__(
        self,
        pattern: str,
        sig: signal.Signals = signal.SIGTERM,
        logger: logging.Logger | None = None,
        process_iter: Callable[..., Iterable[Any]] = psutil.process_iter,
        own_pid: int | None = None,
        ancestor_pids: Callable[[int], Iterable[int]] | None = None,
    ) -> None:
        self.pattern = pattern
        self._regex = re.compile(pattern)
        self.sig = sig
        self.logger = logger or logging.getLogger(__name__)
        self._process_iter = process_iter
        own_pid = own_pid if own_pid is not None else os.getpid()
        lookup = ancestor_pids or _ancestor_pids
        self._excluded_pids = frozenset({own_pid, *lookup(own_pid)})

    def find_matches(self) -> list[ProcessMatch]:
        """Return every visible process whose command line matches, sorted by PID."""
        matches: list[ProcessMatch] = []
        for proc in self._process_iter(["pid", "cmdline"]):
            # process_iter fills unreadable fields with None instead of raising
            info = getattr(proc, "info", None) or {}
            pid = info.get("pid")
            if pid is None or pid in self._excluded_pids:
                continue
            cmdline = " ".join(info.get("cmdline") or [])
            if cmdline and self._regex.search(cmdline):
                matches.append(ProcessMatch(pid=pid, cmdline=cmdline))
        matches.sort(key=lambda match: match.pid)
        return matches

    def restart(self) -> int:
        """Signal the companion process and return its PID.

        Raises :class:`ProcessNotFoundError` when nothing matches and
        :class:`SignalDeliveryError` when the signal cannot be delivered.
        """
        matches = self.find_matches()
        if not matches:
            raise ProcessNotFoundError(f"no process matches pattern {self.pattern!r}")

        target = matches[0]
        if len(matches) > 1:
            self.logger.warning(
                "%d processes match pattern %r; signaling lowest pid %d (others: %s)",
                len(matches),
                self.pattern,
                target.pid,
                ", ".join(str(match.pid) for match in matches[1:]),
            )

        try:
            psutil.Process(target.pid).send_signal(self.sig)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
            raise SignalDeliveryError(
                f"failed to send {self.sig.name} to pid {target.pid}: {exc}"
            ) from exc

        self.logger.info(
            "Sent %s to companion process pid %d (%s)",
            self.sig.name,
            target.pid,
            target.cmdline,
            extra={"pid": target.pid, "signal": self.sig.name},
        )
        return target.pid
