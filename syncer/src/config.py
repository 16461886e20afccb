from __future__ import annotations

import argparse
import os
import re
import signal
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from syncer.src.errors import ConfigError

# Namespaces are RFC 1123 labels; ConfigMap names are RFC 1123 subdomains.
_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_CONFIG_KEY = re.compile(r"^[-._a-zA-Z0-9]+$")


@dataclass(frozen=True)
class SyncerConfig:
    """Immutable syncer configuration, static for the process lifetime.

    Attributes:
        configmap_name:      ConfigMap that receives the namespace list.
        configmap_namespace: Namespace holding that ConfigMap.
        label_selector:      Selector for the namespaces being watched.
        watch_key:           Key inside the ConfigMap ``data`` holding the list.
        main_container:      Pattern matched against the companion process
                             command line when a reload is needed.
    """

    configmap_name: str = "watch-namespace-config"
    configmap_namespace: str = "vault"
    label_selector: str = "foo=bar"
    watch_key: str = "WATCH_NAMESPACE"
    main_container: str = "main-container"
    restart_signal: signal.Signals = signal.SIGTERM
    request_timeout_seconds: int = 10
    resync_seconds: int = 60
    shutdown_timeout_seconds: int = 30
    health_enabled: bool = True
    health_port: int = 8080


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def parse_signal(value: str) -> signal.Signals:
    """Resolve ``SIGTERM``, ``TERM`` or ``15`` to a :class:`signal.Signals` member."""
    text = value.strip().upper()
    if text.isdigit():
        try:
            return signal.Signals(int(text))
        except ValueError as exc:
            raise ConfigError(f"Unknown signal number: {value!r}") from exc
    if not text.startswith("SIG"):
        text = f"SIG{text}"
    try:
        return signal.Signals[text]
    except KeyError as exc:
        raise ConfigError(f"Unknown signal name: {value!r}") from exc


def build_arg_parser(env: Mapping[str, str]) -> argparse.ArgumentParser:
    defaults = SyncerConfig()
    parser = argparse.ArgumentParser(
        prog="namespace-syncer",
        description=(
            "Keep a ConfigMap key in sync with the namespaces matching a label "
            "selector and signal the companion process when it changes."
        ),
    )
    parser.add_argument(
        "--configmap-name",
        default=env.get("CONFIGMAP_NAME", defaults.configmap_name),
        help="Name of the ConfigMap to update",
    )
    parser.add_argument(
        "--configmap-namespace",
        default=env.get("CONFIGMAP_NAMESPACE", defaults.configmap_namespace),
        help="Namespace of the ConfigMap",
    )
    parser.add_argument(
        "--label-selector",
        default=env.get("LABEL_SELECTOR", defaults.label_selector),
        help="Label selector for namespaces to watch",
    )
    parser.add_argument(
        "--watch-key",
        default=env.get("WATCH_KEY", defaults.watch_key),
        help="Key in the ConfigMap to store the namespace list",
    )
    parser.add_argument(
        "--main-container",
        default=env.get("MAIN_CONTAINER", defaults.main_container),
        help="Command-line pattern of the main container process to restart",
    )
    return parser


def load_config(
    argv: Sequence[str] | None = None, env: Mapping[str, str] | None = None
) -> SyncerConfig:
    """Load syncer config from command-line flags and the environment.

    Flags take precedence over their environment variables
    (``CONFIGMAP_NAME``, ``CONFIGMAP_NAMESPACE``, ``LABEL_SELECTOR``,
    ``WATCH_KEY``, ``MAIN_CONTAINER``).  Tuning knobs are environment-only:

        ``REQUEST_TIMEOUT_SECONDS``  — per-call Kubernetes API timeout (``10``).
        ``RESYNC_SECONDS``           — periodic full reconcile interval (``60``).
        ``SHUTDOWN_TIMEOUT_SECONDS`` — wait for an in-flight pass on exit (``30``).
        ``RESTART_SIGNAL``           — signal sent to the companion (``SIGTERM``).
        ``HEALTH_ENABLED``           — serve health/metrics endpoints (``true``).
        ``HEALTH_PORT``              — health server port (``8080``).

    Raises :class:`ConfigError` on any invalid value.
    """
    values = env if env is not None else os.environ
    args = build_arg_parser(values).parse_args(argv)

    configmap_name = args.configmap_name.strip()
    if len(configmap_name) > 253 or not _DNS_SUBDOMAIN.match(configmap_name):
        raise ConfigError(f"configmap-name is not a valid object name: {configmap_name!r}")

    configmap_namespace = args.configmap_namespace.strip()
    if len(configmap_namespace) > 63 or not _DNS_LABEL.match(configmap_namespace):
        raise ConfigError(
            f"configmap-namespace is not a valid namespace name: {configmap_namespace!r}"
        )

    label_selector = args.label_selector.strip()
    if not label_selector:
        raise ConfigError("label-selector must be a non-empty string")

    watch_key = args.watch_key.strip()
    if not _CONFIG_KEY.match(watch_key):
        raise ConfigError(f"watch-key is not a valid ConfigMap key: {watch_key!r}")

    main_container = args.main_container.strip()
    if not main_container:
        raise ConfigError("main-container must be a non-empty string")
    try:
        re.compile(main_container)
    except re.error as exc:
        raise ConfigError(f"main-container is not a valid pattern: {exc}") from exc

    return SyncerConfig(
        configmap_name=configmap_name,
        configmap_namespace=configmap_namespace,
        label_selector=label_selector,
        watch_key=watch_key,
        main_container=main_container,
        restart_signal=parse_signal(values.get("RESTART_SIGNAL", "SIGTERM")),
        request_timeout_seconds=env_int(
            "REQUEST_TIMEOUT_SECONDS", 10, minimum=1, env=values
        ),
        resync_seconds=env_int("RESYNC_SECONDS", 60, minimum=1, env=values),
        shutdown_timeout_seconds=env_int(
            "SHUTDOWN_TIMEOUT_SECONDS", 30, minimum=1, env=values
        ),
        health_enabled=parse_bool(values.get("HEALTH_ENABLED"), default=True),
        health_port=env_int("HEALTH_PORT", 8080, minimum=0, maximum=65535, env=values),
    )
