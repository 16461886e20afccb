from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from kubernetes.client import ApiException, CoreV1Api, V1ConfigMap, V1ObjectMeta
from urllib3.exceptions import HTTPError

from syncer.src.errors import AlreadyExistsError, ConflictError, TransientStoreError


@dataclass(frozen=True)
class ConfigEntry:
    """Snapshot of the managed ConfigMap as read from the API server.

    ``resource_version`` is the opaque token the next conditional update is
    keyed on.  ``obj`` keeps the full API object so a replace does not drop
    labels, annotations or ``binaryData`` owned by someone else.
    """

    namespace: str
    name: str
    data: dict[str, str]
    resource_version: str | None = None
    obj: Any = field(default=None, repr=False, compare=False)

    def value(self, key: str) -> str | None:
        return self.data.get(key)


def _normalize_data(raw_data: Any) -> dict[str, str]:
    if not isinstance(raw_data, dict):
        return {}
    return {
        k: ("" if v is None else str(v))
        for k, v in raw_data.items()
        if isinstance(k, str)
    }


def _entry_from_object(namespace: str, name: str, config_map: Any) -> ConfigEntry:
    metadata = getattr(config_map, "metadata", None)
    return ConfigEntry(
        namespace=namespace,
        name=name,
        data=_normalize_data(getattr(config_map, "data", None)),
        resource_version=getattr(metadata, "resource_version", None),
        obj=config_map,
    )


class ConfigMapStore:
    """Get, create and conditionally update one named ConfigMap key.

    Kubernetes API failures are translated at this boundary:

    - ``404`` on read means the object does not exist (``get`` returns ``None``).
    - ``409`` on create means a concurrent creator won (:class:`AlreadyExistsError`).
    - ``409`` on replace means the ``resourceVersion`` observed by ``get`` is
      stale (:class:`ConflictError`).
    - Anything else is a :class:`TransientStoreError`.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str,
        name: str,
        key: str,
        request_timeout_seconds: int = 10,
        logger: logging.Logger | None = None,
    ) -> None:
        self.core_api = core_api
        self.namespace = namespace
        self.name = name
        self.key = key
        self.request_timeout_seconds = request_timeout_seconds
        self.logger = logger or logging.getLogger(__name__)

    def _describe(self) -> str:
        return f"{self.namespace}/{self.name}"

    def get(self) -> ConfigEntry | None:
        try:
            config_map = self.core_api.read_namespaced_config_map(
                name=self.name,
                namespace=self.namespace,
                _request_timeout=self.request_timeout_seconds,
            )
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise TransientStoreError(
                f"reading ConfigMap {self._describe()} failed "
                f"(status={exc.status}): {exc.reason}"
            ) from exc
        except HTTPError as exc:
            raise TransientStoreError(f"reading ConfigMap {self._describe()} failed: {exc}") from exc
        return _entry_from_object(self.namespace, self.name, config_map)

    def create(self, value: str) -> ConfigEntry:
        body = V1ConfigMap(
            metadata=V1ObjectMeta(name=self.name, namespace=self.namespace),
            data={self.key: value},
        )
        try:
            created = self.core_api.create_namespaced_config_map(
                namespace=self.namespace,
                body=body,
                _request_timeout=self.request_timeout_seconds,
            )
        except ApiException as exc:
            if exc.status == 409:
                raise AlreadyExistsError(
                    f"ConfigMap {self._describe()} was created concurrently"
                ) from exc
            raise TransientStoreError(
                f"creating ConfigMap {self._describe()} failed "
                f"(status={exc.status}): {exc.reason}"
            ) from exc
        except HTTPError as exc:
            raise TransientStoreError(f"creating ConfigMap {self._describe()} failed: {exc}") from exc
        self.logger.info("Created ConfigMap %s", self._describe())
        return _entry_from_object(self.namespace, self.name, created if created is not None else body)

    def update(self, entry: ConfigEntry, value: str) -> ConfigEntry:
        """Replace the ConfigMap, preconditioned on ``entry.resource_version``."""
        data = {**entry.data, self.key: value}
        body = entry.obj
        if body is None:
            body = V1ConfigMap(
                metadata=V1ObjectMeta(
                    name=entry.name,
                    namespace=entry.namespace,
                    resource_version=entry.resource_version,
                ),
            )
        elif getattr(body, "metadata", None) is not None:
            body.metadata.resource_version = entry.resource_version
        body.data = data

        try:
            replaced = self.core_api.replace_namespaced_config_map(
                name=entry.name,
                namespace=entry.namespace,
                body=body,
                _request_timeout=self.request_timeout_seconds,
            )
        except ApiException as exc:
            if exc.status == 409:
                raise ConflictError(
                    f"ConfigMap {self._describe()} changed since resourceVersion "
                    f"{entry.resource_version}"
                ) from exc
            raise TransientStoreError(
                f"updating ConfigMap {self._describe()} failed "
                f"(status={exc.status}): {exc.reason}"
            ) from exc
        except HTTPError as exc:
            raise TransientStoreError(f"updating ConfigMap {self._describe()} failed: {exc}") from exc
        self.logger.info("Updated ConfigMap %s key %s", self._describe(), self.key)
        return _entry_from_object(entry.namespace, entry.name, replaced if replaced is not None else body)
