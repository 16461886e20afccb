from __future__ import annotations

import logging

from kubernetes.client import ApiException, CoreV1Api
from urllib3.exceptions import HTTPError

from syncer.src.errors import TransientQueryError


class NamespaceLister:
    """Lists the names of namespaces matching a label selector.

    Every call performs a fresh ``list_namespace`` request; nothing is
    cached between reconciliation passes.
    """

    def __init__(
        self,
        core_api: CoreV1Api,
        label_selector: str,
        request_timeout_seconds: int = 10,
        logger: logging.Logger | None = None,
    ) -> None:
        self.core_api = core_api
        self.label_selector = label_selector
        self.request_timeout_seconds = request_timeout_seconds
        self.logger = logger or logging.getLogger(__name__)

    def list_members(self) -> frozenset[str]:
        try:
            namespaces = self.core_api.list_namespace(
                label_selector=self.label_selector,
                _request_timeout=self.request_timeout_seconds,
            )
        except ApiException as exc:
            raise TransientQueryError(
                f"listing namespaces with selector {self.label_selector!r} failed "
                f"(status={exc.status}): {exc.reason}"
            ) from exc
        except HTTPError as exc:
            raise TransientQueryError(
                f"listing namespaces with selector {self.label_selector!r} failed: {exc}"
            ) from exc

        names: set[str] = set()
        for item in getattr(namespaces, "items", None) or []:
            name = getattr(getattr(item, "metadata", None), "name", None)
            if not name:
                self.logger.warning("Skipping namespace with missing metadata.name")
                continue
            names.add(name)
        return frozenset(names)
