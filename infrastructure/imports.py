"""Resolvers for cross-stack exports."""
import logging
from typing import Dict, Mapping, Optional

import boto3

from .errors import UnresolvedImportError

logger = logging.getLogger(__name__)


class StaticImports:
    """Exports supplied as a mapping, e.g. from tests or a pinned environment."""

    def __init__(self, values: Mapping[str, str]):
        self.values = dict(values)

    def lookup(self, export_name: str) -> str:
        try:
            return self.values[export_name]
        except KeyError:
            raise UnresolvedImportError(export_name) from None


class CloudFormationExports:
    """Exports published in the target account and region.

    All exports are listed once on first lookup and cached.
    """

    def __init__(self, client=None, region: Optional[str] = None):
        self.client = client or boto3.client("cloudformation", region_name=region)
        self._exports: Optional[Dict[str, str]] = None

    def lookup(self, export_name: str) -> str:
        exports = self._load()
        if export_name not in exports:
            raise UnresolvedImportError(export_name)
        return exports[export_name]

    def _load(self) -> Dict[str, str]:
        if self._exports is None:
            exports = {}
            paginator = self.client.get_paginator("list_exports")
            for page in paginator.paginate():
                for export in page.get("Exports", []):
                    exports[export["Name"]] = export["Value"]
            logger.info("Loaded %d CloudFormation export(s)", len(exports))
            self._exports = exports
        return self._exports
