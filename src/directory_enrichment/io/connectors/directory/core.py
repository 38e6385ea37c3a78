"""
Directory objects HTTP client core implementation.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from .models import DirectoryResponseError
from .transport import DirectoryTransport

logger = logging.getLogger(__name__)

LIST_DIRECTORY_OBJECTS_PATH = "/api/ListDirectoryObjects"
SELECT_FIELDS = "id,displayName,userPrincipalName"

LookupFunction = Callable[[str, List[str]], Awaitable[List[Dict[str, Any]]]]


def parse_directory_objects(payload: Any) -> List[Dict[str, Any]]:
    """
    Extract the list of directory objects from a response body.

    Accepts a bare JSON list or an object wrapping it under ``value`` or
    ``Results``.

    Raises:
        DirectoryResponseError: If no object list can be found.
    """
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = payload.get("value", payload.get("Results"))
    else:
        items = None

    if not isinstance(items, list):
        raise DirectoryResponseError(
            f"Unexpected directory response shape: {type(payload).__name__}"
        )
    return items


class DirectoryObjectsClient(DirectoryTransport):
    """
    Synchronous HTTP client for the directory objects API.

    Resolves batches of object ids within one tenant. Inherits session
    handling and status classification from DirectoryTransport.
    """

    def list_directory_objects(
        self, tenant: str, object_ids: Sequence[str]
    ) -> List[Dict[str, Any]]:
        """
        Look up directory objects by id within one tenant.

        Args:
            tenant: Tenant filter (default domain of the tenant)
            object_ids: Object ids to resolve

        Returns:
            Raw directory object dictionaries; ids the caller may not see
            are simply absent.
        """
        if not object_ids:
            return []

        url = f"{self.base_url}{LIST_DIRECTORY_OBJECTS_PATH}"
        body = {
            "tenantFilter": tenant,
            "ids": list(object_ids),
            "$select": SELECT_FIELDS,
        }

        logger.info(
            "Looking up directory objects",
            extra={"tenant": tenant, "id_count": len(object_ids)},
        )

        response = self._make_request("POST", url, json=body)
        try:
            payload = response.json()
        except ValueError as e:
            raise DirectoryResponseError("Directory response is not valid JSON") from e

        items = parse_directory_objects(payload)
        logger.debug(
            "Directory objects received",
            extra={"tenant": tenant, "returned": len(items)},
        )
        return items

    def as_lookup(self) -> LookupFunction:
        """
        Adapt this client to the async lookup signature used by GuidResolver.

        The blocking request runs in a worker thread so the event loop keeps
        serving other tenants while it waits.
        """

        async def lookup(tenant: str, object_ids: List[str]) -> List[Dict[str, Any]]:
            return await asyncio.to_thread(
                self.list_directory_objects, tenant, object_ids
            )

        return lookup
