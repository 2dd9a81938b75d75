"""HTTP client for the backend system of record.

The backend owns persisted online/offline flags, the friend graph and
credential issuance. Three calls are consumed:

    PUT  /user/status/update       {identity, isOnline}      (bearer credential)
    GET  /friend/list/online       ?identity=...  -> [{identity}, ...]
    POST /reissue                  ?identity=...  -> new credential

Every failure (transport error, timeout, non-2xx, undecodable body) is raised
as :class:`BackendError`. Callers decide how to degrade; this module never
retries. Failures are tallied per operation in :attr:`BackendClient.failures`
so silent degradation stays visible on the stats endpoint.
"""
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from relay.config import BackendSettings

from .schemas import FriendEntry, ReissuedCredential, StatusUpdate

logger = logging.getLogger(__name__)

SET_ONLINE_STATUS = "set_online_status"
GET_ONLINE_FRIENDS = "get_online_friends"
REFRESH_CREDENTIAL = "refresh_credential"


class BackendError(Exception):
    """A backend call did not produce a usable result."""

    def __init__(
        self, operation: str, message: str, status_code: Optional[int] = None
    ) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message
        self.status_code = status_code


class BackendClient:
    """Async client for the system-of-record HTTP API.

    Args:
        settings: Base URL, paths and timeout.
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
            backed by ``httpx.MockTransport``). When omitted a client is
            created with the configured timeout and owned by this instance.
    """

    def __init__(
        self,
        settings: BackendSettings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
        )
        self.failures: Counter = Counter()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    async def set_online_status(
        self, identity: str, is_online: bool, credential: Optional[str]
    ) -> None:
        """Persist the identity's online flag."""
        body = StatusUpdate(identity=identity, is_online=is_online)
        await self._request(
            SET_ONLINE_STATUS,
            "PUT",
            self.settings.status_path,
            json=body.model_dump(by_alias=True),
            credential=credential,
        )
        logger.debug("Backend status for %s set to online=%s", identity, is_online)

    async def get_online_friends(
        self, identity: str, credential: Optional[str]
    ) -> List[str]:
        """Return the identities of the friends the backend lists as online."""
        response = await self._request(
            GET_ONLINE_FRIENDS,
            "GET",
            self.settings.online_friends_path,
            params={"identity": identity},
            credential=credential,
        )
        data = self._decode_json(GET_ONLINE_FRIENDS, response)
        if not isinstance(data, list):
            self._fail(GET_ONLINE_FRIENDS, "expected a JSON list")

        friends: List[str] = []
        for item in data:
            if isinstance(item, str):
                friends.append(item)
                continue
            try:
                friends.append(FriendEntry.model_validate(item).identity)
            except ValidationError as e:
                self._fail(GET_ONLINE_FRIENDS, f"malformed friend entry: {e}")
        return friends

    async def refresh_credential(
        self, identity: str, credential: Optional[str] = None
    ) -> str:
        """Ask the backend to reissue a credential for *identity*."""
        response = await self._request(
            REFRESH_CREDENTIAL,
            "POST",
            self.settings.reissue_path,
            params={"identity": identity},
            credential=credential,
        )
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            token = response.text.strip()
            if not token:
                self._fail(REFRESH_CREDENTIAL, "empty response body")
            return token

        data = self._decode_json(REFRESH_CREDENTIAL, response)
        if isinstance(data, str) and data:
            return data
        try:
            return ReissuedCredential.model_validate(data).credential
        except ValidationError as e:
            self._fail(REFRESH_CREDENTIAL, f"no credential in response: {e}")

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        credential: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        headers: Dict[str, str] = {}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            self._fail(operation, f"timed out: {e!r}")
        except httpx.HTTPError as e:
            self._fail(operation, f"transport error: {e!r}")

        if not response.is_success:
            self._fail(
                operation,
                f"HTTP {response.status_code} from {method} {path}",
                status_code=response.status_code,
            )
        return response

    def _decode_json(self, operation: str, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            self._fail(operation, f"invalid JSON body: {e}")

    def _fail(
        self, operation: str, message: str, status_code: Optional[int] = None
    ) -> None:
        self.failures[operation] += 1
        raise BackendError(operation, message, status_code=status_code)
