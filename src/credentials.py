"""Bearer credential handling for Microsoft Graph calls.

The token is acquired once when the pass starts and refreshed from the
underlying azure-identity credential whenever it gets close to expiry.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Callable

from azure.core.exceptions import AzureError
from azure.identity import ClientSecretCredential

from config import GRAPH_SCOPE, get_logger
from errors import CredentialError

if TYPE_CHECKING:
    from azure.core.credentials import AccessToken, TokenCredential

    from config import Config

logger = get_logger(service="credentials")

_REFRESH_MARGIN_SECONDS = 300


class GraphCredential:
    """Holds the current Graph access token and hands out authorization headers."""

    def __init__(
        self,
        token_credential: TokenCredential,
        scope: str = GRAPH_SCOPE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._token_credential = token_credential
        self._scope = scope
        self._clock = clock
        self._token: AccessToken | None = None

    @property
    def expires_on(self) -> int | None:
        return self._token.expires_on if self._token else None

    def acquire(self) -> None:
        """Fetch a fresh token from the credential provider.

        Raises:
            CredentialError: If the provider cannot issue a token.
        """
        try:
            self._token = self._token_credential.get_token(self._scope)
        except AzureError as e:
            logger.exception(f"Failed to acquire Graph token: {e}")
            raise CredentialError(f"Failed to acquire Graph token: {e}") from e
        logger.info("Acquired Graph access token", extra={"expires_on": self._token.expires_on})

    def authorization_header(self) -> dict[str, str]:
        if self._token is None or self._token.expires_on - _REFRESH_MARGIN_SECONDS <= self._clock():
            logger.debug("Graph access token missing or about to expire, refreshing")
            self.acquire()
        assert self._token is not None  # noqa: S101
        return {"Authorization": f"Bearer {self._token.token}"}


def credential_from_config(cfg: Config) -> GraphCredential:
    token_credential = ClientSecretCredential(
        tenant_id=cfg.graph_tenant_id,
        client_id=cfg.graph_client_id,
        client_secret=cfg.graph_client_secret,
    )
    return GraphCredential(token_credential)
