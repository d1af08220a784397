"""
Client identity bootstrap.

Before the websocket is opened the server must allocate a client id:
``POST http://<server>/v1/clients`` with an empty JSON object returns the
new client record, whose ``Id`` names the websocket endpoint
``ws://<server>/v1/clients/<Id>/ws``.
"""

from dataclasses import dataclass

import aiohttp
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import BootstrapError
from .type_aliases import ClientId, ServerAddress, UrlString


class ClientIdentity(BaseModel):
    """The client record returned by the server. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    id: ClientId = Field(alias="Id", min_length=1, description="Server assigned id.")


def websocket_url(server: ServerAddress, client_id: ClientId) -> UrlString:
    return f"ws://{server}/v1/clients/{client_id}/ws"


@dataclass(slots=True)
class IdentityBootstrap:
    """Obtains a client id from the server's provisioning endpoint."""

    server: ServerAddress
    timeout: float = 10.0

    def __post_init__(self) -> None:
        if not self.server:
            raise ValueError("Server address cannot be empty")

    @property
    def url(self) -> UrlString:
        return f"http://{self.server}/v1/clients"

    async def fetch(self) -> ClientIdentity:
        """Request a new client identity.

        Raises:
            BootstrapError: the server is unreachable, answers with a non-2xx
                status, or returns something other than a client record.
        """
        logger.debug("Requesting client identity from {}", self.url)
        try:
            async with (
                aiohttp.ClientSession() as session,
                session.post(
                    self.url,
                    json={},
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response,
            ):
                if response.status >= 300:
                    raise BootstrapError(
                        f"Failed connecting to {self.url}: HTTP {response.status}"
                    )
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise BootstrapError(f"Failed connecting to {self.url}: {e}") from e
        except TimeoutError as e:
            raise BootstrapError(f"Timed out connecting to {self.url}") from e
        except ValueError as e:
            raise BootstrapError(
                f"Failed decoding json response from {self.url}: {e}"
            ) from e

        if not data:
            raise BootstrapError("Did not receive a valid client instance")

        try:
            identity = ClientIdentity.model_validate(data)
        except ValidationError as e:
            raise BootstrapError(f"Did not receive a valid client instance: {e}") from e

        logger.info("Obtained client id {}", identity.id)
        return identity
