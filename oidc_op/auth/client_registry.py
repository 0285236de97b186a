"""
Static Client Registry

Clients are registered once during startup and the registry is then
frozen; definitions are immutable for the life of the process.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

from ..models import AuthMethod, Client, ClientType

logger = logging.getLogger(__name__)


class ClientRegistryError(Exception):
    """Client registration errors"""
    pass


class ClientRegistry:
    """Read-only lookup of pre-registered clients"""

    def __init__(self, clients: Iterable[Client] = ()):
        self._clients: Dict[str, Client] = {}
        self._frozen = False
        for client in clients:
            self.register(client)

    def register(self, client: Client) -> Client:
        """
        Register a client definition

        Raises:
            ClientRegistryError: If the registry is frozen or the id is taken
        """
        if self._frozen:
            raise ClientRegistryError("Client registry is frozen")
        if client.id in self._clients:
            raise ClientRegistryError(f"Client already registered: {client.id}")

        self._clients[client.id] = client
        logger.info(f"Client registered: {client.id} ({client.type.value})")
        return client

    def freeze(self) -> "ClientRegistry":
        self._frozen = True
        return self

    def get(self, client_id: Optional[str]) -> Optional[Client]:
        if not client_id:
            return None
        return self._clients.get(client_id)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._clients

    def __iter__(self) -> Iterator[Client]:
        return iter(self._clients.values())

    def __len__(self) -> int:
        return len(self._clients)

    @classmethod
    def from_dicts(cls, definitions: Iterable[Dict[str, Any]]) -> "ClientRegistry":
        return cls(Client.model_validate(definition) for definition in definitions).freeze()

    @classmethod
    def from_json_file(cls, path: str) -> "ClientRegistry":
        """Load a JSON list of client definitions"""
        definitions = json.loads(Path(path).read_text())
        if not isinstance(definitions, list):
            raise ClientRegistryError("Client file must contain a JSON list")
        return cls.from_dicts(definitions)


def web_client(client_id: str, secret: str, redirect_uris: Iterable[str] = (),
               auth_methods: Iterable[AuthMethod] = (AuthMethod.BASIC, AuthMethod.POST),
               **kwargs) -> Client:
    """Confidential server-side client authenticating with a shared secret"""
    return Client(
        id=client_id,
        type=ClientType.CONFIDENTIAL,
        secret=secret,
        redirect_uris=frozenset(redirect_uris),
        auth_methods=frozenset(auth_methods),
        **kwargs,
    )


def native_client(client_id: str, redirect_uris: Iterable[str] = (), **kwargs) -> Client:
    """Public client (native or SPA) relying on PKCE instead of a secret"""
    return Client(
        id=client_id,
        type=ClientType.PUBLIC,
        redirect_uris=frozenset(redirect_uris),
        auth_methods=frozenset({AuthMethod.NONE}),
        **kwargs,
    )
