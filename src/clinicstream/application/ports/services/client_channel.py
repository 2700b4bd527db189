"""
Bidirectional client connection used by the audio ingest gateway.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union


class ClientDisconnected(Exception):
    """The client went away; nothing more can be sent."""


class ClientChannel(ABC):
    """Binary audio in, JSON events out."""

    @abstractmethod
    async def accept(self) -> None:
        """Complete the connection handshake."""

    @abstractmethod
    async def receive(self) -> Optional[Union[bytes, str]]:
        """Next client message: bytes for audio, str for control. None once disconnected."""

    @abstractmethod
    async def send_json(self, data: Dict[str, Any]) -> None:
        """
        Send one event.

        Raises:
            ClientDisconnected: If the client is gone
        """

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection. Safe to call on a closed channel."""
