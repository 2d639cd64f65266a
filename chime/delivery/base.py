"""
Delivery transport: how outbound messages and media reach a chat.

Used by the job scheduler (job execution) and by the reply loop
(generated images are pushed straight to the agent's linked chat).
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class DeliveryTransport(ABC):
    """
    Abstract delivery target.

    A media reference is either an http(s) URL, which the platform fetches
    itself, or a local file path, which the transport uploads.

    Every send raises DeliveryError when the message does not go out.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. 'telegram'."""
        ...

    @abstractmethod
    async def send_text(self, target: str, text: str, parse_mode: str | None = None) -> None:
        ...

    @abstractmethod
    async def send_photo(self, target: str, ref: str) -> None:
        ...

    @abstractmethod
    async def send_video(self, target: str, ref: str) -> None:
        ...

    async def file_url(self, file_id: str) -> str | None:
        """
        Download URL for an inbound file, or None when the transport
        does not receive media.
        """
        return None

    async def close(self) -> None:
        """Release the transport handle."""
        pass


def is_remote_ref(ref: str) -> bool:
    return ref.startswith(("http://", "https://"))
