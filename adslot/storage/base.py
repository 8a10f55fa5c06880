from abc import ABC, abstractmethod


class Storage(ABC):
    @abstractmethod
    def save_attachment(self, inquiry_id: str, filename: str, content: bytes, content_type: str) -> dict:
        """Store an inquiry attachment; returns its descriptor (name, path, size, content_type)."""
        raise NotImplementedError

    @abstractmethod
    def open_attachment(self, inquiry_id: str, stored_name: str) -> bytes:
        raise NotImplementedError
