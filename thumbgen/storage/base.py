from abc import ABC, abstractmethod


class StorageError(Exception):
    """Durable storage could not complete the operation."""


class Storage(ABC):
    @abstractmethod
    def put(self, path: str, content: bytes, content_type: str) -> str:
        """Store bytes at a user-scoped path; returns the stored path."""
        raise NotImplementedError

    @abstractmethod
    def get_signed_url(self, path: str, ttl_seconds: int) -> str:
        raise NotImplementedError

    @abstractmethod
    def read(self, path: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove an object; missing objects are not an error."""
        raise NotImplementedError
