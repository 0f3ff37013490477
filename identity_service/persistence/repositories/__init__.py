"""Repository implementations."""

from identity_service.persistence.repositories.base import BaseRepository
from identity_service.persistence.repositories.contact_repository import ContactRepository, ContactStats

__all__ = ["BaseRepository", "ContactRepository", "ContactStats"]
