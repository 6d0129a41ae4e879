"""SQLAlchemy ORM models: the single ``items`` table and the vault's secrets."""
from dashvault.models.base import Base
from dashvault.models.item import Item
from dashvault.models.vault_secret import VaultSecret

__all__ = [
    "Base",
    "Item",
    "VaultSecret",
]
