"""Encrypted secret ORM model (credential vault backing table)."""
from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from dashvault.models.base import Base


class VaultSecret(Base):
    __tablename__ = "vault_secrets"

    secret_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    # base64(nonce || AES-GCM ciphertext), bound to secret_id
    ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )
