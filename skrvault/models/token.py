"""
Token model - records of NFT and fungible mints created through the platform.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, BigInteger, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class TokenType(str, Enum):
    TOKEN = "token"
    NFT = "nft"


class Token(BaseModel, TimestampMixin):
    """Mint record; ownership follows confirmed transfers."""

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    mint_address: Mapped[str] = mapped_column(
        String(44),
        unique=True,
        index=True
    )

    owner_id: Mapped[Optional[str]] = mapped_column(
        String(32),
        ForeignKey("accounts.id", ondelete="SET NULL"),
        comment="Current owning account, null once sent outside the platform"
    )

    owner_address: Mapped[str] = mapped_column(String(44))

    token_type: Mapped[str] = mapped_column(String(10), default=TokenType.NFT.value)

    name: Mapped[str] = mapped_column(String(100))
    symbol: Mapped[Optional[str]] = mapped_column(String(20))
    uri: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    image: Mapped[Optional[str]] = mapped_column(Text)

    supply: Mapped[int] = mapped_column(BigInteger, default=1)
    decimals: Mapped[int] = mapped_column(Integer, default=0)

    mint_signature: Mapped[Optional[str]] = mapped_column(String(88))
    last_transfer_signature: Mapped[Optional[str]] = mapped_column(String(88))

    __table_args__ = (
        Index("idx_tokens_owner", "owner_id"),
    )

    def __repr__(self) -> str:
        return f"<Token(mint={self.mint_address}, owner={self.owner_id}, type={self.token_type})>"
