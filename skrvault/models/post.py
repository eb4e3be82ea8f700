"""
Post model - content items carrying the engagement counters rewards are paid on.
"""

import uuid
from typing import Optional

from sqlalchemy import String, Integer, Boolean, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class Post(BaseModel, TimestampMixin):
    """Social post with like/comment counters."""

    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        default=lambda: uuid.uuid4().hex
    )

    author_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        comment="Owning account"
    )

    content: Mapped[str] = mapped_column(Text, default="")

    like_count: Mapped[int] = mapped_column(Integer, default=0)

    comment_count: Mapped[int] = mapped_column(Integer, default=0)

    tokenized: Mapped[bool] = mapped_column(Boolean, default=False)

    token_mint_address: Mapped[Optional[str]] = mapped_column(
        String(44),
        comment="Mint created when the post was tokenized"
    )

    __table_args__ = (
        Index("idx_posts_author", "author_id"),
    )

    def __repr__(self) -> str:
        return f"<Post(id={self.id}, author={self.author_id}, likes={self.like_count})>"
