"""
Repositories for posts (engagement counters) and token records.
"""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skrvault.core.exceptions import ConflictError
from skrvault.models.post import Post
from skrvault.models.token import Token


@dataclass
class EngagementTotals:
    """Summed counters across one author's posts."""
    posts: int = 0
    likes: int = 0
    comments: int = 0


class PostRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, post_id: str) -> Optional[Post]:
        return await self.session.get(Post, post_id, populate_existing=True)

    async def create(self, post: Post) -> Post:
        self.session.add(post)
        await self.session.flush()
        return post

    async def engagement_for_author(self, author_id: str) -> EngagementTotals:
        result = await self.session.execute(
            select(
                func.count(Post.id),
                func.coalesce(func.sum(Post.like_count), 0),
                func.coalesce(func.sum(Post.comment_count), 0),
            ).where(Post.author_id == author_id)
        )
        posts, likes, comments = result.one()
        return EngagementTotals(posts=int(posts), likes=int(likes), comments=int(comments))

    async def mark_tokenized(self, post_id: str, mint_address: str) -> bool:
        """Returns False if the post was tokenized concurrently."""
        result = await self.session.execute(
            update(Post)
            .where(Post.id == post_id, Post.tokenized.is_(False))
            .values(tokenized=True, token_mint_address=mint_address)
        )
        return result.rowcount == 1


class TokenRepository:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_mint(self, mint_address: str) -> Optional[Token]:
        result = await self.session.execute(
            select(Token).where(Token.mint_address == mint_address)
        )
        return result.scalar_one_or_none()

    async def create(self, token: Token) -> Token:
        self.session.add(token)
        try:
            await self.session.flush()
        except SAIntegrityError as e:
            raise ConflictError("Token already recorded", {"mint": token.mint_address}) from e
        return token

    async def list_for_owner(self, owner_id: str) -> List[Token]:
        result = await self.session.execute(
            select(Token).where(Token.owner_id == owner_id).order_by(Token.id)
        )
        return list(result.scalars().all())

    async def reassign(
        self,
        mint_address: str,
        owner_id: Optional[str],
        owner_address: str,
        signature: str
    ) -> None:
        await self.session.execute(
            update(Token)
            .where(Token.mint_address == mint_address)
            .values(
                owner_id=owner_id,
                owner_address=owner_address,
                last_transfer_signature=signature
            )
        )
