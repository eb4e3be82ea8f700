"""API routes package."""

from . import auth, wallet, rewards, tokens

__all__ = ["auth", "wallet", "rewards", "tokens"]
