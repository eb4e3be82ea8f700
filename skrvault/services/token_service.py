"""
Token service - NFT minting and transfer, post tokenization and reward token
sends from custodial wallets.

All chain work goes through the ChainGateway. A custodial key is opened only
for the duration of one transfer and handed straight to the gateway.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

import structlog
from solders.keypair import Keypair

from skrvault.core.config import settings as default_settings
from skrvault.core.database import SessionFactory, get_async_session
from skrvault.core.exceptions import (
    ChainError,
    ConflictError,
    ForbiddenError,
    IntegrityError,
    InsufficientFundsError,
    NotConfiguredError,
    NoWalletError,
    PostNotFoundError,
    TokenNotFoundError,
    ValidationError,
)
from skrvault.core.logging import get_audit_logger
from skrvault.models.account import Account
from skrvault.models.post import Post
from skrvault.models.token import Token, TokenType
from skrvault.repositories import AccountRepository, PostRepository, TokenRepository
from skrvault.services.account_locks import AccountLocks
from skrvault.utils.validation import (
    from_base_units,
    validate_positive_amount,
    validate_wallet_address,
)
from skrvault.wallet.key_vault import KeyVault


logger = structlog.get_logger(__name__)
audit_logger = get_audit_logger()

NFT_DECIMALS = 0


@dataclass
class SendResult:
    tx_signature: str
    amount: Decimal
    to_address: str
    new_balance: Decimal


class TokenService:
    """NFT and token operations on behalf of accounts."""

    def __init__(
        self,
        gateway,
        key_vault: KeyVault,
        locks: Optional[AccountLocks] = None,
        session_factory: SessionFactory = get_async_session,
        settings=None
    ):
        self.gateway = gateway
        self.key_vault = key_vault
        self.locks = locks or AccountLocks()
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.logger = logger.bind(service="token_service")

    async def _load_account(self, account_id: str) -> Account:
        async with self.session_factory() as session:
            account = await AccountRepository(session).get_or_raise(account_id)
        if not account.wallet_address:
            raise NoWalletError(account_id)
        return account

    def _signer_for(self, account: Account) -> Keypair:
        """Open the custodial key and check it belongs to the stored wallet."""
        try:
            keypair = self.key_vault.open_keypair(account.encrypted_private_key or "")
        except IntegrityError:
            audit_logger.error("Stored key failed decryption", account_id=account.id)
            raise
        if str(keypair.pubkey()) != account.wallet_address:
            audit_logger.error("Decrypted key does not match wallet", account_id=account.id)
            raise IntegrityError("Decrypted key does not match the wallet address")
        return keypair

    async def mint_nft(
        self,
        account_id: str,
        name: str,
        symbol: Optional[str] = None,
        uri: Optional[str] = None,
        description: Optional[str] = None,
        image: Optional[str] = None
    ) -> Token:
        """Create a zero-decimal mint and mint one unit to the account's wallet."""
        name = (name or "").strip()
        if not name or len(name) > 100:
            raise ValidationError("NFT name must be 1-100 characters", {"field": "name"})

        async with self.locks.for_account(account_id):
            account = await self._load_account(account_id)

            mint_address = await self.gateway.create_fungible_token(NFT_DECIMALS)
            try:
                signature = await self.gateway.mint_to(
                    mint_address, account.wallet_address, 1, decimals=NFT_DECIMALS
                )
            except ChainError as e:
                self.logger.error(
                    "NFT mint failed after mint account creation",
                    account_id=account_id,
                    mint=mint_address,
                    broadcast_uncertain=e.broadcast_uncertain,
                    error=e.message
                )
                raise

            async with self.session_factory() as session:
                token = await TokenRepository(session).create(Token(
                    mint_address=mint_address,
                    owner_id=account_id,
                    owner_address=account.wallet_address,
                    token_type=TokenType.NFT.value,
                    name=name,
                    symbol=symbol,
                    uri=uri,
                    description=description,
                    image=image,
                    supply=1,
                    decimals=NFT_DECIMALS,
                    mint_signature=signature
                ))

        self.logger.info("NFT minted", account_id=account_id, mint=mint_address, signature=signature)
        return token

    async def transfer_nft(self, account_id: str, mint_address: str, to_address: str) -> Token:
        """Send an owned NFT; ownership follows to the recipient if they have an account."""
        validate_wallet_address(to_address, "to_address")

        async with self.locks.for_account(account_id):
            account = await self._load_account(account_id)

            async with self.session_factory() as session:
                token = await TokenRepository(session).get_by_mint(mint_address)
            if token is None:
                raise TokenNotFoundError(mint_address)
            if token.owner_id != account_id:
                raise ForbiddenError("Token is not owned by this account", {"mint": mint_address})
            if to_address == account.wallet_address:
                raise ValidationError("Cannot transfer to the same wallet")

            signature = await self.gateway.transfer(
                mint_address,
                account.wallet_address,
                to_address,
                1,
                owner=self._signer_for(account),
                decimals=token.decimals
            )

            async with self.session_factory() as session:
                recipient = await AccountRepository(session).get_by_wallet(to_address)
                tokens = TokenRepository(session)
                await tokens.reassign(
                    mint_address,
                    recipient.id if recipient else None,
                    to_address,
                    signature
                )
                token = await tokens.get_by_mint(mint_address)

        self.logger.info(
            "NFT transferred",
            account_id=account_id,
            mint=mint_address,
            to_address=to_address,
            signature=signature
        )
        return token

    async def tokenize_post(self, account_id: str, post_id: str) -> Post:
        """Create a dedicated zero-decimal mint for a post owned by the account."""
        async with self.locks.for_account(account_id):
            async with self.session_factory() as session:
                post = await PostRepository(session).get(post_id)
            if post is None:
                raise PostNotFoundError(post_id)
            if post.author_id != account_id:
                raise ForbiddenError("Unauthorized to tokenize this post", {"post_id": post_id})
            if post.tokenized:
                raise ConflictError("Post already tokenized", {"post_id": post_id}, code="ALREADY_TOKENIZED")

            mint_address = await self.gateway.create_fungible_token(NFT_DECIMALS)

            async with self.session_factory() as session:
                posts = PostRepository(session)
                if not await posts.mark_tokenized(post_id, mint_address):
                    raise ConflictError(
                        "Post already tokenized", {"post_id": post_id}, code="ALREADY_TOKENIZED"
                    )
                post = await posts.get(post_id)

        self.logger.info("Post tokenized", post_id=post_id, mint=mint_address)
        return post

    async def send_reward_tokens(
        self,
        account_id: str,
        to_address: str,
        amount: Union[Decimal, str, int]
    ) -> SendResult:
        """
        Transfer reward tokens out of the account's custodial wallet.

        The stored balance is debited only after the transfer confirms and is
        credited to the recipient when the address belongs to a known account.
        """
        mint_address = self.gateway.reward_mint_address
        if not mint_address:
            raise NotConfiguredError("Reward token not configured")

        validate_wallet_address(to_address, "to_address")
        decimals = self.settings.reward_token_decimals
        units = validate_positive_amount(amount, decimals)

        async with self.locks.for_account(account_id):
            account = await self._load_account(account_id)
            if to_address == account.wallet_address:
                raise ValidationError("Cannot send to the same wallet")
            if account.skr_balance_units < units:
                raise InsufficientFundsError(units, account.skr_balance_units)

            try:
                signature = await self.gateway.transfer(
                    mint_address,
                    account.wallet_address,
                    to_address,
                    units,
                    owner=self._signer_for(account),
                    decimals=decimals
                )
            except ChainError as e:
                if e.broadcast_uncertain:
                    self.logger.error(
                        "Reward token send outcome unknown, balance left unchanged",
                        account_id=account_id,
                        to_address=to_address,
                        units=units,
                        signature=e.signature
                    )
                raise

            async with self.session_factory() as session:
                accounts = AccountRepository(session)
                new_units = await accounts.increment_balance(
                    account_id, "skr_balance_units", -units
                )
                recipient = await accounts.get_by_wallet(to_address)
                if recipient is not None:
                    await accounts.increment_balance(recipient.id, "skr_balance_units", units)

        self.logger.info(
            "Reward tokens sent",
            account_id=account_id,
            to_address=to_address,
            units=units,
            signature=signature
        )
        return SendResult(
            tx_signature=signature,
            amount=from_base_units(units, decimals),
            to_address=to_address,
            new_balance=from_base_units(new_units, decimals)
        )
