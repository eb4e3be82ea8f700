"""
Pytest fixtures for SKR Vault tests.

Each test gets a fresh SQLite database (aiosqlite) and fakes for the chain:
``FakeGateway`` stands in for ChainGateway in service tests, while
``FakeRpcClient`` stands in for the Solana RPC client under a real
ChainGateway.
"""

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature

from skrvault.core import database
from skrvault.core.config import Settings
from skrvault.models.post import Post
from skrvault.repositories import PostRepository
from skrvault.services.account_locks import AccountLocks
from skrvault.services.account_service import AccountService
from skrvault.services.chain_gateway import ChainGateway, SignatureStatus
from skrvault.services.reward_engine import RewardEngine
from skrvault.services.token_service import TokenService
from skrvault.wallet.key_vault import KeyVault, derive_master_key


REWARD_MINT = str(Keypair().pubkey())


@pytest.fixture
def test_settings():
    return Settings(
        environment="test",
        secret_key="test-secret-key-for-session-tokens",
        wallet_encryption_secret="test-wallet-secret",
        wallet_encryption_salt="test-wallet-salt",
        reward_token_mint=REWARD_MINT,
        reward_token_decimals=9,
        reward_per_like=Decimal("0.1"),
        reward_per_comment=Decimal("0.5"),
        reward_period_hours=24,
        bcrypt_rounds=4,
        scheduler_enabled=False,
        scheduler_max_workers=1,
        key_export_max_per_window=3,
        key_export_window_seconds=3600,
    )


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database with all tables."""
    await database.init_database(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await database.DatabaseManager.create_tables()
    yield
    await database.close_database()


class CountingKeyVault(KeyVault):
    """KeyVault that counts key generation."""

    def __init__(self, master_key):
        super().__init__(master_key)
        self.generated = 0

    def generate_key_pair(self):
        self.generated += 1
        return super().generate_key_pair()


@pytest.fixture(scope="session")
def master_key():
    # Low scrypt cost keeps the suite fast
    return derive_master_key("test-wallet-secret", "test-wallet-salt", n=2 ** 10)


@pytest.fixture
def key_vault(master_key):
    return CountingKeyVault(master_key)


class FakeGateway:
    """In-memory ChainGateway double recording every chain call."""

    def __init__(self, reward_mint: Optional[str] = REWARD_MINT):
        self.reward_mint_address = reward_mint
        self.reward_configured = reward_mint is not None
        self.mints: List[tuple] = []
        self.transfers: List[dict] = []
        self.created_tokens: List[str] = []
        self.statuses: Dict[str, SignatureStatus] = {}
        self.fail_with: Optional[Exception] = None
        self.fail_for: Dict[str, Exception] = {}

    async def reward_mint(self, destination_address: str, amount_skr: Decimal, on_signed=None) -> str:
        if destination_address in self.fail_for:
            raise self.fail_for[destination_address]
        if self.fail_with is not None:
            raise self.fail_with
        signature = str(Signature.new_unique())
        if on_signed is not None:
            await on_signed(signature)
        self.mints.append((destination_address, Decimal(amount_skr)))
        return signature

    async def get_signature_status(self, signature: str) -> SignatureStatus:
        return self.statuses.get(signature, SignatureStatus(signature=signature, found=False))

    async def create_fungible_token(self, decimals: int) -> str:
        mint = str(Keypair().pubkey())
        self.created_tokens.append(mint)
        return mint

    async def mint_to(self, mint_address, destination_address, amount, decimals=None) -> str:
        self.mints.append((destination_address, Decimal(amount)))
        return str(Signature.new_unique())

    async def transfer(self, mint_address, from_address, to_address, amount, owner, decimals=None) -> str:
        assert str(owner.pubkey()) == from_address
        if self.fail_with is not None:
            raise self.fail_with
        self.transfers.append({
            "mint": mint_address,
            "from": from_address,
            "to": to_address,
            "amount": amount,
        })
        return str(Signature.new_unique())


@pytest.fixture
def gateway():
    return FakeGateway()


class Clock:
    """Settable UTC clock for period boundaries."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def locks():
    return AccountLocks()


@pytest.fixture
def account_service(db, key_vault, locks, test_settings):
    return AccountService(key_vault, locks=locks, settings=test_settings)


@pytest.fixture
def reward_engine(db, gateway, locks, test_settings, clock):
    return RewardEngine(gateway, locks=locks, settings=test_settings, clock=clock)


@pytest.fixture
def token_service(db, gateway, key_vault, locks, test_settings):
    return TokenService(gateway, key_vault, locks=locks, settings=test_settings)


async def add_post(author_id: str, likes: int = 0, comments: int = 0) -> Post:
    async with database.get_async_session() as session:
        return await PostRepository(session).create(Post(
            author_id=author_id,
            content="hello",
            like_count=likes,
            comment_count=comments
        ))


async def set_engagement(post_id: str, likes: int, comments: int) -> None:
    async with database.get_async_session() as session:
        post = await PostRepository(session).get(post_id)
        post.like_count = likes
        post.comment_count = comments


@pytest_asyncio.fixture
async def creator(account_service):
    return await account_service.signup("creator_one", "creator@example.com", "password123", role="creator")


@pytest_asyncio.fixture
async def fan(account_service):
    return await account_service.signup("fan_one", "fan@example.com", "password123")


class FakeRpcClient:
    """Solana AsyncClient double returning solana-py shaped responses."""

    def __init__(self):
        self.sent = []
        self.existing_accounts = set()
        self.balance = 0
        self.read_failures: List[Exception] = []
        self.send_error: Optional[Exception] = None
        self.confirm_error: Optional[Exception] = None
        self.confirm_err = None
        self.confirm_status = "confirmed"
        self.signature_statuses = {}
        self.calls: List[str] = []
        self.closed = False

    def _maybe_fail(self):
        if self.read_failures:
            raise self.read_failures.pop(0)

    async def get_latest_blockhash(self, *args, **kwargs):
        self.calls.append("get_latest_blockhash")
        self._maybe_fail()
        return SimpleNamespace(value=SimpleNamespace(
            blockhash=Hash.new_unique(),
            last_valid_block_height=1000
        ))

    async def get_account_info(self, pubkey, *args, **kwargs):
        self.calls.append("get_account_info")
        self._maybe_fail()
        exists = str(pubkey) in self.existing_accounts
        return SimpleNamespace(value=SimpleNamespace(lamports=1) if exists else None)

    async def get_balance(self, pubkey, *args, **kwargs):
        self.calls.append("get_balance")
        self._maybe_fail()
        return SimpleNamespace(value=self.balance)

    async def get_token_supply(self, pubkey, *args, **kwargs):
        self.calls.append("get_token_supply")
        self._maybe_fail()
        return SimpleNamespace(value=SimpleNamespace(decimals=9, amount="0"))

    async def get_minimum_balance_for_rent_exemption(self, size, *args, **kwargs):
        self.calls.append("get_minimum_balance_for_rent_exemption")
        return SimpleNamespace(value=1_461_600)

    async def get_signature_statuses(self, signatures, search_transaction_history=False):
        self.calls.append("get_signature_statuses")
        self._maybe_fail()
        return SimpleNamespace(value=[self.signature_statuses.get(str(signatures[0]))])

    async def send_transaction(self, transaction, opts=None):
        self.calls.append("send_transaction")
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(transaction)
        return SimpleNamespace(value=transaction.signatures[0])

    async def confirm_transaction(self, signature, commitment=None, last_valid_block_height=None):
        self.calls.append("confirm_transaction")
        if self.confirm_error is not None:
            raise self.confirm_error
        return SimpleNamespace(value=[
            SimpleNamespace(err=self.confirm_err, confirmation_status=self.confirm_status)
        ])

    async def close(self):
        self.closed = True


@pytest.fixture
def rpc_client():
    return FakeRpcClient()


@pytest.fixture
def chain_gateway(rpc_client):
    """Real ChainGateway over the fake RPC client."""
    return ChainGateway(
        rpc_client,
        fee_payer=Keypair(),
        reward_authority=Keypair(),
        reward_mint=REWARD_MINT,
        reward_decimals=9,
        timeout=5.0,
        max_retries=1,
        retry_base_delay=0,
    )
