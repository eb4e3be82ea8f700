"""
Chain gateway - the only component that signs and submits Solana transactions.

Holds the fee-payer and reward-mint-authority keypairs, loaded once at
startup. Reads are retried with exponential backoff; writes are submitted
exactly once and every failure is reported as ChainError, flagged
``broadcast_uncertain`` when the transaction may have reached the network.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import base58
import httpx
import structlog
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import Transaction
from spl.token.constants import MINT_LEN, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    InitializeMintParams,
    MintToCheckedParams,
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    initialize_mint,
    mint_to_checked,
    transfer_checked,
)

from skrvault.core.config import SolanaConfig
from skrvault.core.exceptions import ChainError, NotConfiguredError, ValidationError
from skrvault.utils.validation import to_base_units


logger = structlog.get_logger(__name__)

# Transport failures after which we cannot know whether the node received the request
TRANSPORT_ERRORS = (asyncio.TimeoutError, SolanaRpcException, httpx.HTTPError, OSError)

COMMITMENT_RANKS = {"processed": 0, "confirmed": 1, "finalized": 2}

# Receives a transaction signature before the transaction is sent
SignedCallback = Callable[[str], Awaitable[None]]


def _commitment_rank(value) -> int:
    """Rank a commitment or confirmation status, e.g. ``TransactionConfirmationStatus.Confirmed``."""
    name = str(value).rsplit(".", 1)[-1].lower()
    return COMMITMENT_RANKS.get(name, -1)


@dataclass
class SignatureStatus:
    """Typed view of getSignatureStatuses for one signature."""
    signature: str
    found: bool
    confirmed: bool = False
    err: Optional[str] = None
    confirmation_status: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.found and self.err is not None


def load_keypair(secret: Optional[str], name: str) -> Optional[Keypair]:
    """Decode a base58 secret key from configuration."""
    if not secret:
        return None
    try:
        return Keypair.from_bytes(base58.b58decode(secret))
    except ValueError as e:
        logger.error("Invalid signing key in configuration", identity=name, error=str(e))
        return None


def create_rpc_client(settings) -> AsyncClient:
    """Build the process-wide RPC client. The caller owns its lifecycle."""
    rpc_config = SolanaConfig.get_rpc_config()
    return AsyncClient(
        endpoint=settings.solana_rpc_url or rpc_config["endpoint"],
        commitment=Commitment(settings.solana_commitment),
        timeout=settings.solana_rpc_timeout
    )


def _pubkey(address: str, field: str) -> Pubkey:
    try:
        return Pubkey.from_string(address)
    except (ValueError, TypeError) as e:
        raise ValidationError("Invalid Solana address", {"field": field, "value": address}) from e


class ChainGateway:
    """
    Signing boundary around an injected RPC client.

    The client is created and closed by the application lifespan; the gateway
    never constructs its own connection.
    """

    def __init__(
        self,
        client: AsyncClient,
        fee_payer: Optional[Keypair] = None,
        reward_authority: Optional[Keypair] = None,
        reward_mint: Optional[str] = None,
        reward_decimals: int = 9,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 0.5
    ):
        self.client = client
        self._fee_payer = fee_payer
        self._reward_authority = reward_authority
        self._reward_mint_key = (
            _pubkey(reward_mint, "reward_token_mint") if reward_mint else None
        )
        self.reward_decimals = reward_decimals
        self.commitment = Commitment(commitment)
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.logger = logger.bind(service="chain_gateway")

    @classmethod
    def from_settings(cls, client: AsyncClient, settings) -> "ChainGateway":
        gateway = cls(
            client,
            fee_payer=load_keypair(settings.fee_payer_private_key, "fee_payer"),
            reward_authority=load_keypair(
                settings.reward_mint_authority_private_key, "reward_mint_authority"
            ),
            reward_mint=settings.reward_token_mint,
            reward_decimals=settings.reward_token_decimals,
            commitment=settings.solana_commitment,
            timeout=settings.solana_rpc_timeout,
            max_retries=settings.rpc_max_retries,
            retry_base_delay=settings.rpc_retry_base_delay
        )
        gateway.logger.info(
            "Chain gateway initialized",
            fee_payer=str(gateway._fee_payer.pubkey()) if gateway._fee_payer else None,
            reward_authority=(
                str(gateway._reward_authority.pubkey()) if gateway._reward_authority else None
            ),
            reward_mint=gateway.reward_mint_address
        )
        return gateway

    def __repr__(self) -> str:
        return (
            f"ChainGateway(fee_payer={'set' if self._fee_payer else 'unset'}, "
            f"reward_authority={'set' if self._reward_authority else 'unset'})"
        )

    @property
    def fee_payer_configured(self) -> bool:
        return self._fee_payer is not None

    @property
    def reward_mint_address(self) -> Optional[str]:
        return str(self._reward_mint_key) if self._reward_mint_key else None

    @property
    def reward_configured(self) -> bool:
        return (
            self._fee_payer is not None
            and self._reward_authority is not None
            and self._reward_mint_key is not None
        )

    def _require_fee_payer(self) -> Keypair:
        if self._fee_payer is None:
            raise NotConfiguredError("Fee payer not configured")
        return self._fee_payer

    def _require_reward_identity(self) -> Keypair:
        if self._reward_authority is None or self._reward_mint_key is None:
            raise NotConfiguredError("Reward token not configured")
        return self._reward_authority

    # Reads

    async def _read(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run a read-only RPC call with timeout and bounded exponential backoff."""
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(call(), timeout=self.timeout)
            except RPCException as e:
                raise ChainError(f"{operation} rejected by RPC node: {e}") from e
            except TRANSPORT_ERRORS as e:
                attempt += 1
                if attempt > self.max_retries:
                    self.logger.error(
                        "RPC read failed", operation=operation, attempts=attempt, error=str(e)
                    )
                    raise ChainError(f"{operation} failed: {e or type(e).__name__}") from e
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                self.logger.warning(
                    "RPC read failed, retrying",
                    operation=operation,
                    attempt=attempt,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)

    async def get_native_balance(self, address: str) -> Decimal:
        """SOL balance of an address."""
        pubkey = _pubkey(address, "address")
        response = await self._read("get_balance", lambda: self.client.get_balance(pubkey))
        return Decimal(response.value).scaleb(-SolanaConfig.SOL_DECIMALS)

    async def get_token_decimals(self, mint_address: str) -> int:
        mint = _pubkey(mint_address, "mint")
        response = await self._read("get_token_supply", lambda: self.client.get_token_supply(mint))
        return int(response.value.decimals)

    async def get_signature_status(self, signature: str) -> SignatureStatus:
        sig = Signature.from_string(signature)
        response = await self._read(
            "get_signature_statuses",
            lambda: self.client.get_signature_statuses([sig], search_transaction_history=True)
        )
        status = response.value[0] if response.value else None
        if status is None:
            return SignatureStatus(signature=signature, found=False)

        confirmation = str(status.confirmation_status) if status.confirmation_status else None
        err = str(status.err) if status.err is not None else None
        return SignatureStatus(
            signature=signature,
            found=True,
            confirmed=err is None and _commitment_rank(confirmation) >= COMMITMENT_RANKS["confirmed"],
            err=err,
            confirmation_status=confirmation
        )

    async def _account_exists(self, pubkey: Pubkey) -> bool:
        response = await self._read(
            "get_account_info", lambda: self.client.get_account_info(pubkey)
        )
        return response.value is not None

    async def _ata_instructions(
        self,
        payer: Pubkey,
        owner: Pubkey,
        mint: Pubkey
    ) -> tuple:
        """Associated token address plus a create instruction when it does not exist yet."""
        ata = get_associated_token_address(owner, mint)
        if await self._account_exists(ata):
            return ata, []
        return ata, [create_associated_token_account(payer=payer, owner=owner, mint=mint)]

    # Writes

    async def _submit(
        self,
        operation: str,
        instructions: Sequence[Instruction],
        payer: Keypair,
        signers: List[Keypair],
        on_signed: Optional[SignedCallback] = None
    ) -> str:
        """
        Sign, send once and wait for confirmation.

        ``on_signed`` is awaited with the signature after signing and before
        the send; if it raises, nothing is sent.

        Raises:
            ChainError: ``broadcast_uncertain`` set when the outcome is unknown
        """
        blockhash_resp = await self._read(
            "get_latest_blockhash", lambda: self.client.get_latest_blockhash()
        )
        blockhash = blockhash_resp.value.blockhash
        last_valid = blockhash_resp.value.last_valid_block_height

        unique_signers = [payer] + [s for s in signers if s.pubkey() != payer.pubkey()]
        transaction = Transaction.new_signed_with_payer(
            list(instructions), payer.pubkey(), unique_signers, blockhash
        )
        signature = transaction.signatures[0]
        sig_str = str(signature)

        log = self.logger.bind(operation=operation, signature=sig_str)

        if on_signed is not None:
            await on_signed(sig_str)

        try:
            await asyncio.wait_for(
                self.client.send_transaction(
                    transaction,
                    opts=TxOpts(skip_preflight=False, preflight_commitment=self.commitment)
                ),
                timeout=self.timeout
            )
        except RPCException as e:
            log.warning("Transaction rejected in preflight", error=str(e))
            raise ChainError(
                f"{operation} rejected before broadcast: {e}",
                broadcast_uncertain=False
            ) from e
        except TRANSPORT_ERRORS as e:
            log.error("Transaction send outcome unknown", error=str(e) or type(e).__name__)
            raise ChainError(
                f"{operation} send did not complete; transaction may have been broadcast",
                broadcast_uncertain=True,
                signature=sig_str
            ) from e

        try:
            confirmation = await asyncio.wait_for(
                self.client.confirm_transaction(
                    signature,
                    commitment=self.commitment,
                    last_valid_block_height=last_valid
                ),
                timeout=self.timeout
            )
        except TransactionExpiredBlockheightExceededError as e:
            return await self._resolve_expired(operation, sig_str, e)
        except (UnconfirmedTxError, RPCException) + TRANSPORT_ERRORS as e:
            log.error("Transaction confirmation unknown", error=str(e) or type(e).__name__)
            raise ChainError(
                f"{operation} was broadcast but not confirmed",
                broadcast_uncertain=True,
                signature=sig_str
            ) from e

        status = confirmation.value[0] if confirmation.value else None
        if status is None:
            raise ChainError(
                f"{operation} was broadcast but not confirmed",
                broadcast_uncertain=True,
                signature=sig_str
            )
        if status.err is not None:
            log.warning("Transaction failed on chain", error=str(status.err))
            raise ChainError(
                f"{operation} failed on chain: {status.err}",
                broadcast_uncertain=False,
                signature=sig_str
            )
        if not self._meets_commitment(getattr(status, "confirmation_status", None)):
            log.error(
                "Transaction seen below requested commitment",
                confirmation_status=str(status.confirmation_status)
            )
            raise ChainError(
                f"{operation} was broadcast but not confirmed",
                broadcast_uncertain=True,
                signature=sig_str
            )

        log.info("Transaction confirmed")
        return sig_str

    async def _resolve_expired(self, operation: str, sig_str: str, error: Exception) -> str:
        """
        Classify a transaction whose blockhash expired before confirmation.

        An expired transaction can no longer land, so one the node has never
        seen is a definite failure. One it has seen is judged by its status.
        """
        log = self.logger.bind(operation=operation, signature=sig_str)
        try:
            status = await self.get_signature_status(sig_str)
        except ChainError as e:
            log.error("Status lookup after expiry failed", error=e.message)
            raise ChainError(
                f"{operation} was broadcast but not confirmed",
                broadcast_uncertain=True,
                signature=sig_str
            ) from error

        if not status.found:
            log.warning("Transaction expired without landing")
            raise ChainError(
                f"{operation} expired before confirmation",
                broadcast_uncertain=False,
                signature=sig_str
            ) from error
        if status.failed:
            log.warning("Transaction failed on chain", error=status.err)
            raise ChainError(
                f"{operation} failed on chain: {status.err}",
                broadcast_uncertain=False,
                signature=sig_str
            ) from error
        if status.err is None and self._meets_commitment(status.confirmation_status):
            log.info("Transaction confirmed after blockhash expiry")
            return sig_str

        raise ChainError(
            f"{operation} was broadcast but not confirmed",
            broadcast_uncertain=True,
            signature=sig_str
        ) from error

    def _meets_commitment(self, confirmation_status) -> bool:
        if confirmation_status is None:
            return False
        return _commitment_rank(confirmation_status) >= _commitment_rank(self.commitment)

    async def create_fungible_token(self, decimals: int) -> str:
        """Create a new mint with the fee payer as mint authority."""
        payer = self._require_fee_payer()
        if not 0 <= decimals <= 18:
            raise ValidationError("Token decimals must be between 0 and 18")

        mint_keypair = Keypair()
        rent = await self._read(
            "get_minimum_balance_for_rent_exemption",
            lambda: self.client.get_minimum_balance_for_rent_exemption(MINT_LEN)
        )

        instructions = [
            create_account(CreateAccountParams(
                from_pubkey=payer.pubkey(),
                to_pubkey=mint_keypair.pubkey(),
                lamports=rent.value,
                space=MINT_LEN,
                owner=TOKEN_PROGRAM_ID
            )),
            initialize_mint(InitializeMintParams(
                decimals=decimals,
                program_id=TOKEN_PROGRAM_ID,
                mint=mint_keypair.pubkey(),
                mint_authority=payer.pubkey(),
                freeze_authority=None
            )),
        ]

        await self._submit("create_token", instructions, payer, [mint_keypair])
        mint_address = str(mint_keypair.pubkey())
        self.logger.info("Token created", mint=mint_address, decimals=decimals)
        return mint_address

    async def _mint(
        self,
        operation: str,
        payer: Keypair,
        authority: Keypair,
        mint: Pubkey,
        destination: Pubkey,
        amount: int,
        decimals: int,
        on_signed: Optional[SignedCallback] = None
    ) -> str:
        """Mint to the destination's token account; ``payer`` covers fees and rent."""
        if amount <= 0:
            raise ValidationError("Mint amount must be positive", {"amount": amount})

        ata, instructions = await self._ata_instructions(payer.pubkey(), destination, mint)
        instructions.append(mint_to_checked(MintToCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            mint=mint,
            dest=ata,
            mint_authority=authority.pubkey(),
            amount=amount,
            decimals=decimals,
            signers=[]
        )))
        return await self._submit(operation, instructions, payer, [authority], on_signed=on_signed)

    async def mint_to(
        self,
        mint_address: str,
        destination_address: str,
        amount: int,
        decimals: Optional[int] = None
    ) -> str:
        """Mint ``amount`` base units of a fee-payer-controlled mint."""
        payer = self._require_fee_payer()
        mint = _pubkey(mint_address, "mint")
        destination = _pubkey(destination_address, "destination")
        if decimals is None:
            decimals = await self.get_token_decimals(mint_address)
        return await self._mint("mint_to", payer, payer, mint, destination, amount, decimals)

    async def reward_mint(
        self,
        destination_address: str,
        amount_skr: Decimal,
        on_signed: Optional[SignedCallback] = None
    ) -> str:
        """
        Mint reward tokens to a wallet.

        ``amount_skr`` is human-readable and rounded down to token precision.
        The fee payer pays fees and rent; the reward authority signs as mint
        authority. ``on_signed`` receives the signature before broadcast.
        """
        authority = self._require_reward_identity()
        payer = self._require_fee_payer()
        destination = _pubkey(destination_address, "destination")
        units = to_base_units(amount_skr, self.reward_decimals)
        return await self._mint(
            "reward_mint",
            payer,
            authority,
            self._reward_mint_key,
            destination,
            units,
            self.reward_decimals,
            on_signed=on_signed
        )

    async def transfer(
        self,
        mint_address: str,
        from_address: str,
        to_address: str,
        amount: int,
        owner: Keypair,
        decimals: Optional[int] = None
    ) -> str:
        """
        Transfer ``amount`` base units between wallets.

        The fee payer pays fees and account rent; ``owner`` is the custodial
        key of the sending wallet and co-signs as token account authority.
        """
        payer = self._require_fee_payer()
        mint = _pubkey(mint_address, "mint")
        source_owner = _pubkey(from_address, "from_address")
        destination_owner = _pubkey(to_address, "to_address")

        if owner.pubkey() != source_owner:
            raise ValidationError("Signing key does not own the source wallet")
        if amount <= 0:
            raise ValidationError("Transfer amount must be positive", {"amount": amount})

        if decimals is None:
            decimals = await self.get_token_decimals(mint_address)

        source_ata, instructions = await self._ata_instructions(
            payer.pubkey(), source_owner, mint
        )
        dest_ata, dest_instructions = await self._ata_instructions(
            payer.pubkey(), destination_owner, mint
        )
        instructions.extend(dest_instructions)
        instructions.append(transfer_checked(TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=source_ata,
            mint=mint,
            dest=dest_ata,
            owner=source_owner,
            amount=amount,
            decimals=decimals,
            signers=[]
        )))

        return await self._submit("transfer", instructions, payer, [owner])
