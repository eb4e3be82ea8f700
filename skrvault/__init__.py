"""
SKR Vault Backend

Custodial wallet and creator reward service for a Solana social app:
- Encrypted custodial key storage and audited key export
- Creator reward accrual, claim and scheduled distribution
- SPL token and NFT operations through a single chain gateway
- REST API for the mobile client
"""

__version__ = "0.1.0"
__author__ = "SKR Vault Team"
