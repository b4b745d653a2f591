"""
Token account utilities for SPL token support

Associated Token Account (ATA) lookup and creation, used when depositing
from or withdrawing to SPL token accounts.
"""

import logging

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID
import spl.token.instructions as spl_token

logger = logging.getLogger(__name__)


def get_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """
    Derive the associated token account address for an owner and mint.

    Args:
        owner: The owner's public key
        mint: The token mint public key

    Returns:
        The derived ATA public key
    """
    # PDA over [owner, token_program, mint]
    ata, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return ata


async def get_or_create_ata(
    client: AsyncClient,
    owner: Pubkey,
    mint: Pubkey,
    payer: Keypair,
) -> Pubkey:
    """
    Get or create an associated token account for the owner.

    Args:
        client: Solana RPC client
        owner: The owner of the token account
        mint: The token mint
        payer: Keypair that pays for account creation

    Returns:
        The ATA public key
    """
    ata = get_associated_token_address(owner, mint)

    account_info = await client.get_account_info(ata, commitment=Confirmed)
    if account_info.value is not None:
        return ata

    create_ata_ix = spl_token.create_associated_token_account(
        payer=payer.pubkey(),
        owner=owner,
        mint=mint,
    )
    recent_blockhash = await client.get_latest_blockhash()
    transaction = Transaction.new_signed_with_payer(
        [create_ata_ix],
        payer.pubkey(),
        [payer],
        recent_blockhash.value.blockhash,
    )
    result = await client.send_transaction(transaction)
    await client.confirm_transaction(result.value, commitment=Confirmed)
    logger.info("Created token account %s for %s", ata, owner)
    return ata
