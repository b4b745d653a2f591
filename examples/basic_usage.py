"""
Basic usage example for shieldpool

Runs a full private payment against the in-memory ledger with the local
development prover.
"""

import asyncio
import os

from solders.keypair import Keypair

from shieldpool import InMemoryLedger, PrivacyClient, Settings, configure_logging, derive_keys


async def main():
    settings = Settings(tree_height=16, log_level="WARNING")
    configure_logging(settings)
    ledger = InMemoryLedger(tree_height=settings.tree_height)

    print("=== shieldpool demo ===\n")

    alice = PrivacyClient(ledger, derive_keys(os.urandom(32)), settings=settings)
    bob = PrivacyClient(ledger, derive_keys(os.urandom(32)), settings=settings)
    print(f"Bob's shielded address: {bob.keys.shielded_address[:24]}...")

    # 1. Shield
    print("\n1. Alice deposits 1 SOL...")
    deposit = await alice.deposit(1_000_000_000, "SOL")
    print(f"   Signature: {deposit.signature[:16]}...")

    # 2. Private transfer
    print("\n2. Alice sends 0.6 SOL to Bob...")
    transfer = await alice.transfer(bob.keys.shielded_address, 600_000_000, "SOL")
    print(f"   Nullifier: {hex(transfer.nullifiers[0])[:18]}...")
    print(f"   Alice's shielded balance: {alice.balance('SOL')}")

    # 3. Discovery
    print("\n3. Bob scans for incoming notes...")
    found = await bob.create_scanner().scan_once()
    print(f"   Found {found} note(s), balance {bob.balance('SOL')}")

    # 4. Unshield
    print("\n4. Bob withdraws to a transparent address...")
    destination = str(Keypair().pubkey())
    await bob.withdraw(destination, 600_000_000, "SOL")
    print(f"   Pool holds {ledger.pool_balances[deposit.new_notes[0].asset]} lamports")

    print("\n=== Demo Complete ===")
    print(f"Nullifiers spent: {ledger.nullifier_count}, commitments: {ledger.commitment_count}")


if __name__ == "__main__":
    asyncio.run(main())
