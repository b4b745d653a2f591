"""
Encrypted note discovery

`NoteScanner` is an explicit polling task owned by the caller. Each cycle
fetches new encrypted payloads from the ledger, tries to decrypt every one
of them, and only then commits the notes that opened to the store in a
single batch. Notes of SPL mints the registry does not know are held in
`unresolved` until `register_asset` names their mint.
"""

import asyncio
import logging
from contextlib import suppress
from typing import Optional, Union

from .assets import AssetId, AssetRegistry
from .encryption import NotePayload, decrypt_with
from .keys import ShieldedKeys, ViewingKeys
from .ledger import Ledger
from .note import Note
from .store import NoteStore
from .types import EncryptedNoteRecord

logger = logging.getLogger(__name__)


class NoteScanner:
    """
    Polls the ledger for notes addressed to one wallet

    Example:
        ```python
        scanner = NoteScanner(ledger, keys, store, interval=10)
        scanner.start()
        ...
        await scanner.stop()
        ```
    """

    def __init__(
        self,
        ledger: Ledger,
        keys: Union[ShieldedKeys, ViewingKeys],
        store: NoteStore,
        registry: Optional[AssetRegistry] = None,
        interval: float = 30.0,
    ):
        self.ledger = ledger
        self.store = store
        self.registry = registry or AssetRegistry.with_common_tokens()
        self.interval = interval
        self.cursor = 0
        # commitment -> (payload, leaf index) awaiting a registered mint
        self.unresolved: dict[int, tuple[NotePayload, int]] = {}
        self._private_key = keys.ecdh_private
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _decrypt_batch(
        self, records: list[EncryptedNoteRecord]
    ) -> tuple[list[tuple[Note, int]], list[tuple[NotePayload, int]]]:
        found = []
        held = []
        for record in records:
            payload = decrypt_with(self._private_key, record.payload, self.registry)
            if payload is None:
                continue
            if payload.commitment != record.commitment:
                logger.debug("Payload commitment differs from its leaf, skipping")
                continue
            if payload.resolved:
                found.append((payload.to_note(), record.leaf_index))
            else:
                held.append((payload, record.leaf_index))
        return found, held

    async def scan_once(self) -> int:
        """
        Run one discovery cycle

        Returns:
            Number of notes newly added to the store
        """
        records = await self.ledger.get_encrypted_notes(self.cursor)
        if not records:
            return 0
        found, held = await asyncio.to_thread(self._decrypt_batch, records)
        added = self.store.add_notes(found)
        for payload, leaf_index in held:
            self.unresolved[payload.commitment] = (payload, leaf_index)
        self.cursor = records[-1].sequence + 1
        logger.info(
            "Scanned %d payloads, %d for us, %d new", len(records), len(found), added
        )
        if held:
            logger.warning(
                "%d notes of unregistered SPL mints held, %d pending in total",
                len(held),
                len(self.unresolved),
            )
        return added

    def register_asset(self, asset: AssetId) -> int:
        """
        Register a mint and claim the held notes that carry it

        Args:
            asset: Asset to add to the registry

        Returns:
            Number of notes newly added to the store
        """
        self.registry.register(asset)
        claimed = []
        for commitment, (payload, leaf_index) in list(self.unresolved.items()):
            payload = payload.resolve(self.registry)
            if payload.resolved:
                claimed.append((payload.to_note(), leaf_index))
                del self.unresolved[commitment]
        added = self.store.add_notes(claimed)
        if claimed:
            logger.info("Claimed %d held notes of %s", len(claimed), asset)
        return added

    async def _run(self) -> None:
        while True:
            try:
                await self.scan_once()
            except Exception:
                logger.exception("Scan cycle failed, retrying in %.1fs", self.interval)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            raise RuntimeError("Scanner already running")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
