from __future__ import annotations

from typing import Optional

from .batch import BatchService
from .config import Config, get_config
from .folder import FolderService
from .gateway import LedgerGateway, StorageGateway
from .keys import Wallet
from .membership import MembershipService
from .memo import MemoService
from .note import NoteService
from .stack import StackService
from .vault import VaultService


class VaultClient:
    """Entry point wiring every service to one wallet and one pair of gateways.

    Usage:
        storage = LocalStorage()
        client = VaultClient(gen_wallet(), LocalLedger(storage), storage)
        vault = await client.vault.create("Research")
        await client.note.create(vault.vault_id, "hello", "readme.md")
    """

    def __init__(
        self,
        wallet: Wallet,
        ledger: LedgerGateway,
        storage: StorageGateway,
        config: Optional[Config] = None,
    ):
        self.wallet = wallet
        self.ledger = ledger
        self.storage = storage
        self.config = config or get_config()

        self.vault = VaultService(wallet, ledger, storage, self.config)
        self.membership = MembershipService(wallet, ledger, storage, self.config)
        self.folder = FolderService(wallet, ledger, storage, self.config)
        self.stack = StackService(wallet, ledger, storage, self.config)
        self.note = NoteService(wallet, ledger, storage, self.config)
        self.memo = MemoService(wallet, ledger, storage, self.config)
        self.batch = BatchService(wallet, ledger, storage, self.config)

    @property
    def address(self) -> str:
        return self.wallet.address
