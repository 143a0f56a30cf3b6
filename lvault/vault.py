"""Vault lifecycle: ACTIVE <-> ARCHIVED, any live status -> DELETED (terminal)."""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple

from .config import merge_options
from .constants import ActionRef, Function, ObjectType, ProtocolTag, Status
from .crypto import gen_vault_key
from .exceptions import BadRequest
from .logging_config import get_logger
from .membership import MembershipService
from .models import ContractInput, ListOptions, TransactionResult, Vault, VaultCreateResult, tag
from .service import Service, VaultContext

logger = get_logger("lvault.vault")

# action -> (function, statuses it may start from)
_TRANSITIONS: Dict[str, Tuple[Function, Tuple[str, ...]]] = {
    "ARCHIVE": (Function.VAULT_ARCHIVE, (Status.ACTIVE.value,)),
    "RESTORE": (Function.VAULT_RESTORE, (Status.ARCHIVED.value,)),
    "DELETE": (Function.VAULT_DELETE, (Status.ACTIVE.value, Status.ARCHIVED.value)),
}


class VaultService(Service):
    object_type = ObjectType.VAULT

    def process_vault(self, obj: Dict[str, Any], should_decrypt: Optional[bool] = None) -> Vault:
        if should_decrypt is None:
            should_decrypt = self.config.service.default_should_decrypt
        vault = Vault.from_dict(obj)
        if should_decrypt and not vault.public:
            vault.decrypt(self.process_read_string)
        return vault

    async def create(self, name: str, is_public: bool = False, terms_of_access: Optional[str] = None) -> VaultCreateResult:
        """Initialise a contract, post its vault state and make the wallet its owner."""
        svc = self._fork()
        svc.is_public = is_public
        svc.keys = [] if is_public else [gen_vault_key(0)]
        svc.vault_id = await svc.ledger.init_contract([
            tag(ProtocolTag.PROTOCOL_NAME, svc.config.service.protocol_name),
            tag(ProtocolTag.PUBLIC, "true" if is_public else "false"),
        ])
        svc.object_id = svc.vault_id
        svc.function = Function.VAULT_INIT
        svc.action_ref = ActionRef.VAULT_CREATE

        state = {"name": svc.process_write_string(name)}
        if terms_of_access is not None:
            state["termsOfAccess"] = svc.process_write_string(terms_of_access)
        data = await svc.upload_state(state)
        tx_id, vault_obj = await svc.post(ContractInput(function=svc.function.value, data=data))

        owner = MembershipService(svc.wallet, svc.ledger, svc.storage, svc.config)
        owner.use_vault_context(VaultContext(
            vault_id=svc.vault_id, is_public=is_public, keys=tuple(svc.keys), vault=vault_obj,
        ))
        membership_id, _ = await owner.add_owner()

        vault_obj = await svc.ledger.get_vault(svc.vault_id)
        logger.info(f"Created {'public' if is_public else 'private'} vault {svc.vault_id}")
        return VaultCreateResult(
            vault_id=svc.vault_id,
            membership_id=membership_id,
            transaction_id=tx_id,
            object=svc.process_vault(vault_obj),
        )

    async def rename(self, vault_id: str, name: str) -> TransactionResult:
        svc = self._fork()
        ctx = await svc.set_vault_context(vault_id)
        if ctx.vault["status"] != Status.ACTIVE.value:
            raise BadRequest(f"vault {vault_id} is {ctx.vault['status']}")
        svc.object_id = vault_id
        svc.function = Function.VAULT_UPDATE
        svc.action_ref = ActionRef.VAULT_RENAME
        state = copy.deepcopy(await svc.storage.get_node_state(ctx.vault["data"][-1]))
        state["name"] = svc.process_write_string(name)
        data = await svc.upload_state(state)
        tx_id, obj = await svc.post(ContractInput(function=svc.function.value, data=data))
        return TransactionResult(transaction_id=tx_id, object=svc.process_vault(obj))

    async def _transition(self, vault_id: str, action: str) -> TransactionResult:
        svc = self._fork()
        ctx = await svc.set_vault_context(vault_id)
        function, allowed = _TRANSITIONS[action]
        if ctx.vault["status"] not in allowed:
            raise BadRequest(f"cannot {action.lower()} a {ctx.vault['status']} vault")
        svc.object_id = vault_id
        svc.function = function
        svc.action_ref = ActionRef[f"VAULT_{action}"]
        tx_id, obj = await svc.post(ContractInput(function=function.value))
        return TransactionResult(transaction_id=tx_id, object=svc.process_vault(obj))

    async def archive(self, vault_id: str) -> TransactionResult:
        return await self._transition(vault_id, "ARCHIVE")

    async def restore(self, vault_id: str) -> TransactionResult:
        return await self._transition(vault_id, "RESTORE")

    async def delete(self, vault_id: str) -> TransactionResult:
        return await self._transition(vault_id, "DELETE")

    async def get(self, vault_id: str, should_decrypt: Optional[bool] = None) -> Vault:
        svc = self._fork()
        ctx = await svc.set_vault_context(vault_id)
        return svc.process_vault(ctx.vault, should_decrypt)

    async def list(self, options: Optional[ListOptions] = None) -> List[Vault]:
        """Vaults the wallet holds an accepted membership in."""
        opts = merge_options(
            ListOptions(should_decrypt=self.config.service.default_should_decrypt),
            ListOptions(statuses=[Status.ACTIVE.value]),
            options,
        )
        vaults = []
        for obj in await self.ledger.get_vaults(self.wallet.address):
            if obj["status"] not in opts.statuses:
                continue
            svc = self._fork()
            await svc.set_vault_context(obj["id"])
            vaults.append(svc.process_vault(obj, opts.should_decrypt))
        return vaults
