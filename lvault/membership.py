"""Membership lifecycle.

Status edges:
    PENDING  -> ACCEPTED (accept) | REJECTED (reject) | REVOKED (revoke)
    INVITED  -> ACCEPTED (confirm, once the invitee has registered)
    ACCEPTED -> REJECTED (leave) | REVOKED (revoke)
    REVOKED  -> ACCEPTED (restore)
Role changes leave status untouched. Revoking does not rotate vault keys.
"""
from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import merge_options
from .constants import ACTIVE_MEMBERSHIP_STATUSES, ActionRef, Function, ObjectType, ProtocolTag, Role, Status
from .crypto import wrap_vault_keys
from .exceptions import BadRequest
from .logging_config import get_logger
from .models import (
    ContractInput,
    ListOptions,
    Membership,
    MembershipCreateResult,
    TransactionResult,
    tag,
)
from .service import Service

logger = get_logger("lvault.membership")

# action -> (function, statuses it may start from)
_TRANSITIONS: Dict[str, Tuple[Function, Tuple[str, ...]]] = {
    "ACCEPT": (Function.MEMBERSHIP_ACCEPT, (Status.PENDING.value,)),
    "CONFIRM": (Function.MEMBERSHIP_CONFIRM, (Status.INVITED.value,)),
    "REJECT": (Function.MEMBERSHIP_REJECT, (Status.PENDING.value,)),
    "LEAVE": (Function.MEMBERSHIP_REJECT, (Status.ACCEPTED.value,)),
    "REVOKE": (Function.MEMBERSHIP_REVOKE, (Status.PENDING.value, Status.ACCEPTED.value)),
    "RESTORE": (Function.MEMBERSHIP_RESTORE, (Status.REVOKED.value,)),
    "CHANGE_ROLE": (Function.MEMBERSHIP_CHANGE_ROLE, (Status.PENDING.value, Status.ACCEPTED.value)),
}


def _role(role: Any) -> str:
    try:
        return Role(getattr(role, "value", role)).value
    except ValueError as e:
        raise BadRequest(f"unknown role {role}") from e


def find_active_member(members: Iterable[Dict[str, Any]], email: Optional[str] = None,
                       address: Optional[str] = None) -> Optional[Dict[str, Any]]:
    for m in members:
        if m.get("status") not in ACTIVE_MEMBERSHIP_STATUSES:
            continue
        if (email is not None and m.get("email") == email) or (address is not None and m.get("address") == address):
            return m
    return None


class MembershipService(Service):
    object_type = ObjectType.MEMBERSHIP

    async def set_vault_context_from_membership_id(self, membership_id: str) -> Dict[str, Any]:
        obj = await self.ledger.get_membership(membership_id)
        self.object = obj
        self.object_id = membership_id
        self.prev_hash = obj.get("hash")
        await self.set_vault_context(obj["vaultId"])
        return obj

    def process_membership(self, obj: Dict[str, Any], should_decrypt: Optional[bool] = None) -> Membership:
        if should_decrypt is None:
            should_decrypt = self.config.service.default_should_decrypt
        membership = Membership.from_dict(obj)
        if should_decrypt and not self.is_public:
            membership.decrypt(self.process_read_string)
        return membership

    async def _transition(
        self,
        membership_id: str,
        action: str,
        state_fn: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
        role: Optional[str] = None,
        address: Optional[str] = None,
    ) -> TransactionResult:
        obj = await self.set_vault_context_from_membership_id(membership_id)
        function, allowed = _TRANSITIONS[action]
        if obj["status"] not in allowed:
            raise BadRequest(f"cannot {action.lower().replace('_', ' ')} a {obj['status']} membership")
        self.function = function
        self.action_ref = ActionRef[f"MEMBERSHIP_{action}"]
        data = await self.upload_state(state_fn(obj)) if state_fn is not None else None
        input = ContractInput(function=function.value, data=data, role=role, address=address, prev_hash=self.prev_hash)
        tx_id, obj = await self.post(input)
        return TransactionResult(transaction_id=tx_id, object=self.process_membership(obj))

    # ---------- owner membership ----------

    async def add_owner(self) -> Tuple[str, str]:
        """Grant the wallet OWNER on a freshly initialised vault; vault context must be set."""
        self.object_id = str(uuid.uuid4())
        self.function = Function.MEMBERSHIP_ADD
        self.action_ref = ActionRef.MEMBERSHIP_OWNER
        state = {
            "keys": wrap_vault_keys(self.keys, self.wallet.public_key()),
            "encPublicSigningKey": self.process_write_string(self.wallet.signing_public_key()),
        }
        data = await self.upload_state(state)
        tx_id, _ = await self.post(ContractInput(
            function=self.function.value, data=data, role=Role.OWNER.value, address=self.wallet.address,
        ))
        return self.object_id, tx_id

    # ---------- invites ----------

    async def invite_member(
        self,
        email: str,
        role: str,
        members: List[Dict[str, Any]],
        message: Optional[str] = None,
    ) -> MembershipCreateResult:
        """Invite within the current vault context.

        Registered users get a key-wrapped PENDING membership on the ledger;
        anyone else goes through the out-of-band invite with no transaction.
        """
        role = _role(role)
        if find_active_member(members, email=email):
            raise BadRequest(f"{email} is already a member of vault {self.vault_id}")
        if not await self.ledger.exists_user(email):
            result = await self.ledger.invite_new_user(self.vault_id, email, role, message, inviter=self.wallet.address)
            logger.info(f"Sent out-of-band invite {result['id']} for vault {self.vault_id}")
            return MembershipCreateResult(membership_id=result["id"], transaction_id=None)

        user = await self.ledger.get_user_public_data(email)
        if find_active_member(members, address=user["address"]):
            raise BadRequest(f"{email} is already a member of vault {self.vault_id}")
        self.object_id = str(uuid.uuid4())
        self.function = Function.MEMBERSHIP_INVITE
        self.action_ref = ActionRef.MEMBERSHIP_INVITE
        data = await self.upload_state({"keys": wrap_vault_keys(self.keys, user["publicKey"])})
        prepared = self.prepare(ContractInput(
            function=self.function.value, data=data, role=role, address=user["address"],
        ))
        prepared.tags.insert(0, tag(ProtocolTag.MEMBER_ADDRESS, user["address"]))
        tx_id, obj = await self.submit(prepared)
        return MembershipCreateResult(
            membership_id=prepared.object_id, transaction_id=tx_id, object=self.process_membership(obj),
        )

    async def invite(self, vault_id: str, email: str, role: str, message: Optional[str] = None) -> MembershipCreateResult:
        svc = self._fork()
        await svc.set_vault_context(vault_id)
        members = await svc.ledger.get_members(vault_id)
        return await svc.invite_member(email, role, members, message)

    async def invite_new_user(self, vault_id: str, email: str, role: str,
                              message: Optional[str] = None) -> MembershipCreateResult:
        svc = self._fork()
        await svc.set_vault_context(vault_id)
        if find_active_member(await svc.ledger.get_members(vault_id), email=email):
            raise BadRequest(f"{email} is already a member of vault {vault_id}")
        result = await svc.ledger.invite_new_user(vault_id, email, _role(role), message, inviter=svc.wallet.address)
        return MembershipCreateResult(membership_id=result["id"], transaction_id=None)

    async def invite_resend(self, membership_id: str) -> Dict[str, Any]:
        svc = self._fork()
        obj = await svc.set_vault_context_from_membership_id(membership_id)
        if obj["status"] not in (Status.PENDING.value, Status.INVITED.value):
            raise BadRequest(f"cannot resend an invite for a {obj['status']} membership")
        return await svc.ledger.invite_resend(svc.vault_id, membership_id, inviter=svc.wallet.address)

    # ---------- transitions ----------

    async def accept(self, membership_id: str) -> TransactionResult:
        svc = self._fork()
        return await svc._transition(
            membership_id, "ACCEPT",
            state_fn=lambda obj: {"encPublicSigningKey": svc.process_write_string(svc.wallet.signing_public_key())},
        )

    async def confirm(self, membership_id: str) -> TransactionResult:
        """Key-wrap an out-of-band invite for an invitee who has since registered."""
        svc = self._fork()
        obj = await svc.ledger.get_membership(membership_id)
        if not await svc.ledger.exists_user(obj.get("email") or ""):
            raise BadRequest(f"invitee of {membership_id} has not registered yet")
        user = await svc.ledger.get_user_public_data(obj["email"])
        return await svc._transition(
            membership_id, "CONFIRM",
            state_fn=lambda _: {"keys": wrap_vault_keys(svc.keys, user["publicKey"])},
            role=obj["role"],
            address=user["address"],
        )

    async def reject(self, membership_id: str) -> TransactionResult:
        return await self._fork()._transition(membership_id, "REJECT")

    async def leave(self, membership_id: str) -> TransactionResult:
        return await self._fork()._transition(membership_id, "LEAVE")

    async def revoke(self, membership_id: str) -> TransactionResult:
        return await self._fork()._transition(membership_id, "REVOKE")

    async def restore(self, membership_id: str) -> TransactionResult:
        return await self._fork()._transition(membership_id, "RESTORE")

    async def change_role(self, membership_id: str, role: str) -> TransactionResult:
        return await self._fork()._transition(membership_id, "CHANGE_ROLE", role=_role(role))

    # ---------- reads ----------

    async def get(self, membership_id: str, should_decrypt: Optional[bool] = None) -> Membership:
        svc = self._fork()
        obj = await svc.set_vault_context_from_membership_id(membership_id)
        return svc.process_membership(obj, should_decrypt)

    async def list(self, vault_id: str, options: Optional[ListOptions] = None) -> List[Membership]:
        svc = self._fork()
        opts = merge_options(
            ListOptions(should_decrypt=svc.config.service.default_should_decrypt),
            ListOptions(statuses=list(ACTIVE_MEMBERSHIP_STATUSES)),
            options,
        )
        await svc.set_vault_context(vault_id)
        return [
            svc.process_membership(obj, opts.should_decrypt)
            for obj in await svc.ledger.get_members(vault_id)
            if obj["status"] in opts.statuses
        ]
