"""Protocol-level names shared by services and the contract fold.

Tag names and function names are part of the ledger wire protocol and must
not be changed.
"""
from __future__ import annotations

from enum import Enum


class Function(str, Enum):
    VAULT_INIT = "vault:init"
    VAULT_UPDATE = "vault:update"
    VAULT_ARCHIVE = "vault:archive"
    VAULT_RESTORE = "vault:restore"
    VAULT_DELETE = "vault:delete"
    NODE_CREATE = "node:create"
    NODE_UPDATE = "node:update"
    NODE_MOVE = "node:move"
    NODE_REVOKE = "node:revoke"
    NODE_RESTORE = "node:restore"
    NODE_DELETE = "node:delete"
    MEMBERSHIP_ADD = "membership:add"
    MEMBERSHIP_INVITE = "membership:invite"
    MEMBERSHIP_ACCEPT = "membership:accept"
    MEMBERSHIP_CONFIRM = "membership:confirm"
    MEMBERSHIP_REJECT = "membership:reject"
    MEMBERSHIP_REVOKE = "membership:revoke"
    MEMBERSHIP_RESTORE = "membership:restore"
    MEMBERSHIP_CHANGE_ROLE = "membership:change-role"


class ActionRef(str, Enum):
    VAULT_CREATE = "VAULT_CREATE"
    VAULT_RENAME = "VAULT_RENAME"
    VAULT_ARCHIVE = "VAULT_ARCHIVE"
    VAULT_RESTORE = "VAULT_RESTORE"
    VAULT_DELETE = "VAULT_DELETE"
    MEMBERSHIP_INVITE = "MEMBERSHIP_INVITE"
    MEMBERSHIP_ACCEPT = "MEMBERSHIP_ACCEPT"
    MEMBERSHIP_CONFIRM = "MEMBERSHIP_CONFIRM"
    MEMBERSHIP_REJECT = "MEMBERSHIP_REJECT"
    MEMBERSHIP_LEAVE = "MEMBERSHIP_LEAVE"
    MEMBERSHIP_REVOKE = "MEMBERSHIP_REVOKE"
    MEMBERSHIP_RESTORE = "MEMBERSHIP_RESTORE"
    MEMBERSHIP_CHANGE_ROLE = "MEMBERSHIP_CHANGE_ROLE"
    MEMBERSHIP_OWNER = "MEMBERSHIP_OWNER"
    FOLDER_CREATE = "FOLDER_CREATE"
    FOLDER_RENAME = "FOLDER_RENAME"
    FOLDER_MOVE = "FOLDER_MOVE"
    FOLDER_REVOKE = "FOLDER_REVOKE"
    FOLDER_RESTORE = "FOLDER_RESTORE"
    FOLDER_DELETE = "FOLDER_DELETE"
    STACK_CREATE = "STACK_CREATE"
    STACK_RENAME = "STACK_RENAME"
    STACK_UPLOAD_REVISION = "STACK_UPLOAD_REVISION"
    STACK_MOVE = "STACK_MOVE"
    STACK_REVOKE = "STACK_REVOKE"
    STACK_RESTORE = "STACK_RESTORE"
    STACK_DELETE = "STACK_DELETE"
    NOTE_CREATE = "NOTE_CREATE"
    NOTE_UPLOAD_REVISION = "NOTE_UPLOAD_REVISION"
    NOTE_RENAME = "NOTE_RENAME"
    NOTE_MOVE = "NOTE_MOVE"
    NOTE_REVOKE = "NOTE_REVOKE"
    NOTE_RESTORE = "NOTE_RESTORE"
    NOTE_DELETE = "NOTE_DELETE"
    MEMO_CREATE = "MEMO_CREATE"
    MEMO_ADD_REACTION = "MEMO_ADD_REACTION"
    MEMO_REMOVE_REACTION = "MEMO_REMOVE_REACTION"
    MEMO_REVOKE = "MEMO_REVOKE"
    MEMO_RESTORE = "MEMO_RESTORE"
    MEMO_DELETE = "MEMO_DELETE"


def action_ref_for(object_type: str, action: str) -> ActionRef:
    """Resolve e.g. ("Stack", "REVOKE") to ``ActionRef.STACK_REVOKE``."""
    return ActionRef[f"{object_type.upper()}_{action.upper()}"]


class ProtocolTag(str, Enum):
    PROTOCOL_NAME = "Protocol-Name"
    PROTOCOL_VERSION = "Protocol-Version"
    FUNCTION_NAME = "Function-Name"
    SIGNER_ADDRESS = "Signer-Address"
    VAULT_ID = "Vault-Id"
    NODE_TYPE = "Node-Type"
    NODE_ID = "Node-Id"
    MEMBERSHIP_ID = "Membership-Id"
    PUBLIC = "Public"
    ENCRYPTION_KEY_VERSION = "Encryption-Key-Version"
    MEMBER_ADDRESS = "Member-Address"
    GROUP_REF = "Group-Ref"
    ACTION_REF = "Action-Ref"
    TAG = "Tag"


class ObjectType(str, Enum):
    VAULT = "Vault"
    MEMBERSHIP = "Membership"
    FOLDER = "Folder"
    STACK = "Stack"
    NOTE = "Note"
    MEMO = "Memo"


class Status(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    REVOKED = "REVOKED"
    DELETED = "DELETED"
    PENDING = "PENDING"
    INVITED = "INVITED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


# Memberships that still block a second invite for the same email
ACTIVE_MEMBERSHIP_STATUSES = (Status.ACCEPTED.value, Status.PENDING.value, Status.INVITED.value)


class Role(str, Enum):
    VIEWER = "VIEWER"
    CONTRIBUTOR = "CONTRIBUTOR"
    OWNER = "OWNER"


class ReactionEmoji(str, Enum):
    JOY = "\U0001F602"
    ASTONISHED = "\U0001F632"
    CRY = "\U0001F622"
    HEART = "❤️"
    FIRE = "\U0001F525"
    THUMBS_UP = "\U0001F44D"
    THUMBS_DOWN = "\U0001F44E"
    PRAY = "\U0001F64F"


class NoteType(str, Enum):
    MD = "text/markdown"
    JSON = "application/json"
