"""Vault-scoped encryption.

Implements the cryptographic context used by every service:
- ChaCha20-Poly1305 with a per-vault symmetric key set for strings and bytes
- X25519 + HKDF-SHA256 sealing to wrap vault keys for each member

Key sets are versioned: new payloads are always encrypted with the highest
key id, older payloads stay readable with the key id recorded next to them.
"""
from __future__ import annotations

import json
import secrets
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .keys import Wallet, b64d, b64e, load_enc_pub_raw, _raw_pub

KEY_SIZE = 32     # 256-bit key
NONCE_SIZE = 12   # ChaCha20-Poly1305 nonce size
SEAL_INFO = b"lvault-key-wrap-v1"

# Version for future upgrades of the string envelope
ENVELOPE_VERSION = 1

_BYTES_HEADER = struct.Struct(">I")


class CryptoError(Exception):
    """Encryption or decryption failed."""
    pass


@dataclass(frozen=True)
class VaultKey:
    key_id: int
    secret: bytes


def gen_vault_key(key_id: int = 0) -> VaultKey:
    return VaultKey(key_id=key_id, secret=secrets.token_bytes(KEY_SIZE))


def _latest(keys: Sequence[VaultKey]) -> VaultKey:
    if not keys:
        raise CryptoError("no encryption keys loaded")
    return max(keys, key=lambda k: k.key_id)


def _find(keys: Sequence[VaultKey], key_id: int) -> VaultKey:
    for k in keys:
        if k.key_id == key_id:
            return k
    raise CryptoError(f"no key with id {key_id} in the loaded key set")


def latest_key_id(keys: Sequence[VaultKey]) -> int:
    return _latest(keys).key_id


# ---------- strings ----------

def encrypt_string(plaintext: str, keys: Sequence[VaultKey]) -> str:
    key = _latest(keys)
    nonce = secrets.token_bytes(NONCE_SIZE)
    ct = ChaCha20Poly1305(key.secret).encrypt(nonce, plaintext.encode("utf-8"), None)
    envelope = {"v": ENVELOPE_VERSION, "k": key.key_id, "n": b64e(nonce), "c": b64e(ct)}
    return b64e(json.dumps(envelope, sort_keys=True, separators=(",", ":")).encode("utf-8"))


def decrypt_string(value: str, keys: Sequence[VaultKey]) -> str:
    try:
        envelope = json.loads(b64d(value).decode("utf-8"))
        key_id = int(envelope["k"])
        nonce = b64d(envelope["n"])
        ct = b64d(envelope["c"])
    except (ValueError, KeyError, TypeError) as e:
        raise CryptoError(f"malformed ciphertext: {e}") from e
    if envelope.get("v") != ENVELOPE_VERSION:
        raise CryptoError(f"unsupported envelope version: {envelope.get('v')}")
    key = _find(keys, key_id)
    try:
        return ChaCha20Poly1305(key.secret).decrypt(nonce, ct, None).decode("utf-8")
    except InvalidTag as e:
        raise CryptoError("decryption failed - wrong key or corrupted payload") from e


# ---------- bytes ----------

def encrypt_bytes(data: bytes, keys: Sequence[VaultKey]) -> bytes:
    key = _latest(keys)
    nonce = secrets.token_bytes(NONCE_SIZE)
    ct = ChaCha20Poly1305(key.secret).encrypt(nonce, data, None)
    return _BYTES_HEADER.pack(key.key_id) + nonce + ct


def decrypt_bytes(blob: bytes, keys: Sequence[VaultKey]) -> bytes:
    header = _BYTES_HEADER.size
    if len(blob) < header + NONCE_SIZE:
        raise CryptoError("encrypted blob too short")
    (key_id,) = _BYTES_HEADER.unpack(blob[:header])
    nonce = blob[header:header + NONCE_SIZE]
    key = _find(keys, key_id)
    try:
        return ChaCha20Poly1305(key.secret).decrypt(nonce, blob[header + NONCE_SIZE:], None)
    except InvalidTag as e:
        raise CryptoError("decryption failed - wrong key or corrupted payload") from e


# ---------- key wrapping ----------

def _derive(shared: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=None, info=SEAL_INFO).derive(shared)


def seal_to_x25519(recipient_pub_b64: str, plaintext: bytes) -> str:
    """Encrypt ``plaintext`` so only the holder of the X25519 private key can open it."""
    eph = X25519PrivateKey.generate()
    shared = eph.exchange(load_enc_pub_raw(b64d(recipient_pub_b64)))
    nonce = secrets.token_bytes(NONCE_SIZE)
    ct = ChaCha20Poly1305(_derive(shared)).encrypt(nonce, plaintext, None)
    return b64e(_raw_pub(eph.public_key()) + nonce + ct)


def open_from_x25519(enc_priv: X25519PrivateKey, sealed_b64: str) -> bytes:
    try:
        blob = b64d(sealed_b64)
    except ValueError as e:
        raise CryptoError(f"malformed sealed key: {e}") from e
    if len(blob) < 32 + NONCE_SIZE:
        raise CryptoError("sealed key too short")
    eph_pub = load_enc_pub_raw(blob[:32])
    nonce = blob[32:32 + NONCE_SIZE]
    shared = enc_priv.exchange(eph_pub)
    try:
        return ChaCha20Poly1305(_derive(shared)).decrypt(nonce, blob[32 + NONCE_SIZE:], None)
    except InvalidTag as e:
        raise CryptoError("cannot open sealed key - not addressed to this wallet") from e


def wrap_vault_keys(keys: Sequence[VaultKey], recipient_pub_b64: str) -> List[Dict[str, Any]]:
    """Wrap every vault key for one member; stored in the membership state."""
    return [
        {
            "keyId": k.key_id,
            "publicKey": recipient_pub_b64,
            "encPrivateKey": seal_to_x25519(recipient_pub_b64, k.secret),
        }
        for k in keys
    ]


def unwrap_vault_keys(wallet: Wallet, encrypted_keys: Sequence[Dict[str, Any]]) -> List[VaultKey]:
    return [
        VaultKey(key_id=int(k["keyId"]), secret=open_from_x25519(wallet.enc_priv, k["encPrivateKey"]))
        for k in encrypted_keys
    ]
