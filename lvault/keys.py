"""Wallet identity: signing and encryption key pairs plus address derivation."""
from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey

from .canonical import sha256_hex


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"))


def _raw_pub(key) -> bytes:
    return key.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)


def _raw_priv(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_enc_pub_raw(raw: bytes) -> X25519PublicKey:
    return X25519PublicKey.from_public_bytes(raw)


def load_sign_pub_raw(raw: bytes) -> Ed25519PublicKey:
    return Ed25519PublicKey.from_public_bytes(raw)


def verify_detached(pub: Ed25519PublicKey, message: bytes, sig: bytes) -> bool:
    try:
        pub.verify(sig, message)
        return True
    except InvalidSignature:
        return False


def address_from_sign_pub(sign_pub_b64: str) -> str:
    """Ledger address of an identity: hex digest of its signing public key."""
    return sha256_hex(b64d(sign_pub_b64))[:40]


@dataclass
class Wallet:
    """Active identity of the SDK user."""
    sign_priv: Ed25519PrivateKey
    enc_priv: X25519PrivateKey
    email: Optional[str] = None

    @property
    def sign_pub_b64(self) -> str:
        return b64e(_raw_pub(self.sign_priv.public_key()))

    @property
    def enc_pub_b64(self) -> str:
        return b64e(_raw_pub(self.enc_priv.public_key()))

    @property
    def address(self) -> str:
        return address_from_sign_pub(self.sign_pub_b64)

    def signing_public_key(self) -> str:
        return self.sign_pub_b64

    def public_key(self) -> str:
        return self.enc_pub_b64

    def sign(self, message: bytes) -> str:
        return b64e(self.sign_priv.sign(message))

    def public_data(self) -> dict:
        """What the ledger's user registry publishes about this identity."""
        return {
            "address": self.address,
            "publicKey": self.enc_pub_b64,
            "publicSigningKey": self.sign_pub_b64,
        }

    def dump(self) -> dict:
        return {
            "sign_priv": b64e(_raw_priv(self.sign_priv)),
            "enc_priv": b64e(_raw_priv(self.enc_priv)),
            "email": self.email,
        }

    @staticmethod
    def load(d: dict) -> "Wallet":
        return Wallet(
            sign_priv=Ed25519PrivateKey.from_private_bytes(b64d(d["sign_priv"])),
            enc_priv=X25519PrivateKey.from_private_bytes(b64d(d["enc_priv"])),
            email=d.get("email"),
        )


def gen_wallet(email: Optional[str] = None) -> Wallet:
    return Wallet(sign_priv=Ed25519PrivateKey.generate(), enc_priv=X25519PrivateKey.generate(), email=email)
