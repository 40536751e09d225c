"""
Machine-bound password protection.

The broker password is stored encrypted with a key derived from this
machine's identity, so a copied config file cannot be decrypted elsewhere.
Any other object exposing encrypt(str) -> str / decrypt(str) -> str can be
injected in its place.
"""

import base64
import binascii
import hashlib
import os
import socket
import uuid

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from powerctl_mqtt.errors import DecryptError

KEY_SALT = b"powerctl.broker-password.v1"
NONCE_SIZE = 12


def machine_identity() -> bytes:
    """Hostname plus primary MAC address."""
    return f"{socket.gethostname()}|{uuid.getnode():012x}".encode("utf-8")


class MachineKeyCipher:
    """
    AES-256-GCM with a key derived from the machine identity.

    Blob format: base64(nonce || ciphertext+tag). Empty strings stay empty
    in both directions so an unset password never produces a blob.

    Example:
        cipher = MachineKeyCipher()
        blob = cipher.encrypt("secret")
        assert cipher.decrypt(blob) == "secret"
    """

    def __init__(self, identity: bytes = None):
        identity = identity if identity is not None else machine_identity()
        key = hashlib.sha256(identity + KEY_SALT).digest()
        self._aead = AESGCM(key)

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._aead.encrypt(nonce, secret.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """
        Raises:
            DecryptError: Blob is not valid base64, is truncated, was produced
                on another machine, or has been tampered with
        """
        if not blob:
            return ""

        try:
            raw = base64.b64decode(blob.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise DecryptError(f"Password blob is not valid base64: {e}") from e

        if len(raw) <= NONCE_SIZE:
            raise DecryptError("Password blob is truncated")

        nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise DecryptError("Password blob cannot be decrypted on this machine") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptError("Decrypted password is not valid UTF-8") from e
