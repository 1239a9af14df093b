"""
Encryption module for clipboard sync

Uses AES-256-CBC with PKCS7 padding and a random IV per message.
The key is the SHA-256 digest of the shared password.

Encoded format: hex(iv) + ':' + hex(ciphertext)
"""
import os
import json
import hashlib
from typing import Any

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from clipsync.common.errors import FormatError, DecryptionError

# Constants
IV_SIZE = 16     # AES block size
KEY_SIZE = 32    # 256-bit key
BLOCK_BITS = 128


class EncryptionContext:
    """
    Password based message encryption.

    No key material is cached: every call derives the key from the
    password it is given, so calls are self-contained.
    """

    def __init__(self, algorithm: str = "aes-256-cbc"):
        if algorithm != "aes-256-cbc":
            raise ValueError(f"Unsupported encryption algorithm: {algorithm}")
        self.algorithm = algorithm

    @staticmethod
    def derive_key(password: str) -> bytes:
        """Derive a 256-bit key from a password"""
        return hashlib.sha256(password.encode('utf-8')).digest()

    def encrypt(self, plaintext: str, password: str) -> str:
        """
        Encrypt text with a fresh IV

        Args:
            plaintext: Text to encrypt
            password: Shared password

        Returns:
            "ivHex:cipherHex"
        """
        key = self.derive_key(password)
        iv = os.urandom(IV_SIZE)

        padder = padding.PKCS7(BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode('utf-8')) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return iv.hex() + ':' + ciphertext.hex()

    def decrypt(self, encoded: str, password: str) -> str:
        """
        Decrypt an "ivHex:cipherHex" string

        Raises:
            FormatError: If the input is not two hex parts of valid length
            DecryptionError: If padding or text decoding fails (wrong password, tampered data)
        """
        parts = encoded.split(':')
        if len(parts) != 2:
            raise FormatError("Invalid encrypted data format")

        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError as e:
            raise FormatError(f"Invalid hex in encrypted data: {e}")

        if len(iv) != IV_SIZE:
            raise FormatError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
        if not ciphertext or len(ciphertext) % IV_SIZE:
            raise FormatError("Ciphertext length is not a multiple of the block size")

        key = self.derive_key(password)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        try:
            unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode('utf-8')
        except (ValueError, UnicodeDecodeError) as e:
            raise DecryptionError(f"Decryption failed - wrong password or corrupted data: {e}")

    def encrypt_object(self, obj: Any, password: str) -> str:
        """Serialize an object as JSON and encrypt it"""
        return self.encrypt(json.dumps(obj), password)

    def decrypt_object(self, encoded: str, password: str) -> Any:
        """Decrypt and parse a JSON object"""
        text = self.decrypt(encoded, password)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise DecryptionError(f"Decrypted data is not valid JSON: {e}")


def hash_bytes(data: bytes) -> str:
    """MD5 of raw bytes, used to detect clipboard image changes"""
    return hashlib.md5(data).hexdigest()
