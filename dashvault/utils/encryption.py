"""AES-256-GCM encryption for vault secrets."""
import base64
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM


class SecretEncryptor:
    """Encrypts secret strings, binding each ciphertext to its secret id.

    The secret id is passed as associated data, so a ciphertext copied onto
    another secret's row fails to decrypt instead of leaking a key.
    """

    def __init__(self, key_hex: str):
        self.aesgcm = AESGCM(bytes.fromhex(key_hex))

    def encrypt(self, plaintext: str, secret_id: str) -> str:
        nonce = os.urandom(12)
        ciphertext = self.aesgcm.encrypt(nonce, plaintext.encode(), secret_id.encode())
        return base64.b64encode(nonce + ciphertext).decode()

    def decrypt(self, token: str, secret_id: str) -> str:
        data = base64.b64decode(token)
        nonce, ciphertext = data[:12], data[12:]
        return self.aesgcm.decrypt(nonce, ciphertext, secret_id.encode()).decode()
