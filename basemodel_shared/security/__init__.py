"""
Security module: decryption key resolution for encrypted fields.
"""

from basemodel_shared.security.decryption import (
    AccessTokenDecryptionKeyProvider,
    DecryptionError,
    DecryptionKeyProvider,
    decrypt_value,
    decryption_key_dependency,
    encrypt_value,
)

__all__ = [
    "AccessTokenDecryptionKeyProvider",
    "DecryptionError",
    "DecryptionKeyProvider",
    "decrypt_value",
    "decryption_key_dependency",
    "encrypt_value",
]
