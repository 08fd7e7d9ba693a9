"""Block-cipher keystream used to encrypt column values.

Each row carries a random 8-byte salt. The keystream for a column is derived
from the table key, the row salt and the column ordinal, so equal plaintexts
in different rows or different columns encrypt differently.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from crypto_tables.errors import InvalidKeyError, NoKeyError

if TYPE_CHECKING:
    from crypto_tables.schema import TableSchema

logger = logging.getLogger(__name__)

SALT_SIZE = 8


class CryptoAlgorithm(Enum):
    """Supported column ciphers."""

    AES_256 = "aes-256"
    AES_192 = "aes-192"
    AES_128 = "aes-128"
    DES_56 = "des-56"
    TRIPLE_DES_168 = "3des-168"

    @property
    def key_size(self) -> int:
        """Minimum key length in bytes."""
        return _KEY_SIZES[self]

    @property
    def block_size(self) -> int:
        """Cipher block length in bytes."""
        if self in (CryptoAlgorithm.DES_56, CryptoAlgorithm.TRIPLE_DES_168):
            return 8
        return 16


_KEY_SIZES = {
    CryptoAlgorithm.AES_256: 32,
    CryptoAlgorithm.AES_192: 24,
    CryptoAlgorithm.AES_128: 16,
    CryptoAlgorithm.DES_56: 8,
    CryptoAlgorithm.TRIPLE_DES_168: 24,
}


def check_key(algorithm: CryptoAlgorithm, key: object) -> bytes:
    """Validate a key for an algorithm.

    Returns:
        The key as immutable bytes.

    Raises:
        InvalidKeyError: If the key is missing, not bytes, or too short.
    """
    if key is None:
        raise InvalidKeyError("Encryption key can't be None.")
    if not isinstance(key, (bytes, bytearray, memoryview)):
        raise InvalidKeyError(f"Encryption key must be bytes, not {type(key).__name__}.")
    key = bytes(key)
    if len(key) < algorithm.key_size:
        raise InvalidKeyError(
            f"Key length for {algorithm.value} must be at least {algorithm.key_size} bytes, got {len(key)}."
        )
    return key


def generate_salt() -> bytes:
    """Return a fresh random row salt."""
    return secrets.token_bytes(SALT_SIZE)


@dataclass(frozen=True)
class CipherContext:
    """Keystream generator bound to one key and one row salt.

    Attributes:
        algorithm: Block cipher to use.
        key: Table key; bytes beyond the algorithm key size are ignored.
        salt: Per-row salt of SALT_SIZE bytes.
    """

    algorithm: CryptoAlgorithm
    key: bytes = field(repr=False)
    salt: bytes = field(repr=False)

    def __post_init__(self) -> None:
        check_key(self.algorithm, self.key)
        if len(self.salt) != SALT_SIZE:
            raise ValueError(f"Salt must be {SALT_SIZE} bytes, got {len(self.salt)}")

    def _block_cipher(self) -> Cipher:
        key = bytes(self.key[: self.algorithm.key_size])
        if self.algorithm in (CryptoAlgorithm.DES_56, CryptoAlgorithm.TRIPLE_DES_168):
            # An 8-byte TripleDES key degenerates to single DES
            return Cipher(TripleDES(key), modes.ECB())
        return Cipher(algorithms.AES(key), modes.ECB())

    def initial_state(self, column_ordinal: int) -> bytes:
        """Build the feedback register for a column of this row."""
        if column_ordinal < 0:
            raise ValueError(f"Column ordinal can't be negative: {column_ordinal}")
        state = bytearray(self.salt)
        if self.algorithm.block_size == 16:
            state.extend(b ^ 0xFF for b in self.salt)
        ordinal_bytes = column_ordinal.to_bytes(4, "little")
        for i in range(len(state)):
            state[i] ^= ordinal_bytes[i % 4]
        return bytes(state)

    def apply_keystream(self, data: bytes, column_ordinal: int) -> bytes:
        """XOR data with the keystream of a column; applying it twice is the identity."""
        block_size = self.algorithm.block_size
        state = self.initial_state(column_ordinal)
        encryptor = self._block_cipher().encryptor()

        out = bytearray(data)
        for offset in range(0, len(out), block_size):
            gamma = encryptor.update(state)
            for i in range(min(block_size, len(out) - offset)):
                out[offset + i] ^= gamma[i]
            state = bytes(s ^ g for s, g in zip(state, gamma))
        return bytes(out)


class KeyRing:
    """Default key plus per-table overrides for one connection.

    Per-table keys live on the TableSchema; the default key lives here.
    """

    def __init__(self, algorithm: CryptoAlgorithm = CryptoAlgorithm.AES_256) -> None:
        self.algorithm = algorithm
        self._default_key: bytes | None = None

    @property
    def has_default_key(self) -> bool:
        return self._default_key is not None

    def set_default_key(self, key: bytes) -> None:
        self._default_key = check_key(self.algorithm, key)
        logger.debug("Default encryption key installed for %s", self.algorithm.value)

    def set_table_key(self, schema: TableSchema, key: bytes) -> None:
        schema.encryption_key = check_key(self.algorithm, key)
        logger.debug("Encryption key installed for table %s", schema.name)

    def resolve(self, schema: TableSchema) -> bytes:
        """Return the key for a table: its own key first, then the default key.

        Raises:
            NoKeyError: If neither is set.
        """
        if schema.encryption_key is not None:
            return schema.encryption_key
        if self._default_key is not None:
            return self._default_key
        raise NoKeyError(
            f"Encryption key has not been installed for table {schema.name}.",
            "Call set_encryption_key() or set_table_key() first.",
        )

    def context_for(self, schema: TableSchema, salt: bytes) -> CipherContext:
        return CipherContext(self.algorithm, self.resolve(schema), salt)

    def clear(self, schemas: list[TableSchema] | None = None) -> None:
        """Forget the default key and the keys of the given tables."""
        self._default_key = None
        for schema in schemas or []:
            schema.encryption_key = None
