"""Field-level encryption for values stored at rest.

Each value is sealed into its own envelope with AES-256-GCM. The key is
derived per envelope with PBKDF2-HMAC-SHA512 from the configured secret and a
random 64-byte salt, so no two envelopes share key material. The envelope is
stored as a JSON string:

    {"encrypted": hex, "iv": hex, "salt": hex, "tag": hex}

Decryption never raises. It reports one of three outcomes so callers can tell
"field was never set" apart from "stored data is corrupt".
"""
import asyncio
import binascii
import enum
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import IntegrityFailure, WorkerPoolTimeout
from .worker_pool import WorkerPool

logger = logging.getLogger(__name__)

IV_LENGTH = 16
SALT_LENGTH = 64
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000


class DecryptStatus(str, enum.Enum):
    ABSENT = "absent"
    CORRUPT = "corrupt"
    VALUE = "value"


@dataclass(frozen=True)
class DecryptResult:
    """Outcome of decrypting one envelope."""
    status: DecryptStatus
    value: Optional[str] = None

    @property
    def is_corrupt(self) -> bool:
        return self.status is DecryptStatus.CORRUPT

    def unwrap(self) -> Optional[str]:
        """The plaintext, or IntegrityFailure if the envelope was corrupt."""
        if self.is_corrupt:
            raise IntegrityFailure()
        return self.value


ABSENT = DecryptResult(DecryptStatus.ABSENT)
CORRUPT = DecryptResult(DecryptStatus.CORRUPT)


class FieldCipher:
    """Synchronous envelope codec. All methods are CPU-bound."""

    def __init__(self, secret: str, iterations: int = KDF_ITERATIONS):
        if not secret:
            raise ValueError("FieldCipher requires a non-empty secret")
        self._secret = secret.encode("utf-8")
        self.iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(self._secret)

    def encrypt_field(self, value: Any) -> Optional[str]:
        """Seal a scalar into an envelope string. None and "" stay None."""
        if value is None or value == "":
            return None
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        key = self._derive_key(salt)
        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(key).encrypt(iv, str(value).encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return json.dumps({
            "encrypted": ciphertext.hex(),
            "iv": iv.hex(),
            "salt": salt.hex(),
            "tag": tag.hex(),
        })

    def decrypt_field(self, envelope: Optional[str]) -> DecryptResult:
        """Open an envelope string."""
        if not envelope:
            return ABSENT
        try:
            parts = json.loads(envelope)
            ciphertext = bytes.fromhex(parts["encrypted"])
            iv = bytes.fromhex(parts["iv"])
            salt = bytes.fromhex(parts["salt"])
            tag = bytes.fromhex(parts["tag"])
        except (ValueError, TypeError, KeyError, binascii.Error) as e:
            logger.warning(f"Integrity failure: malformed envelope ({type(e).__name__})")
            return CORRUPT

        key = self._derive_key(salt)
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except (InvalidTag, ValueError):
            logger.warning("Integrity failure: authentication tag mismatch")
            return CORRUPT

        try:
            return DecryptResult(DecryptStatus.VALUE, plaintext.decode("utf-8"))
        except UnicodeDecodeError:
            logger.warning("Integrity failure: plaintext is not valid UTF-8")
            return CORRUPT

    def decrypt_value(self, envelope: Optional[str]) -> Optional[str]:
        """Decrypt and collapse ABSENT/CORRUPT to None."""
        return self.decrypt_field(envelope).value


class AsyncFieldCipher:
    """Runs a FieldCipher on the worker pool so derivations stay off the event loop."""

    def __init__(self, cipher: FieldCipher, pool: WorkerPool, timeout: Optional[float] = None):
        self.cipher = cipher
        self.pool = pool
        # Bound on a whole batch, including time spent waiting for slots
        self.timeout = pool.timeout if timeout is None else timeout

    async def encrypt_field(self, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return await self.pool.run(self.cipher.encrypt_field, value)

    async def decrypt_field(self, envelope: Optional[str]) -> DecryptResult:
        if not envelope:
            return ABSENT
        return await self.pool.run(self.cipher.decrypt_field, envelope)

    async def encrypt_many(self, values: Dict[str, Any]) -> Dict[str, Optional[str]]:
        """Encrypt several fields, one pool job per present field."""
        names = list(values)
        results = await self._batch([self.encrypt_field(values[name]) for name in names])
        return dict(zip(names, results))

    async def decrypt_many(self, envelopes: Dict[str, Optional[str]]) -> Dict[str, DecryptResult]:
        names = list(envelopes)
        results = await self._batch([self.decrypt_field(envelopes[name]) for name in names])
        return dict(zip(names, results))

    async def _batch(self, jobs: List[Awaitable[Any]]) -> List[Any]:
        try:
            return await asyncio.wait_for(asyncio.gather(*jobs), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Cipher batch of {len(jobs)} fields exceeded {self.timeout}s")
            raise WorkerPoolTimeout() from e
