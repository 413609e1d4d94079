"""AES-256-GCM credential vault for provider API keys at rest.

Provides encrypt/decrypt for provider API keys and key file management.

Key source precedence:
    1. VOICEOPS_CREDENTIAL_KEY env var (base64-encoded 32-byte key)
    2. VOICEOPS_CREDENTIAL_KEY_FILE env var (path to raw key file)
    3. platformdirs local file (auto-generated on first use)

Ciphertext format:
    v1:<iv>:<tag>:<ciphertext>, all hex. A fresh 12-byte IV is drawn per call.
    Optional AAD binds a blob to "organization_id:provider".

Legacy formats (decrypt only), keyed by VOICEOPS_LEGACY_ENCRYPTION_KEY:
    enc_<iv>:<tag>:<ciphertext>   AES-256-GCM, key = secret bytes (32)
    <iv>:<ciphertext>             AES-256-CBC/PKCS7, key = scrypt(secret, "salt", 32)
"""

import base64
import binascii
import logging
import os
import platform
import stat

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger(__name__)

KEY_FILENAME = ".voiceops_key"
_CURRENT_PREFIX = "v1"
_LEGACY_GCM_PREFIX = "enc_"
_REQUIRED_KEY_LENGTH = 32
_IV_LENGTH = 12
_TAG_LENGTH = 16
_CBC_IV_LENGTH = 16
_LEGACY_SALT = b"salt"


class CredentialDecryptionError(Exception):
    """Raised when credential decryption fails for any reason."""


def get_default_key_dir() -> str:
    """Return the platform-appropriate app-data directory for key storage.

    Returns:
        Directory path string.
    """
    from platformdirs import user_data_dir

    return user_data_dir("voiceops", ensure_exists=True)


def get_key_source_info() -> dict:
    """Return metadata about the active key source (without revealing the key).

    Returns:
        {"source": "env"|"env_file"|"platformdirs", "path": str | None}
    """
    env_key = os.environ.get("VOICEOPS_CREDENTIAL_KEY", "").strip()
    if env_key:
        return {"source": "env", "path": None}

    env_key_file = os.environ.get("VOICEOPS_CREDENTIAL_KEY_FILE", "").strip()
    if env_key_file:
        return {"source": "env_file", "path": env_key_file}

    return {"source": "platformdirs", "path": os.path.join(get_default_key_dir(), KEY_FILENAME)}


def _read_key_file(path: str) -> bytes:
    with open(path, "rb") as f:
        key = f.read()
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Key file {path} has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH})"
        )
    return key


def get_or_create_key(key_dir: str | None = None) -> bytes:
    """Load or generate the 32-byte AES-256 encryption key.

    Args:
        key_dir: Directory for the auto-generated key file. Defaults to
                 platformdirs app-data.

    Returns:
        32-byte encryption key.

    Raises:
        ValueError: If key has invalid length from any source, or invalid base64.
    """
    env_key = os.environ.get("VOICEOPS_CREDENTIAL_KEY", "").strip()
    if env_key:
        try:
            key = base64.b64decode(env_key, validate=True)
        except binascii.Error as e:
            raise ValueError(f"VOICEOPS_CREDENTIAL_KEY contains invalid base64: {e}") from e
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"VOICEOPS_CREDENTIAL_KEY has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH})"
            )
        return key

    env_key_file = os.environ.get("VOICEOPS_CREDENTIAL_KEY_FILE", "").strip()
    if env_key_file:
        if not os.path.isfile(env_key_file):
            raise ValueError(f"VOICEOPS_CREDENTIAL_KEY_FILE is not a regular file: {env_key_file}")
        if os.path.islink(env_key_file):
            raise ValueError(f"VOICEOPS_CREDENTIAL_KEY_FILE is a symlink: {env_key_file}")
        return _read_key_file(env_key_file)

    directory = key_dir or get_default_key_dir()
    os.makedirs(directory, exist_ok=True)
    key_path = os.path.join(directory, KEY_FILENAME)

    if os.path.exists(key_path):
        key = _read_key_file(key_path)
        if platform.system() != "Windows":
            mode = stat.S_IMODE(os.stat(key_path).st_mode)
            if mode & (stat.S_IRGRP | stat.S_IWGRP | stat.S_IROTH | stat.S_IWOTH):
                logger.warning(
                    "Key file %s has permissions %o, recommend chmod 600", key_path, mode,
                )
        return key

    key = os.urandom(_REQUIRED_KEY_LENGTH)
    try:
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            os.write(fd, key)
        finally:
            os.close(fd)
    except FileExistsError:
        # Another process created the file first.
        return _read_key_file(key_path)

    logger.info("Generated new encryption key at %s", key_path)
    return key


def get_legacy_secret() -> bytes | None:
    """Return the legacy encryption secret, or None when not configured."""
    secret = os.environ.get("VOICEOPS_LEGACY_ENCRYPTION_KEY", "")
    return secret.encode("utf-8") if secret else None


class CredentialVault:
    """Symmetric authenticated encryption of provider API keys.

    Args:
        key: 32-byte AES-256 key.
        legacy_secret: Secret used by blobs written before the v1 format.
            Legacy blobs cannot be decrypted when this is None.
    """

    def __init__(self, key: bytes, legacy_secret: bytes | None = None) -> None:
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"Encryption key must be exactly {_REQUIRED_KEY_LENGTH} bytes "
                f"(got {len(key)}). AES-256-GCM requires a 256-bit key."
            )
        self._aesgcm = AESGCM(key)
        self._legacy_secret = legacy_secret

    @classmethod
    def from_environment(cls, key_dir: str | None = None) -> "CredentialVault":
        """Build a vault from the configured key sources."""
        return cls(get_or_create_key(key_dir), legacy_secret=get_legacy_secret())

    def encrypt(self, plaintext: bytes | str, aad: str = "") -> str:
        """Encrypt plaintext into a v1 blob.

        Args:
            plaintext: Bytes or UTF-8 text to encrypt.
            aad: Additional authenticated data (e.g. 'org-1:elevenlabs').

        Returns:
            Blob string 'v1:<iv>:<tag>:<ciphertext>' with hex fields.
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        iv = os.urandom(_IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext, aad.encode("utf-8") if aad else None)
        ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
        return ":".join((_CURRENT_PREFIX, iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, blob: str, aad: str = "") -> bytes:
        """Decrypt a blob produced by encrypt() or a legacy format.

        Raises:
            CredentialDecryptionError: If the blob is malformed, tampered with,
                bound to different AAD, or needs a legacy secret that is absent.
        """
        if not isinstance(blob, str) or not blob:
            raise CredentialDecryptionError("Encrypted value is empty")

        parts = blob.split(":")
        try:
            if parts[0] == _CURRENT_PREFIX and len(parts) == 4:
                iv, tag, ciphertext = (bytes.fromhex(p) for p in parts[1:])
                return self._open_gcm(self._aesgcm, iv, tag, ciphertext, aad)
            if parts[0].startswith(_LEGACY_GCM_PREFIX) and len(parts) == 3:
                iv = bytes.fromhex(parts[0][len(_LEGACY_GCM_PREFIX):])
                tag, ciphertext = bytes.fromhex(parts[1]), bytes.fromhex(parts[2])
                return self._open_gcm(self._legacy_gcm(), iv, tag, ciphertext, "")
            if len(parts) == 2:
                return self._open_cbc(bytes.fromhex(parts[0]), bytes.fromhex(parts[1]))
        except ValueError as e:
            raise CredentialDecryptionError(f"Malformed encrypted value: {e}") from e

        raise CredentialDecryptionError("Unrecognized encrypted value format")

    def decrypt_text(self, blob: str, aad: str = "") -> str:
        """Decrypt a blob and decode it as UTF-8."""
        try:
            return self.decrypt(blob, aad).decode("utf-8")
        except UnicodeDecodeError as e:
            raise CredentialDecryptionError("Decrypted value is not valid UTF-8") from e

    @staticmethod
    def _open_gcm(aesgcm: AESGCM, iv: bytes, tag: bytes, ciphertext: bytes, aad: str) -> bytes:
        if len(iv) != _IV_LENGTH:
            raise CredentialDecryptionError(f"Invalid IV length {len(iv)} (expected {_IV_LENGTH})")
        if len(tag) != _TAG_LENGTH:
            raise CredentialDecryptionError(f"Invalid tag length {len(tag)} (expected {_TAG_LENGTH})")
        try:
            return aesgcm.decrypt(iv, ciphertext + tag, aad.encode("utf-8") if aad else None)
        except InvalidTag as e:
            raise CredentialDecryptionError("Authentication tag mismatch") from e

    def _require_legacy_secret(self) -> bytes:
        if not self._legacy_secret:
            raise CredentialDecryptionError(
                "Legacy encrypted value found but VOICEOPS_LEGACY_ENCRYPTION_KEY is not set"
            )
        return self._legacy_secret

    def _legacy_gcm(self) -> AESGCM:
        secret = self._require_legacy_secret()
        if len(secret) != _REQUIRED_KEY_LENGTH:
            raise CredentialDecryptionError(
                f"Legacy secret has length {len(secret)}; GCM blobs need {_REQUIRED_KEY_LENGTH} bytes"
            )
        return AESGCM(secret)

    def _open_cbc(self, iv: bytes, ciphertext: bytes) -> bytes:
        if len(iv) != _CBC_IV_LENGTH:
            raise CredentialDecryptionError(f"Invalid IV length {len(iv)} (expected {_CBC_IV_LENGTH})")
        if not ciphertext or len(ciphertext) % 16:
            raise CredentialDecryptionError("Ciphertext is not a whole number of blocks")
        key = Scrypt(salt=_LEGACY_SALT, length=32, n=2**14, r=8, p=1).derive(
            self._require_legacy_secret()
        )
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise CredentialDecryptionError("Invalid padding, wrong legacy secret?") from e
