"""Encrypted OAuth credential storage for gcal-mcp.

Storage Location: ~/.config/gcal_mcp/token.enc

The directory can be moved with the GCAL_MCP_CONFIG_DIR environment
variable. The file holds exactly one credential, encrypted with
:class:`~gcal_mcp.auth.token_cipher.TokenCipher`, and is written with
owner-only permissions (600). The directory itself (700) is created by the
bootstrap code via :func:`ensure_config_dir`, never by :meth:`TokenStorage.save`.
"""

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from gcal_mcp.auth.models import Credential, TokenStatus
from gcal_mcp.auth.token_cipher import TokenCipher
from gcal_mcp.errors import (
    ConfigError,
    CryptoError,
    DecodeError,
    TokenNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "GCAL_MCP_CONFIG_DIR"
TOKEN_FILENAME = "token.enc"


def get_config_dir() -> Path:
    """Get the per-user configuration directory.

    Returns:
        $GCAL_MCP_CONFIG_DIR if set, else ~/.config/gcal_mcp.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "gcal_mcp"


def get_token_path() -> Path:
    """Get the default encrypted token path."""
    return get_config_dir() / TOKEN_FILENAME


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Create the configuration directory with secure permissions if needed.

    Args:
        config_dir: Directory to create. Defaults to :func:`get_config_dir`.

    Returns:
        The directory path.
    """
    creds_dir = config_dir or get_config_dir()
    if not creds_dir.exists():
        creds_dir.mkdir(parents=True, mode=0o700)
    else:
        creds_dir.chmod(0o700)
    return creds_dir


class TokenStorage:
    """Encrypted file storage for a single OAuth credential.

    Attributes:
        token_path: Path to the encrypted token file.
        cipher: Cipher used to protect the file contents.

    Example:
        ```python
        ensure_config_dir()
        storage = TokenStorage()

        storage.save(Credential(
            access_token="abc123",
            refresh_token="def456",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        ))
        credential = storage.load()
        ```
    """

    def __init__(self, token_path: Path | None = None, cipher: TokenCipher | None = None) -> None:
        """Initialize token storage.

        Args:
            token_path: Custom path for the encrypted file.
                Defaults to ~/.config/gcal_mcp/token.enc.
            cipher: Cipher instance. Defaults to the host-keyed TokenCipher.
        """
        self.token_path = token_path or get_token_path()
        self.cipher = cipher or TokenCipher()

    def exists(self) -> bool:
        """Return True if an encrypted token file is present."""
        return self.token_path.exists()

    def save(self, credential: Credential | None) -> None:
        """Encrypt and persist a credential, replacing any previous one.

        Args:
            credential: Credential to store.

        Raises:
            ValidationError: If credential is None.
            ConfigError: If the configuration directory does not exist.
        """
        if credential is None:
            raise ValidationError("credential", "credential cannot be None")

        creds_dir = self.token_path.parent
        if not creds_dir.is_dir():
            raise ConfigError(
                "config_dir",
                f"directory {creds_dir} does not exist; run 'gcal-mcp setup' first",
            )

        blob = self.cipher.encrypt(credential.model_dump_json().encode("utf-8"))

        # mkstemp creates the file with mode 600
        fd, tmp_name = tempfile.mkstemp(dir=creds_dir, prefix=".token-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.token_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Saved encrypted credential to %s", self.token_path)

    def load(self) -> Credential:
        """Read and decrypt the stored credential.

        Raises:
            TokenNotFoundError: If no token file exists.
            CryptoError: If the file cannot be decrypted.
            DecodeError: If the decrypted data is not a valid credential.
        """
        try:
            blob = self.token_path.read_bytes()
        except FileNotFoundError as e:
            raise TokenNotFoundError(f"no stored credential at {self.token_path}", cause=e) from e

        data = self.cipher.decrypt(blob)

        try:
            return Credential.model_validate_json(data)
        except PydanticValidationError as e:
            raise DecodeError("stored credential is malformed", cause=e) from e

    def delete(self) -> bool:
        """Delete the stored credential.

        Returns:
            True if a file was deleted, False if none existed.
        """
        if not self.token_path.exists():
            return False
        self.token_path.unlink()
        return True

    def get_status(self) -> TokenStatus:
        """Get the status of the stored credential."""
        try:
            credential = self.load()
        except TokenNotFoundError:
            return TokenStatus.MISSING
        except (CryptoError, DecodeError) as e:
            logger.warning("Stored credential unreadable: %s", e)
            return TokenStatus.INVALID

        if credential.is_expired():
            return TokenStatus.EXPIRED
        return TokenStatus.VALID
