"""
Encrypted local key-value store.

Values live in one JSON document addressed by path segments. Secrets are
stored as Fernet tokens under the `secure` branch, keyed by PBKDF2 from the
configured encryption key and a salt generated for each store.
"""
import base64
import json
import logging
import os
import shutil
import tempfile
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import ENCRYPTION_KEY, STORE_DIR, STORE_FILE
from .exceptions import ConfigError

logger = logging.getLogger("hodl.storage")

KDF_ITERATIONS = 100000
SECURE_BRANCH = 'secure'


def derive_fernet_key(password: str, salt: bytes) -> bytes:
    """
    Derive a Fernet key from a password.

    Args:
        password (str): Encryption password
        salt (bytes): Store salt

    Returns:
        bytes: urlsafe base64 encoded 32-byte key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode()))


class EncryptedStore:
    """JSON document store with an encrypted branch for secrets.

    Single writer: every mutation rewrites the whole file through a temporary
    file and an atomic move.
    """

    def __init__(self, directory: str = STORE_DIR, filename: str = STORE_FILE,
                 encryption_key: Optional[str] = ENCRYPTION_KEY):
        self.path = os.path.join(directory, filename)
        os.makedirs(directory, exist_ok=True)
        self._data = self._load()
        self._fernet = None
        if encryption_key:
            salt = self._data.get('salt')
            if salt is None:
                salt = base64.b64encode(os.urandom(16)).decode()
                self._data['salt'] = salt
                self._save()
            self._fernet = Fernet(derive_fernet_key(encryption_key, base64.b64decode(salt)))

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {'data': {}}
        with open(self.path, 'r') as file:
            document = json.load(file)
        document.setdefault('data', {})
        return document

    def _save(self):
        directory = os.path.dirname(self.path)
        temp_file = tempfile.NamedTemporaryFile('w', dir=directory, delete=False, suffix='.tmp')
        try:
            with temp_file:
                json.dump(self._data, temp_file, indent=2)
            shutil.move(temp_file.name, self.path)
        except Exception:
            if os.path.exists(temp_file.name):
                os.unlink(temp_file.name)
            raise

    @staticmethod
    def _check_path(path):
        if not path or not all(isinstance(segment, str) and segment for segment in path):
            raise ValueError("Path segments must be non-empty strings")

    def _parent(self, path, create: bool):
        node = self._data['data']
        for segment in path[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                if not create:
                    return None
                child = node[segment] = {}
            node = child
        return node

    def get(self, *path: str) -> Any:
        """Value at a path, or None when absent."""
        self._check_path(path)
        parent = self._parent(path, create=False)
        if parent is None:
            return None
        return parent.get(path[-1])

    def set(self, *args: Any):
        """set(*path, value): store a JSON-serialisable value."""
        *path, value = args
        self._check_path(path)
        json.dumps(value)
        self._parent(path, create=True)[path[-1]] = value
        self._save()

    def append(self, *args: Any):
        """append(*path, value): add a value to the list at a path."""
        *path, value = args
        self._check_path(path)
        json.dumps(value)
        parent = self._parent(path, create=True)
        existing = parent.get(path[-1])
        if existing is None:
            existing = parent[path[-1]] = []
        elif not isinstance(existing, list):
            raise ValueError(f"Value at {'/'.join(path)} is not a list")
        existing.append(value)
        self._save()

    def delete(self, *path: str):
        self._check_path(path)
        parent = self._parent(path, create=False)
        if parent is not None and path[-1] in parent:
            del parent[path[-1]]
            self._save()

    # ------------------------------------------------------------------
    # Encrypted values
    # ------------------------------------------------------------------

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise ConfigError("No encryption key configured (HODL_ENCRYPTION_KEY)", operation="secure_store")
        return self._fernet

    def secure_set(self, *args: Any):
        """secure_set(*path, value): encrypt and store a JSON-serialisable value."""
        *path, value = args
        token = self._require_fernet().encrypt(json.dumps(value).encode())
        self.set(SECURE_BRANCH, *path, token.decode())

    def secure_get(self, *path: str) -> Any:
        """
        Decrypt the value at a path.

        Returns:
            The value, or None when absent or not decryptable with this key
        """
        fernet = self._require_fernet()
        token = self.get(SECURE_BRANCH, *path)
        if token is None:
            return None
        try:
            return json.loads(fernet.decrypt(token.encode()))
        except InvalidToken:
            logger.warning(f"Could not decrypt {'/'.join(path)}; wrong encryption key?")
            return None

    def secure_delete(self, *path: str):
        self.delete(SECURE_BRANCH, *path)
