"""
SSH credential storage for remote channels
"""
import base64
import logging
import uuid
from typing import Optional, Tuple

import keyring
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from keyring.errors import KeyringError
from PyQt5.QtCore import QSettings

logger = logging.getLogger(__name__)


class CredentialStore:
    """Secure credential storage using keyring, with encrypted QSettings as fallback"""

    def __init__(self, app_name="RemoteTransferQueue", settings: Optional[QSettings] = None):
        self.app_name = app_name
        self.settings = settings or QSettings("RemoteTransferQueue", "Credentials")

    def _generate_key_from_machine(self) -> bytes:
        """Derive the Fernet key from this installation's machine id"""
        machine_id = self._get_or_create_machine_id()
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b'transfer_queue_salt',
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(machine_id.encode()))

    def _get_or_create_machine_id(self) -> str:
        machine_id = self.settings.value("machine_id", None)
        if not machine_id:
            machine_id = str(uuid.uuid4())
            self.settings.setValue("machine_id", machine_id)
            self.settings.sync()
        return machine_id

    def encrypt_secret(self, secret: str) -> str:
        if not secret:
            return ""
        f = Fernet(self._generate_key_from_machine())
        return f.encrypt(secret.encode()).decode()

    def decrypt_secret(self, token: str) -> str:
        if not token:
            return ""
        f = Fernet(self._generate_key_from_machine())
        try:
            return f.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.warning("Stored secret could not be decrypted on this machine")
            return ""

    def save_credentials(self, server_name: str, username: str, password: str) -> str:
        """Store credentials; returns which backend took them ('keyring' or 'settings')"""
        try:
            keyring.set_password(self.app_name, f"{server_name}_username", username)
            keyring.set_password(self.app_name, f"{server_name}_password", password)
            return 'keyring'
        except (KeyringError, RuntimeError) as e:
            logger.warning(f"Keyring unavailable ({e}); using encrypted settings")

        self.settings.setValue(f"credentials/{server_name}/username", username)
        self.settings.setValue(f"credentials/{server_name}/password", self.encrypt_secret(password))
        self.settings.sync()
        return 'settings'

    def get_credentials(self, server_name: str) -> Tuple[str, str]:
        try:
            username = keyring.get_password(self.app_name, f"{server_name}_username")
            password = keyring.get_password(self.app_name, f"{server_name}_password")
            if username and password:
                return username, password
        except (KeyringError, RuntimeError) as e:
            logger.debug(f"Keyring lookup failed: {e}")

        username = self.settings.value(f"credentials/{server_name}/username", "")
        encrypted_password = self.settings.value(f"credentials/{server_name}/password", "")
        if username and encrypted_password:
            return username, self.decrypt_secret(encrypted_password)
        return "", ""

    def delete_credentials(self, server_name: str):
        try:
            keyring.delete_password(self.app_name, f"{server_name}_username")
            keyring.delete_password(self.app_name, f"{server_name}_password")
        except (KeyringError, RuntimeError) as e:
            logger.debug(f"Keyring delete failed: {e}")

        self.settings.remove(f"credentials/{server_name}/username")
        self.settings.remove(f"credentials/{server_name}/password")
        self.settings.sync()
