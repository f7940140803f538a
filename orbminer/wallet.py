"""
wallet.py - Custodial wallet credential store.

Signing keys are stored Fernet-encrypted in the users table. Secrets are
accepted as base58 strings or JSON byte arrays and must decode to a 64-byte
ed25519 keypair.
"""

import json
import logging
from typing import TYPE_CHECKING, Optional, Tuple

import base58
from cryptography.fernet import Fernet, InvalidToken
from solders.keypair import Keypair

from orbminer.errors import WalletError

if TYPE_CHECKING:
    from orbminer.storage import UserRepo

logger = logging.getLogger("wallet")

SECRET_KEY_LENGTH = 64


def parse_secret_key(secret: str) -> Keypair:
    """Parse a base58 or ``[1,2,...]`` secret into a Keypair."""
    secret = secret.strip()
    try:
        if secret.startswith("["):
            raw = bytes(json.loads(secret))
        else:
            raw = base58.b58decode(secret)
    except (ValueError, TypeError) as e:
        raise WalletError(f"Unreadable private key: {e}") from e
    if len(raw) != SECRET_KEY_LENGTH:
        raise WalletError(
            f"Invalid secret key size: {len(raw)} bytes (expected {SECRET_KEY_LENGTH})"
        )
    try:
        return Keypair.from_bytes(raw)
    except ValueError as e:
        raise WalletError(f"Invalid secret key: {e}") from e


class WalletService:
    """Encrypts, stores and resolves per-user signing keys."""

    def __init__(self, user_repo: "UserRepo", encryption_key: str):
        self._users = user_repo
        self._fernet = Fernet(encryption_key.encode("utf-8"))

    @staticmethod
    def generate_encryption_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def encrypt(self, keypair: Keypair) -> str:
        secret = base58.b58encode(bytes(keypair)).decode("ascii")
        return self._fernet.encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> Keypair:
        try:
            secret = self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise WalletError("Stored key could not be decrypted") from e
        return parse_secret_key(secret)

    async def generate(self, user_id: str) -> Tuple[Keypair, dict]:
        """Create a fresh wallet for ``user_id`` and store it."""
        keypair = Keypair()
        user = await self._users.create(user_id, str(keypair.pubkey()), self.encrypt(keypair))
        logger.info("Generated wallet for %s: %s", user_id, keypair.pubkey())
        return keypair, user

    async def import_key(self, user_id: str, secret: str) -> dict:
        keypair = parse_secret_key(secret)
        user = await self._users.create(user_id, str(keypair.pubkey()), self.encrypt(keypair))
        logger.info("Imported wallet for %s: %s", user_id, keypair.pubkey())
        return user

    async def resolve_signing_key(self, user_id: str) -> Optional[Keypair]:
        user = await self._users.get(user_id)
        if user is None or not user["encrypted_key"]:
            return None
        try:
            keypair = self.decrypt(user["encrypted_key"])
        except WalletError as e:
            logger.error("Failed to load wallet for %s: %s", user_id, e)
            return None
        if str(keypair.pubkey()) != user["public_key"]:
            logger.error("Stored key for %s does not match public key %s", user_id, user["public_key"])
            return None
        return keypair
