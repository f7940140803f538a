"""
test_wallet.py - Unit tests for the Fernet-backed wallet credential store.
"""

import json

import base58
import pytest
from solders.keypair import Keypair

from orbminer.errors import WalletError
from orbminer.wallet import WalletService, parse_secret_key

pytestmark = pytest.mark.asyncio


class TestParseSecretKey:

    def test_base58(self):
        kp = Keypair()
        parsed = parse_secret_key(base58.b58encode(bytes(kp)).decode())
        assert parsed.pubkey() == kp.pubkey()

    def test_json_array(self):
        kp = Keypair()
        parsed = parse_secret_key(json.dumps(list(bytes(kp))))
        assert parsed.pubkey() == kp.pubkey()

    def test_whitespace_trimmed(self):
        kp = Keypair()
        parsed = parse_secret_key("  " + base58.b58encode(bytes(kp)).decode() + "\n")
        assert parsed.pubkey() == kp.pubkey()

    @pytest.mark.parametrize("secret", [
        "0OIl-not-base58",
        base58.b58encode(b"\x01" * 32).decode(),
        "[1, 2, 3]",
        "[not json",
    ])
    def test_invalid(self, secret):
        with pytest.raises(WalletError):
            parse_secret_key(secret)


class TestWalletService:

    async def test_generate_and_resolve(self, storage, wallets):
        kp, user = await wallets.generate("alice")
        assert user["public_key"] == str(kp.pubkey())
        assert str(kp.pubkey()) not in user["encrypted_key"]
        resolved = await wallets.resolve_signing_key("alice")
        assert resolved.pubkey() == kp.pubkey()

    async def test_import_key(self, wallets):
        kp = Keypair()
        user = await wallets.import_key("bob", base58.b58encode(bytes(kp)).decode())
        assert user["public_key"] == str(kp.pubkey())
        assert (await wallets.resolve_signing_key("bob")).pubkey() == kp.pubkey()

    async def test_import_replaces_wallet(self, wallets):
        await wallets.generate("bob")
        kp = Keypair()
        await wallets.import_key("bob", json.dumps(list(bytes(kp))))
        assert (await wallets.resolve_signing_key("bob")).pubkey() == kp.pubkey()

    async def test_import_invalid_key(self, storage, wallets):
        with pytest.raises(WalletError):
            await wallets.import_key("bob", "garbage")
        assert await storage.users.get("bob") is None

    async def test_unknown_user(self, wallets):
        assert await wallets.resolve_signing_key("nobody") is None

    async def test_wrong_encryption_key(self, storage, wallets):
        await wallets.generate("alice")
        other = WalletService(storage.users, WalletService.generate_encryption_key())
        assert await other.resolve_signing_key("alice") is None

    async def test_mismatched_public_key(self, storage, wallets):
        kp, user = await wallets.generate("alice")
        await storage.users.create("alice", str(Keypair().pubkey()), user["encrypted_key"])
        assert await wallets.resolve_signing_key("alice") is None

    async def test_encrypt_roundtrip(self, wallets):
        kp = Keypair()
        assert wallets.decrypt(wallets.encrypt(kp)).pubkey() == kp.pubkey()
