"""
Signing backend selection, operator key and authorization statement tests
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from emailpay.core.users.models import WalletUser, HOT_WALLET_SENTINEL
from emailpay.services.assets import get_asset
from emailpay.services.chain import build_transfer_payload
from emailpay.services.custody_client import CustodyError
from emailpay.services.errors import ConfigurationError, ExecutionErrorKind
from emailpay.services.signing import (
    CustodySessionBackend,
    HotWalletBackend,
    OperatorAccount,
    SigningBackendSelector,
    SigningError,
    load_operator_account,
)
from emailpay.services.signing.auth_statement import AuthStatement

from tests.conftest import OPERATOR_ADDRESS
from tests.fakes import FakeCustodyClient


@pytest.fixture
def selector(operator, fake_chain, fake_custody, settings):
    return SigningBackendSelector(operator=operator, chain=fake_chain, settings=settings, custody=fake_custody)


def _user(email, signing_backend_id, address, public_key="0x04" + "11" * 64):
    user = WalletUser(email=email, verified=True)
    user.assign_wallet(public_key=public_key, address=address, signing_backend_id=signing_backend_id)
    return user


def _payload(settings, asset="ETH", amount="0.5"):
    return build_transfer_payload(
        get_asset(asset, settings),
        "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
        Decimal(amount),
        settings.CHAIN_ID,
    )


class TestOperatorAccount:
    def test_derives_address_and_public_key(self, operator):
        assert operator.address == OPERATOR_ADDRESS
        assert operator.public_key.startswith("0x04")
        assert len(operator.public_key) == 2 + 2 + 128

    @pytest.mark.parametrize("key", ["", "0x1234", "ac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80", "0x" + "zz" * 32])
    def test_rejects_malformed_key(self, key):
        with pytest.raises(ConfigurationError):
            OperatorAccount(key)

    def test_load_requires_configured_key(self, settings):
        unset = settings.model_copy(update={"HOT_WALLET_PRIVATE_KEY": None})
        with pytest.raises(ConfigurationError, match="not configured"):
            load_operator_account(unset)

    def test_sign_message_recovers_to_operator(self, operator):
        signature = operator.sign_message("hello")
        recovered = Account.recover_message(encode_defunct(text="hello"), signature=signature)
        assert recovered == operator.address


class TestSelector:
    def test_hot_wallet_sentinel_selects_hot_wallet(self, selector, operator):
        backend = selector.select(_user("a@x.com", HOT_WALLET_SENTINEL, operator.address.lower()))

        assert isinstance(backend, HotWalletBackend)
        assert backend.address == operator.address

    def test_hot_wallet_address_mismatch(self, selector, fake_chain):
        user = _user("a@x.com", HOT_WALLET_SENTINEL, "0x70997970C51812dc3A010C7d01b50e0d17dc79C8")

        with pytest.raises(SigningError) as exc_info:
            selector.select(user)

        assert exc_info.value.kind == ExecutionErrorKind.ADDRESS_MISMATCH
        assert "Hot wallet address mismatch" in exc_info.value.message
        assert fake_chain.prepared == []

    def test_short_credential_is_test_only(self, selector, fake_custody):
        user = _user("a@x.com", "0x1234", "0x70997970C51812dc3A010C7d01b50e0d17dc79C8")

        with pytest.raises(SigningError) as exc_info:
            selector.select(user)

        assert exc_info.value.kind == ExecutionErrorKind.TEST_ONLY_CREDENTIAL
        assert not exc_info.value.retryable
        assert fake_custody.session_requests == []

    def test_prefix_does_not_count_toward_credential_length(self, selector):
        # 64 characters with the prefix, only 62 hex digits
        user = _user("a@x.com", "0x" + "ab" * 31, "0x70997970C51812dc3A010C7d01b50e0d17dc79C8")

        with pytest.raises(SigningError) as exc_info:
            selector.select(user)

        assert exc_info.value.kind == ExecutionErrorKind.TEST_ONLY_CREDENTIAL

    def test_full_credential_selects_custody(self, selector):
        token_id = "0x" + "ab" * 32
        backend = selector.select(_user("a@x.com", token_id, "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"))

        assert isinstance(backend, CustodySessionBackend)
        assert backend.resource_id == token_id
        assert backend.address == "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

    def test_custody_without_client_is_configuration_error(self, operator, fake_chain, settings):
        selector = SigningBackendSelector(operator=operator, chain=fake_chain, settings=settings)

        with pytest.raises(SigningError) as exc_info:
            selector.select(_user("a@x.com", "0x" + "ab" * 32, "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"))

        assert exc_info.value.kind == ExecutionErrorKind.CONFIGURATION


class TestHotWalletBackend:
    def test_signs_and_broadcasts(self, operator, fake_chain, settings):
        backend = HotWalletBackend(operator, fake_chain)

        tx_hash = backend.send_transaction(_payload(settings))

        assert tx_hash.startswith("0x") and len(tx_hash) == 66
        assert len(fake_chain.broadcast) == 1
        payload, sender = fake_chain.prepared[0]
        assert sender == operator.address
        assert payload.value == 5 * 10**17


class TestCustodySessionBackend:
    @pytest.fixture
    def backend(self, operator, fake_chain, fake_custody, settings, clock):
        return CustodySessionBackend(
            operator=operator,
            custody=fake_custody,
            chain=fake_chain,
            settings=settings,
            resource_id="0x" + "ab" * 32,
            public_key="0x04" + "11" * 64,
            address="0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
            clock=clock,
        )

    def test_fresh_session_per_transaction(self, backend, fake_custody, fake_chain, settings, operator):
        backend.send_transaction(_payload(settings))
        backend.send_transaction(_payload(settings, "PYUSD", "3"))

        assert len(fake_custody.session_requests) == 2
        first, second = fake_custody.session_requests
        assert first["auth_sig"]["signedMessage"] != second["auth_sig"]["signedMessage"]

        auth_sig = first["auth_sig"]
        assert auth_sig["address"] == operator.address
        assert auth_sig["derivedVia"] == "web3.eth.personal.sign"
        recovered = Account.recover_message(encode_defunct(text=auth_sig["signedMessage"]), signature=auth_sig["sig"])
        assert recovered == operator.address
        assert first["resource_id"] == "0x" + "ab" * 32

        # Signed transactions come back from the custody network and are broadcast as is
        assert fake_chain.broadcast == [FakeCustodyClient.SIGNED_TX, FakeCustodyClient.SIGNED_TX]
        assert fake_chain.prepared[0][1] == "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

    def test_session_expiry_follows_ttl(self, backend, fake_custody, settings, clock):
        backend.send_transaction(_payload(settings))

        expiration = fake_custody.session_requests[0]["expiration"]
        assert (expiration - clock()).total_seconds() == settings.CUSTODY_SESSION_TTL_HOURS * 3600

    def test_custody_failure_is_retryable_signing_error(self, backend, fake_custody, fake_chain, settings):
        fake_custody.session_error = CustodyError("Custody gateway returned HTTP 503", status_code=503)

        with pytest.raises(SigningError) as exc_info:
            backend.send_transaction(_payload(settings))

        assert exc_info.value.kind == ExecutionErrorKind.CUSTODY_SESSION
        assert exc_info.value.retryable
        assert fake_chain.broadcast == []


class TestAuthStatement:
    def test_message_format(self):
        statement = AuthStatement(
            domain="emailpay.app",
            address=OPERATOR_ADDRESS,
            uri="https://emailpay.app",
            chain_id=11155111,
            issued_at=datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc),
            expiration_time=datetime(2026, 1, 15, 13, 0, tzinfo=timezone.utc),
            statement="Authorize a session.",
            nonce="abc123",
            resources=["lit-pkp://0xabc"],
        )

        assert statement.prepare_message() == "\n".join([
            "emailpay.app wants you to sign in with your Ethereum account:",
            OPERATOR_ADDRESS,
            "",
            "Authorize a session.",
            "",
            "URI: https://emailpay.app",
            "Version: 1",
            "Chain ID: 11155111",
            "Nonce: abc123",
            "Issued At: 2026-01-15T12:00:00.000Z",
            "Expiration Time: 2026-01-15T13:00:00.000Z",
            "Resources:",
            "- lit-pkp://0xabc",
        ])

    def test_nonce_is_random(self):
        now = datetime(2026, 1, 15, tzinfo=timezone.utc)
        a = AuthStatement("d", OPERATOR_ADDRESS, "u", 1, now, now)
        b = AuthStatement("d", OPERATOR_ADDRESS, "u", 1, now, now)
        assert a.nonce != b.nonce
