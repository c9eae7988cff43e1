import pytest

from idp.errors import Conflict, StoreConflict
from idp.schemas import Account, AuthenticatorDevice


def _account(account_id="acc-1", email="alice@example.com", hostname="idp.example") -> Account:
    return Account(
        account_id=account_id,
        email=email,
        name="Alice",
        hostname=hostname,
        avatar_url="https://avatars.example/alice.png",
    )


def _device(credential_id=b"cred-1", account_id="acc-1", counter=0) -> AuthenticatorDevice:
    return AuthenticatorDevice(
        credential_id=credential_id,
        account_id=account_id,
        public_key=b"\xa1\x01\x02",
        counter=counter,
        transports=["internal", "hybrid"],
    )


class TestAccounts:
    def test_lookup_by_email_is_per_realm(self, store):
        store.add_user(_account())
        store.add_user(_account(account_id="acc-2", hostname="idp2.example"))

        assert store.get_user("alice@example.com", "idp.example").account_id == "acc-1"
        assert store.get_user("alice@example.com", "idp2.example").account_id == "acc-2"
        assert store.get_user("alice@example.com", "elsewhere.example") is None

    def test_duplicate_email_in_realm_conflicts(self, store):
        store.add_user(_account())
        with pytest.raises(Conflict):
            store.add_user(_account(account_id="acc-2"))

    def test_missing_account_is_none(self, store):
        assert store.get_user_by_account_id("nope") is None

    def test_approved_clients_have_set_semantics(self, store):
        store.add_user(_account())

        store.add_approved_client("acc-1", "rp1")
        updated = store.add_approved_client("acc-1", "rp1")
        assert updated.approved_clients == {"rp1"}

        store.add_approved_client("acc-1", "rp2")
        updated = store.remove_approved_client("acc-1", "rp1")
        assert updated.approved_clients == {"rp2"}
        assert store.get_user_by_account_id("acc-1").approved_clients == {"rp2"}

    def test_approving_for_unknown_account(self, store):
        assert store.add_approved_client("nope", "rp1") is None

    def test_delete_user_removes_devices(self, store):
        store.add_user(_account())
        store.add_device("acc-1", _device())
        store.add_approved_client("acc-1", "rp1")

        store.delete_user("acc-1")

        assert store.get_user_by_account_id("acc-1") is None
        assert store.get_device(b"cred-1") is None


class TestDevices:
    def test_devices_by_account_and_by_id(self, store):
        store.add_user(_account())
        store.add_device("acc-1", _device(b"cred-1"))
        store.add_device("acc-1", _device(b"cred-2"))

        assert {d.credential_id for d in store.get_devices("acc-1")} == {b"cred-1", b"cred-2"}
        device = store.get_device(b"cred-2")
        assert device.account_id == "acc-1"
        assert device.transports == ["internal", "hybrid"]

    def test_credential_ids_are_unique(self, store):
        store.add_user(_account())
        store.add_device("acc-1", _device())
        with pytest.raises(StoreConflict):
            store.add_device("acc-1", _device())

    def test_update_counter(self, store):
        store.add_user(_account())
        store.add_device("acc-1", _device())

        store.update_counter(b"cred-1", 0, 7)

        assert store.get_device(b"cred-1").counter == 7

    def test_concurrent_counter_updates_do_not_regress(self, store):
        store.add_user(_account())
        store.add_device("acc-1", _device(counter=5))

        # two verifications both read 5; the slower one must not win
        store.update_counter(b"cred-1", 5, 9)
        with pytest.raises(StoreConflict):
            store.update_counter(b"cred-1", 5, 6)

        assert store.get_device(b"cred-1").counter == 9

    def test_update_counter_of_removed_device(self, store):
        with pytest.raises(StoreConflict) as excinfo:
            store.update_counter(b"gone", 0, 1)
        assert excinfo.value.message == "Authenticator was removed"

    def test_delete_device(self, store):
        store.add_user(_account())
        store.add_device("acc-1", _device())
        store.delete_device(b"cred-1")
        assert store.get_devices("acc-1") == []
