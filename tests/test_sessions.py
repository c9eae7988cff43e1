from idp.schemas import Account
from idp.sessions import CeremonySession, PendingAuthorization


def _account(**overrides) -> Account:
    values = dict(
        account_id="acc-1",
        email="alice@example.com",
        name="Alice",
        hostname="idp.example",
        avatar_url="https://avatars.example/alice.png",
    )
    values.update(overrides)
    return Account(**values)


class TestCeremonyState:
    def test_registration_is_taken_once(self):
        session = CeremonySession().begin_registration(_account(), "challenge-1")

        pending, cleared = session.take_registration()
        assert pending.challenge == "challenge-1"
        assert pending.candidate.email == "alice@example.com"
        assert cleared.current_challenge is None
        assert cleared.passkey_registration is None

        again, _ = cleared.take_registration()
        assert again is None

    def test_transitions_do_not_mutate(self):
        session = CeremonySession()
        started = session.begin_authentication("challenge-1", "alice@example.com")
        assert session.current_challenge is None
        assert started.current_challenge == "challenge-1"

    def test_new_ceremony_supersedes_pending_one(self):
        session = CeremonySession().begin_registration(_account(), "challenge-1")
        session = session.begin_authentication("challenge-2", None)

        registration, session_after = session.take_registration()
        assert registration is None
        # taking clears everything, including the authentication ceremony
        authentication, _ = session_after.take_authentication()
        assert authentication is None

    def test_authentication_without_hint(self):
        session = CeremonySession().begin_authentication("challenge-1", None)
        pending, cleared = session.take_authentication()
        assert pending.challenge == "challenge-1"
        assert pending.email is None
        assert cleared.ceremony is None


class TestLoginState:
    def test_log_in_keeps_a_snapshot_without_secret(self):
        account = _account(secret_hash="$2b$12$hash")
        session = CeremonySession().log_in(account, now=1000.0, lifetime=300)

        assert session.is_logged_in
        assert session.logged_in_user.account_id == "acc-1"
        assert session.logged_in_user.secret_hash is None
        assert session.login_session_expiration == 1300.0

    def test_login_expires_lazily(self):
        session = CeremonySession().log_in(_account(), now=1000.0, lifetime=300)
        assert session.expire_if_needed(1299.0) is session
        assert not session.expire_if_needed(1300.0).is_logged_in

    def test_out_of_band_expiry(self):
        session = CeremonySession().log_in(_account(), now=1000.0, lifetime=300)
        session = session.expire_out_of_band(1100.0)
        assert session.is_logged_in
        assert not session.expire_if_needed(1100.5).is_logged_in

    def test_log_out_drops_pending_authorization(self):
        session = CeremonySession().log_in(_account(), now=0, lifetime=300)
        session = session.with_authorization(
            PendingAuthorization(client_id="rp1", account_id="acc-1", scopes=["calendar"])
        )
        assert session.log_out().pending_authorization is None

    def test_round_trips_through_json(self):
        session = (
            CeremonySession()
            .log_in(_account(approved_clients={"rp2", "rp1"}), now=0, lifetime=300)
            .begin_registration(_account(account_id="acc-2", email="bob@example.com"), "c")
        )
        restored = CeremonySession.model_validate_json(session.model_dump_json())
        assert restored == session
        assert restored.logged_in_user.approved_clients == {"rp1", "rp2"}
