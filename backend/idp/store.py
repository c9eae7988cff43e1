"""Credential store: accounts and their authenticator devices.

Accounts are partitioned by realm (the IDP hostname). Lookups that find
nothing return ``None``; write races surface as ``StoreConflict`` so callers
can retry instead of overwriting.
"""
import abc
import datetime
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .db import session_scope
from .errors import Conflict, StoreConflict
from .models import ApprovedClient, Credential, User
from .schemas import Account, AuthenticatorDevice

logger = logging.getLogger(__name__)

class CredentialStore(abc.ABC):
    @abc.abstractmethod
    def get_user(self, email: str, realm: str) -> Account | None: ...

    @abc.abstractmethod
    def get_user_by_account_id(self, account_id: str) -> Account | None: ...

    @abc.abstractmethod
    def add_user(self, account: Account) -> None: ...

    @abc.abstractmethod
    def delete_user(self, account_id: str) -> None: ...

    @abc.abstractmethod
    def add_approved_client(self, account_id: str, client_id: str) -> Account | None: ...

    @abc.abstractmethod
    def remove_approved_client(self, account_id: str, client_id: str) -> Account | None: ...

    @abc.abstractmethod
    def add_device(self, account_id: str, device: AuthenticatorDevice) -> None: ...

    @abc.abstractmethod
    def get_devices(self, account_id: str) -> list[AuthenticatorDevice]: ...

    @abc.abstractmethod
    def get_device(self, credential_id: bytes) -> AuthenticatorDevice | None: ...

    @abc.abstractmethod
    def update_counter(self, credential_id: bytes, expected: int, counter: int) -> None: ...

    @abc.abstractmethod
    def delete_device(self, credential_id: bytes) -> None: ...

def _account_from_db(user: User) -> Account:
    return Account(
        account_id=user.account_id,
        email=user.email,
        name=user.name,
        hostname=user.hostname,
        avatar_url=user.avatar_url,
        secret_hash=user.secret_hash,
        approved_clients={a.client_id for a in user.approvals},
    )

def _device_from_db(cred: Credential) -> AuthenticatorDevice:
    return AuthenticatorDevice(
        credential_id=cred.credential_id,
        account_id=cred.account_id,
        public_key=cred.public_key,
        counter=cred.sign_count,
        aaguid=cred.aaguid,
        transports=[t for t in (cred.transports or "").split(",") if t],
    )

class SqlCredentialStore(CredentialStore):
    """SQLAlchemy-backed store; every call runs in its own transaction."""

    def __init__(self, scope=session_scope):
        self._scope = scope

    def _user_row(self, db: Session, account_id: str) -> User | None:
        return db.get(User, account_id)

    def get_user(self, email: str, realm: str) -> Account | None:
        with self._scope() as db:
            user = db.scalars(select(User).where(User.email == email, User.hostname == realm)).one_or_none()
            return _account_from_db(user) if user else None

    def get_user_by_account_id(self, account_id: str) -> Account | None:
        with self._scope() as db:
            user = self._user_row(db, account_id)
            return _account_from_db(user) if user else None

    def add_user(self, account: Account) -> None:
        try:
            with self._scope() as db:
                user = User(
                    account_id=account.account_id,
                    email=account.email,
                    hostname=account.hostname,
                    name=account.name,
                    avatar_url=account.avatar_url,
                    secret_hash=account.secret_hash,
                )
                user.approvals = [ApprovedClient(client_id=c) for c in sorted(account.approved_clients)]
                db.add(user)
        except IntegrityError as exc:
            logger.warning("Duplicate account for %s on %s: %s", account.email, account.hostname, exc.orig)
            raise Conflict() from exc

    def delete_user(self, account_id: str) -> None:
        with self._scope() as db:
            user = self._user_row(db, account_id)
            if user is not None:
                # devices and approvals go with the account (delete-orphan cascade)
                db.delete(user)

    def _change_approvals(self, account_id: str, client_id: str, add: bool) -> Account | None:
        try:
            with self._scope() as db:
                user = self._user_row(db, account_id)
                if user is None:
                    return None
                current = {a.client_id: a for a in user.approvals}
                if add and client_id not in current:
                    user.approvals.append(ApprovedClient(client_id=client_id))
                elif not add and client_id in current:
                    user.approvals.remove(current[client_id])
                db.flush()
                return _account_from_db(user)
        except (IntegrityError, StaleDataError) as exc:
            # another request changed the same approvals first
            raise StoreConflict() from exc

    def add_approved_client(self, account_id: str, client_id: str) -> Account | None:
        return self._change_approvals(account_id, client_id, add=True)

    def remove_approved_client(self, account_id: str, client_id: str) -> Account | None:
        return self._change_approvals(account_id, client_id, add=False)

    def add_device(self, account_id: str, device: AuthenticatorDevice) -> None:
        try:
            with self._scope() as db:
                db.add(
                    Credential(
                        credential_id=device.credential_id,
                        account_id=account_id,
                        public_key=device.public_key,
                        sign_count=device.counter,
                        aaguid=device.aaguid,
                        transports=",".join(device.transports),
                    )
                )
        except IntegrityError as exc:
            raise StoreConflict("Authenticator is already registered") from exc

    def get_devices(self, account_id: str) -> list[AuthenticatorDevice]:
        with self._scope() as db:
            creds = db.scalars(select(Credential).where(Credential.account_id == account_id)).all()
            return [_device_from_db(c) for c in creds]

    def get_device(self, credential_id: bytes) -> AuthenticatorDevice | None:
        with self._scope() as db:
            cred = db.get(Credential, credential_id)
            return _device_from_db(cred) if cred else None

    def update_counter(self, credential_id: bytes, expected: int, counter: int) -> None:
        """Compare-and-set: the write only lands if the counter is still ``expected``."""
        with self._scope() as db:
            result = db.execute(
                update(Credential)
                .where(Credential.credential_id == credential_id, Credential.sign_count == expected)
                .values(
                    sign_count=counter,
                    last_used_at=datetime.datetime.now(datetime.timezone.utc),
                    version=Credential.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return
            if db.get(Credential, credential_id) is None:
                raise StoreConflict("Authenticator was removed")
        logger.warning("Signature counter of credential changed since it was read (expected %d)", expected)
        raise StoreConflict()

    def delete_device(self, credential_id: bytes) -> None:
        with self._scope() as db:
            cred = db.get(Credential, credential_id)
            if cred is not None:
                db.delete(cred)
