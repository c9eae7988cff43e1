import datetime

from sqlalchemy import Integer, String, LargeBinary, ForeignKey, DateTime, UniqueConstraint, func
from sqlalchemy.orm import relationship, Mapped, mapped_column
from .db import Base

class User(Base):
    __tablename__ = "users"
    # One account per email within a realm (the IDP hostname)
    __table_args__ = (UniqueConstraint("email", "hostname", name="uq_users_email_hostname"),)

    account_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    hostname: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str] = mapped_column(String(512), nullable=False)
    secret_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    registered_at: Mapped[datetime.datetime] = mapped_column(DateTime, server_default=func.now())
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    credentials = relationship("Credential", back_populates="user", cascade="all, delete-orphan")
    approvals = relationship("ApprovedClient", back_populates="user", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

class Credential(Base):
    __tablename__ = "credentials"
    credential_id: Mapped[bytes] = mapped_column(LargeBinary, primary_key=True)
    account_id: Mapped[str] = mapped_column(ForeignKey("users.account_id"), index=True, nullable=False)
    public_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)  # COSE key, CBOR encoded
    sign_count: Mapped[int] = mapped_column(Integer, default=0)
    aaguid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transports: Mapped[str | None] = mapped_column(String(255), nullable=True)  # comma-separated
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    user = relationship("User", back_populates="credentials")

    __mapper_args__ = {"version_id_col": version}

class ApprovedClient(Base):
    __tablename__ = "approved_clients"
    __table_args__ = (UniqueConstraint("account_id", "client_id", name="uq_approved_clients"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[str] = mapped_column(ForeignKey("users.account_id"), index=True, nullable=False)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)

    user = relationship("User", back_populates="approvals")
