from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Boolean, ForeignKey
from datetime import datetime
from clausesync.database.database import Base

# Bumped whenever the stored clause row shape changes; decode_clause reads older rows
CLAUSE_SCHEMA_VERSION = 2


class AccountRecord(Base):
    """Credentials held by the identity provider"""
    __tablename__ = "accounts"

    uid = Column(String(36), primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserRecord(Base):
    """Profile row (role) for an account; the first profile ever created is the admin"""
    __tablename__ = "users"

    uid = Column(String(36), primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UserRecord(uid={self.uid}, email={self.email}, role={self.role})>"


class AuthSession(Base):
    """Bearer token issued on sign-in"""
    __tablename__ = "auth_sessions"

    token = Column(String(64), primary_key=True)
    uid = Column(String(36), ForeignKey("accounts.uid", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ContractRecord(Base):
    """Contract meta document: title, creator, creation time"""
    __tablename__ = "contracts"

    id = Column(String(255), primary_key=True, index=True)
    title = Column(String(500), nullable=False)
    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<ContractRecord(id={self.id}, title={self.title})>"


class ClauseRecord(Base):
    """One clause of a contract, keyed by its canonical clause key"""
    __tablename__ = "clauses"

    contract_id = Column(String(255), ForeignKey("contracts.id", ondelete="CASCADE"), primary_key=True)
    clause_key = Column(String(255), primary_key=True)

    number = Column(String(255), nullable=True, index=True)
    title = Column(Text, nullable=True)
    text = Column(Text, nullable=True)
    condition_type = Column(String(20), nullable=True)
    general_condition = Column(Text, nullable=True)
    particular_condition = Column(Text, nullable=True)

    comparison = Column(JSON, nullable=True)
    has_time_frame = Column(Boolean, nullable=True)
    time_frames = Column(JSON, nullable=True)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    schema_version = Column(Integer, default=CLAUSE_SCHEMA_VERSION, nullable=False)

    def __repr__(self):
        return f"<ClauseRecord(contract={self.contract_id}, key={self.clause_key})>"

    def to_dict(self):
        """Raw stored fields, before decoding"""
        return {
            "id": self.clause_key,
            "number": self.number,
            "title": self.title,
            "text": self.text,
            "condition_type": self.condition_type,
            "general_condition": self.general_condition,
            "particular_condition": self.particular_condition,
            "comparison": self.comparison,
            "has_time_frame": self.has_time_frame,
            "time_frames": self.time_frames,
            "schema_version": self.schema_version,
        }
