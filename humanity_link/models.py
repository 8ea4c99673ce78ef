# humanity_link/models.py
from sqlalchemy import Column, String, DateTime, Integer, JSON
import datetime
import uuid
from humanity_link.db import Base


def gen_uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


class ProfileRecord(Base):
    __tablename__ = "profiles"
    identity_id = Column(String, primary_key=True)
    wallet_address = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    address = Column(String, nullable=False)
    national_id = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    stored_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Audit(Base):
    __tablename__ = "audit"
    event_id = Column(String, primary_key=True, default=gen_uuid)
    actor = Column(String)
    action = Column(String)
    target = Column(String)  # identity id, never profile content
    ts = Column(DateTime(timezone=True), default=utcnow)
    meta = Column(JSON, default=dict)
