# humanity_link/store.py
"""
Confidential profile store.

ProfileStore owns validation, versioning and per-identity serialization; the
backends only load, save and remove whole records:

 - MemoryProfileStore     process-local dict
 - SqlProfileStore        SQLAlchemy, one transaction per mutation plus an audit row
 - DirectoryProfileStore  the identity directory's custom metadata, key "profile"
"""
import logging
import os
from dataclasses import replace
from typing import Any, Callable, Dict, Mapping, Optional, Union

from humanity_link.directory import MALFORMED, unusable
from humanity_link.domain import Profile, ProfileFields
from humanity_link.errors import ConfigurationError, NotFound, ValidationFailure
from humanity_link.utils import KeyedLock, as_utc, utcnow

logger = logging.getLogger(__name__)

PROFILE_STORE_BACKEND = os.environ.get("PROFILE_STORE_BACKEND", "sql")

# wire names, used when reporting the offending field
FIELD_NAMES = {
    "full_name": "fullName",
    "phone": "phone",
    "address": "address",
    "national_id": "nationalId",
}


def _text(fields: ProfileFields, attr: str, required: bool = True) -> Optional[str]:
    value = getattr(fields, attr)
    if value is None and not required:
        return None
    if not isinstance(value, str) or (required and not value.strip()):
        raise ValidationFailure(FIELD_NAMES[attr], f"{FIELD_NAMES[attr]} is required")
    return value.strip() or None


def validate_fields(fields: Union[ProfileFields, Mapping[str, Any]]) -> ProfileFields:
    if isinstance(fields, Mapping):
        fields = ProfileFields(
            full_name=fields.get("full_name"),
            phone=fields.get("phone"),
            address=fields.get("address"),
            national_id=fields.get("national_id"),
        )
    full_name = _text(fields, "full_name")
    phone = _text(fields, "phone")
    address = _text(fields, "address")
    national_id = _text(fields, "national_id", required=False)
    if len(full_name) < 2:
        raise ValidationFailure("fullName", "Name must be at least 2 characters")
    if len(phone) < 8:
        raise ValidationFailure("phone", "Phone number must be at least 8 characters")
    return ProfileFields(full_name, phone, address, national_id)


class ProfileStore:
    def __init__(self, clock: Callable = utcnow):
        self._clock = clock
        self._locks = KeyedLock()

    # backend hooks
    def _load(self, identity_id: str) -> Optional[Profile]:
        raise NotImplementedError

    def _save(self, profile: Profile, action: str) -> None:
        raise NotImplementedError

    def _remove(self, identity_id: str) -> bool:
        raise NotImplementedError

    def _write(self, identity_id: str, fields: ProfileFields, wallet_address: Optional[str],
               must_exist: bool) -> Profile:
        existing = self._load(identity_id)
        now = self._clock()
        if existing is None:
            if must_exist:
                raise NotFound("No existing data found to update")
            profile = Profile(
                identity_id=identity_id,
                wallet_address=wallet_address or "",
                full_name=fields.full_name,
                phone=fields.phone,
                address=fields.address,
                national_id=fields.national_id,
                version=1,
                stored_at=now,
                updated_at=now,
            )
            self._save(profile, "create_profile")
            logger.info(f"[STORE] Stored profile for identity {identity_id}")
        else:
            profile = replace(
                existing,
                full_name=fields.full_name,
                phone=fields.phone,
                address=fields.address,
                national_id=fields.national_id,
                version=existing.version + 1,
                updated_at=now,
            )
            self._save(profile, "update_profile")
            logger.info(f"[STORE] Updated profile for identity {identity_id} to version {profile.version}")
        return profile

    def create_or_update(self, identity_id: str, fields, wallet_address: Optional[str] = None) -> Profile:
        fields = validate_fields(fields)
        with self._locks.hold(identity_id):
            return self._write(identity_id, fields, wallet_address, must_exist=False)

    def update(self, identity_id: str, fields) -> Profile:
        fields = validate_fields(fields)
        with self._locks.hold(identity_id):
            return self._write(identity_id, fields, None, must_exist=True)

    def read(self, identity_id: str) -> Profile:
        with self._locks.hold(identity_id):
            profile = self._load(identity_id)
        if profile is None:
            raise NotFound("No data found for this wallet address")
        return profile

    def delete(self, identity_id: str) -> None:
        """Erase the profile. A second delete raises NotFound, the terminal erased state."""
        with self._locks.hold(identity_id):
            if not self._remove(identity_id):
                raise NotFound("No data found for this wallet address")
        logger.info(f"[STORE] Deleted profile for identity {identity_id}")


class MemoryProfileStore(ProfileStore):
    def __init__(self, clock: Callable = utcnow):
        super().__init__(clock)
        self._records: Dict[str, Profile] = {}

    def _load(self, identity_id):
        return self._records.get(identity_id)

    def _save(self, profile, action):
        self._records[profile.identity_id] = profile

    def _remove(self, identity_id):
        return self._records.pop(identity_id, None) is not None

    def __len__(self):
        return len(self._records)


class SqlProfileStore(ProfileStore):
    def __init__(self, session_factory=None, clock: Callable = utcnow):
        super().__init__(clock)
        if session_factory is None:
            from humanity_link.db import SessionLocal, init_db
            init_db()
            session_factory = SessionLocal
        self.session_factory = session_factory

    @staticmethod
    def _to_profile(record) -> Profile:
        return Profile(
            identity_id=record.identity_id,
            wallet_address=record.wallet_address,
            full_name=record.full_name,
            phone=record.phone,
            address=record.address,
            national_id=record.national_id,
            version=record.version,
            stored_at=as_utc(record.stored_at),
            updated_at=as_utc(record.updated_at),
        )

    def _load(self, identity_id):
        from humanity_link.models import ProfileRecord
        with self.session_factory() as db:
            record = db.get(ProfileRecord, identity_id)
            return self._to_profile(record) if record else None

    def _save(self, profile, action):
        from humanity_link.models import Audit, ProfileRecord
        with self.session_factory() as db:
            db.merge(ProfileRecord(
                identity_id=profile.identity_id,
                wallet_address=profile.wallet_address,
                full_name=profile.full_name,
                phone=profile.phone,
                address=profile.address,
                national_id=profile.national_id,
                version=profile.version,
                stored_at=profile.stored_at,
                updated_at=profile.updated_at,
            ))
            db.add(Audit(actor=profile.identity_id, action=action, target=profile.identity_id,
                         meta={"version": profile.version}))
            db.commit()

    def _remove(self, identity_id):
        from humanity_link.models import Audit, ProfileRecord
        with self.session_factory() as db:
            record = db.get(ProfileRecord, identity_id)
            if record is None:
                return False
            db.delete(record)
            db.add(Audit(actor=identity_id, action="delete_profile", target=identity_id))
            db.commit()
            return True


class DirectoryProfileStore(ProfileStore):
    """Profile kept in the directory's custom metadata; other metadata keys are preserved."""

    KEY = "profile"

    def __init__(self, directory, clock: Callable = utcnow):
        super().__init__(clock)
        self.directory = directory

    def _metadata(self, identity_id) -> Optional[Dict[str, Any]]:
        user = self.directory.get_user(identity_id)
        if user is None:
            return None
        metadata = user.get("custom_metadata") or {}
        if not isinstance(metadata, dict):
            raise unusable("get_user", "custom_metadata is not an object")
        return dict(metadata)

    def _load(self, identity_id):
        metadata = self._metadata(identity_id) or {}
        data = metadata.get(self.KEY)
        if not data:
            return None
        try:
            return Profile.from_dict(data)
        except MALFORMED as e:
            raise unusable("get_user", f"stored profile is malformed ({e!r})")

    def _save(self, profile, action):
        metadata = self._metadata(profile.identity_id)
        if metadata is None:
            raise NotFound(f"identity {profile.identity_id} is unknown to the directory")
        metadata[self.KEY] = profile.to_dict()
        self.directory.set_custom_metadata(profile.identity_id, metadata)

    def _remove(self, identity_id):
        metadata = self._metadata(identity_id)
        if not metadata or self.KEY not in metadata:
            return False
        del metadata[self.KEY]
        self.directory.set_custom_metadata(identity_id, metadata)
        return True


def make_store(backend: Optional[str] = None, directory=None) -> ProfileStore:
    backend = backend or PROFILE_STORE_BACKEND
    if backend == "sql":
        return SqlProfileStore()
    if backend == "memory":
        return MemoryProfileStore()
    if backend == "directory":
        if directory is None:
            raise ConfigurationError("directory backend needs an identity directory client")
        return DirectoryProfileStore(directory)
    raise ConfigurationError(f"unknown PROFILE_STORE_BACKEND {backend!r}")
