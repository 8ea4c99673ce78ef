# humanity_link/domain.py
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from humanity_link.errors import InvalidInput

U16_MAX = 65535


@dataclass(frozen=True)
class AttestationRequest:
    """Inputs of the threshold predicate, in the order the circuit takes them."""
    private_attribute: int
    reference_value: int
    threshold: int

    def validate(self) -> None:
        for name in ("private_attribute", "reference_value", "threshold"):
            value = getattr(self, name)
            # bool is an int subclass but never a valid circuit input
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInput(f"{name} must be an integer")
            if not 0 <= value <= U16_MAX:
                raise InvalidInput(f"{name} must be between 0 and {U16_MAX}")


@dataclass(frozen=True)
class AttestationResult:
    verdict: bool
    reference_value: int
    raw_output: str


@dataclass(frozen=True)
class Identity:
    identity_id: str
    wallet_address: str
    created_at: datetime


@dataclass(frozen=True)
class ProfileFields:
    full_name: str
    phone: str
    address: str
    national_id: Optional[str] = None


@dataclass(frozen=True)
class Profile:
    identity_id: str
    wallet_address: str
    full_name: str
    phone: str
    address: str
    national_id: Optional[str]
    version: int
    stored_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identityId": self.identity_id,
            "walletAddress": self.wallet_address,
            "fullName": self.full_name,
            "phone": self.phone,
            "address": self.address,
            "nationalId": self.national_id,
            "version": self.version,
            "storedAt": self.stored_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        return cls(
            identity_id=data["identityId"],
            wallet_address=data["walletAddress"],
            full_name=data["fullName"],
            phone=data["phone"],
            address=data["address"],
            national_id=data.get("nationalId"),
            version=int(data["version"]),
            stored_at=datetime.fromisoformat(data["storedAt"]),
            updated_at=datetime.fromisoformat(data["updatedAt"]),
        )

    def fields(self) -> ProfileFields:
        return ProfileFields(self.full_name, self.phone, self.address, self.national_id)
