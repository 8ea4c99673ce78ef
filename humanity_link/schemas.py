# humanity_link/schemas.py
from pydantic import BaseModel
from typing import Optional

from humanity_link.domain import ProfileFields


class AttestIn(BaseModel):
    birthYear: int


class AttestOut(BaseModel):
    success: bool = True
    verdict: bool
    currentYear: int
    message: str


class PIIData(BaseModel):
    fullName: str
    phone: str
    address: str
    nationalId: Optional[str] = None

    def to_fields(self) -> ProfileFields:
        return ProfileFields(
            full_name=self.fullName,
            phone=self.phone,
            address=self.address,
            national_id=self.nationalId,
        )


class ProfileIn(BaseModel):
    walletAddress: str
    piiData: PIIData
    subjectHint: Optional[str] = None


class ProfileData(BaseModel):
    identityId: str
    walletAddress: str
    fullName: str
    phone: str
    address: str
    nationalId: Optional[str] = None
    version: int
    storedAt: str
    updatedAt: str


class ProfileOut(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: ProfileData
