from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
from typing import Optional
from datetime import date, datetime
from enum import Enum


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class ClassName(str, Enum):
    NURSERY = "Nursery"
    LKG = "LKG"
    UKG = "UKG"
    I = "I"
    II = "II"
    III = "III"
    IV = "IV"
    V = "V"
    VI = "VI"
    VII = "VII"
    VIII = "VIII"
    IX = "IX"
    X = "X"


PHONE_DIGITS = 10
PINCODE_DIGITS = 6


def _digits(value: str, length: int, label: str) -> str:
    cleaned = value.strip()
    if not cleaned.isdigit() or len(cleaned) != length:
        raise ValueError(f"{label} must be exactly {length} digits")
    return cleaned


class Address(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    street: str
    city: str
    state: str
    pincode: str

    @field_validator("street", "city", "state")
    @classmethod
    def not_blank(cls, v):
        if not v:
            raise ValueError("This field is required")
        return v

    @field_validator("pincode")
    @classmethod
    def pincode_shape(cls, v):
        return _digits(v, PINCODE_DIGITS, "Pincode")


class ApplicationCreate(BaseModel):
    """Public admission form. Unknown keys are rejected."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    first_name: str
    last_name: str
    date_of_birth: date
    gender: Gender
    class_applied: ClassName

    father_name: str
    father_phone: str
    father_email: Optional[EmailStr] = None
    father_occupation: Optional[str] = None
    mother_name: str
    mother_phone: Optional[str] = None
    mother_email: Optional[EmailStr] = None
    mother_occupation: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    guardian_relation: Optional[str] = None

    address: Address
    previous_school: Optional[str] = None

    @field_validator("first_name", "last_name", "father_name", "mother_name")
    @classmethod
    def name_not_blank(cls, v):
        if not v:
            raise ValueError("This field is required")
        return v

    @field_validator("father_phone")
    @classmethod
    def required_phone_shape(cls, v):
        return _digits(v, PHONE_DIGITS, "Phone number")

    @field_validator("mother_phone", "guardian_phone")
    @classmethod
    def optional_phone_shape(cls, v):
        if v is None or v == "":
            return None
        return _digits(v, PHONE_DIGITS, "Phone number")

    @field_validator("date_of_birth")
    @classmethod
    def born_in_past(cls, v):
        if v >= date.today():
            raise ValueError("Date of birth must be in the past")
        return v


class Application(ApplicationCreate):
    """Stored application record."""
    model_config = ConfigDict(extra="ignore")

    id: str
    application_number: str
    photo: Optional[str] = None
    academic_year: str
    status: ApplicationStatus = ApplicationStatus.PENDING
    rejection_remarks: Optional[str] = None
    created_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None

    # Stored records were validated at intake
    @field_validator("date_of_birth")
    @classmethod
    def born_in_past(cls, v):
        return v


class SubmissionReceipt(BaseModel):
    id: str
    application_number: str
    status: ApplicationStatus


class ApproveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    section: Optional[str] = None
    roll_number: Optional[str] = None


class RejectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    remarks: Optional[str] = None


class ApplicationStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int


class ApplicationPage(BaseModel):
    total: int
    count: int
    page: int
    limit: int
    applications: list[Application]
