from pydantic import BaseModel
from typing import Optional
from datetime import date, datetime

from admission_desk.models.application import Address, ClassName, Gender


class Student(BaseModel):
    id: str
    admission_number: str
    application_id: str

    first_name: str
    last_name: str
    date_of_birth: date
    gender: Gender
    class_name: ClassName
    section: str
    roll_number: Optional[str] = None
    photo: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    # Guardian fields copied from the application at promotion
    father_name: str
    father_phone: str
    father_occupation: Optional[str] = None
    mother_name: str
    mother_phone: Optional[str] = None
    mother_occupation: Optional[str] = None
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    guardian_relation: Optional[str] = None

    address: Address
    previous_school: Optional[str] = None
    academic_year: str
    is_active: bool = True
    created_at: datetime
