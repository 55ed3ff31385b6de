from fastapi import APIRouter, Depends
from typing import List, Optional

from admission_desk.core.security import get_current_admin
from admission_desk.core.services import AdmissionServices, get_services
from admission_desk.models.application import ClassName
from admission_desk.models.student import Student

router = APIRouter()


@router.get("", response_model=List[Student])
def list_students(
    class_name: Optional[ClassName] = None,
    section: Optional[str] = None,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    return services.students.list(class_name=class_name, section=section)


@router.get("/by-application/{application_id}", response_model=Student)
def get_student_for_application(
    application_id: str,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    return services.students.get_by_application(application_id)


@router.get("/{student_id}", response_model=Student)
def get_student(
    student_id: str,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    return services.students.get(student_id)
