from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from typing import Optional
import json

from admission_desk.core.errors import ValidationError
from admission_desk.core.security import get_current_admin
from admission_desk.core.services import AdmissionServices, get_services
from admission_desk.models.application import (
    Application,
    ApplicationPage,
    ApplicationStats,
    ApproveRequest,
    ClassName,
    RejectRequest,
    SubmissionReceipt,
)
from admission_desk.services.photo_storage import PhotoUpload

router = APIRouter()


@router.post("", response_model=SubmissionReceipt, status_code=status.HTTP_201_CREATED)
def submit_application(
    data: str = Form(...),
    photo: Optional[UploadFile] = File(None),
    services: AdmissionServices = Depends(get_services),
):
    """
    Public admission form.
    `data` is the JSON encoded form, `photo` an optional image upload.
    """
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        raise ValidationError({"data": "Application data must be valid JSON"})

    upload = None
    if photo is not None and photo.filename:
        upload = PhotoUpload(
            filename=photo.filename,
            content_type=photo.content_type or "",
            content=photo.file.read(),
        )

    application = services.intake.submit(payload, upload)
    return SubmissionReceipt(
        id=application.id,
        application_number=application.application_number,
        status=application.status,
    )


@router.get("", response_model=ApplicationPage)
def list_applications(
    status: Optional[str] = None,
    class_applied: Optional[ClassName] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    """Review queue, newest first. status: pending | approved | rejected | all"""
    return services.queries.page(status=status, class_applied=class_applied, page=page, limit=limit)


@router.get("/stats", response_model=ApplicationStats)
def application_stats(
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    return services.queries.statistics()


@router.get("/{application_id}", response_model=Application)
def get_application(
    application_id: str,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    return services.queries.get(application_id)


@router.put("/{application_id}/approve")
def approve_application(
    application_id: str,
    body: Optional[ApproveRequest] = None,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    """Approve a pending application and enroll the student in one step."""
    body = body or ApproveRequest()
    student = services.decisions.approve(
        application_id,
        section=body.section,
        roll_number=body.roll_number,
        decided_by=current_admin["user_id"],
    )
    return {
        "message": "Admission approved successfully",
        "student": student.model_dump(mode="json"),
    }


@router.put("/{application_id}/reject")
def reject_application(
    application_id: str,
    body: Optional[RejectRequest] = None,
    current_admin: dict = Depends(get_current_admin),
    services: AdmissionServices = Depends(get_services),
):
    application = services.decisions.reject(
        application_id,
        decided_by=current_admin["user_id"],
        remarks=body.remarks if body else None,
    )
    return {
        "message": "Admission rejected",
        "application": application.model_dump(mode="json"),
    }
