from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from schoolhub.core.errors import DomainError
from schoolhub.core.identity import IdentityProvider
from schoolhub.core.router_guard import domain_http_error, require_identity
from schoolhub.db import get_db
from schoolhub.route_logging import EndpointNameRoute
from schoolhub.schemas import StudentAssignClassRequest, StudentCreateRequest, StudentDeactivateRequest
from schoolhub.services.enrollment_service import EnrollmentService, serialize_student


router = APIRouter(prefix='/api/students', tags=['Students'], route_class=EndpointNameRoute)


def _service(db: Session, identity: IdentityProvider) -> EnrollmentService:
    return EnrollmentService(db, identity)


@router.get('')
def list_students(
    status: str | None = Query(default=None),
    class_id: int | None = Query(default=None),
    parent_id: int | None = Query(default=None),
    unassigned: bool = Query(default=False),
    search: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    service = _service(db, identity)
    try:
        rows, total = service.list_students(
            status=status,
            class_id=class_id,
            parent_id=parent_id,
            unassigned=unassigned,
            search=search,
            limit=limit,
            offset=offset,
        )
        counts = service.count_students_by_status()
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return {
        'items': [serialize_student(row) for row in rows],
        'total': total,
        'limit': limit,
        'offset': offset,
        'counts': counts,
    }


@router.post('', status_code=201)
def create_student(
    payload: StudentCreateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).create_student(payload.model_dump())
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_student(row)


@router.get('/{student_id}')
def get_student(student_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        row = _service(db, identity).get_student(student_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_student(row)


@router.post('/{student_id}/admit')
def admit_student(student_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        row = _service(db, identity).admit_student(student_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_student(row)


@router.post('/{student_id}/assign-class')
def assign_student_class(
    student_id: int,
    payload: StudentAssignClassRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).assign_student_to_class(student_id, payload.class_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_student(row)


@router.post('/{student_id}/unassign-class')
def unassign_student_class(student_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        row = _service(db, identity).unassign_student_from_class(student_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_student(row)


@router.post('/{student_id}/deactivate')
def deactivate_student(
    student_id: int,
    payload: StudentDeactivateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).deactivate_student(student_id, payload.status)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_student(row)
