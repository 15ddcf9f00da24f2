from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from schoolhub.core.errors import DomainError
from schoolhub.core.identity import IdentityProvider
from schoolhub.core.router_guard import domain_http_error, require_identity
from schoolhub.db import get_db
from schoolhub.route_logging import EndpointNameRoute
from schoolhub.schemas import (
    ClassCreateRequest,
    ClassUpdateRequest,
    GradeCreateRequest,
    StudentBulkAssignRequest,
    TeacherAssignRequest,
    TeacherRoleUpdateRequest,
)
from schoolhub.services.class_roster_service import ClassRosterService, serialize_class, serialize_grade
from schoolhub.services.enrollment_service import EnrollmentService, serialize_student


router = APIRouter(prefix='/api', tags=['Classes'], route_class=EndpointNameRoute)


def _service(db: Session, identity: IdentityProvider) -> ClassRosterService:
    return ClassRosterService(db, identity)


@router.get('/grades')
def list_grades(db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        rows = _service(db, identity).list_grades()
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return [serialize_grade(row) for row in rows]


@router.post('/grades', status_code=201)
def create_grade(
    payload: GradeCreateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).create_grade(payload.name, payload.display_order)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_grade(row)


@router.get('/classes')
def list_classes(
    status: str | None = Query(default=None),
    grade_id: int | None = Query(default=None),
    teacher_id: int | None = Query(default=None),
    unassigned: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        rows, total = _service(db, identity).list_classes(
            status=status,
            grade_id=grade_id,
            teacher_id=teacher_id,
            unassigned=unassigned,
            limit=limit,
            offset=offset,
        )
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return {'items': [serialize_class(row) for row in rows], 'total': total, 'limit': limit, 'offset': offset}


@router.post('/classes', status_code=201)
def create_class(
    payload: ClassCreateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).create_class(payload.model_dump())
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_class(row)


@router.get('/classes/options')
def class_options(db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        return _service(db, identity).class_options()
    except DomainError as exc:
        raise domain_http_error(exc) from exc


@router.get('/classes/workload')
def teacher_workload(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        return _service(db, identity).teacher_workload(include_inactive=include_inactive)
    except DomainError as exc:
        raise domain_http_error(exc) from exc


@router.get('/classes/{class_id}')
def get_class(class_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        row = _service(db, identity).get_class(class_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_class(row)


@router.patch('/classes/{class_id}')
def update_class(
    class_id: int,
    payload: ClassUpdateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row, warnings = _service(db, identity).update_class(class_id, payload.model_dump(exclude_unset=True))
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return {'class': serialize_class(row), 'warnings': warnings}


@router.post('/classes/{class_id}/deactivate')
def deactivate_class(class_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        row = _service(db, identity).deactivate_class(class_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_class(row)


@router.post('/classes/{class_id}/activate')
def activate_class(class_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        row = _service(db, identity).activate_class(class_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_class(row)


@router.get('/classes/{class_id}/teachers')
def list_class_teachers(class_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        row = _service(db, identity).get_class(class_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_class(row)['teachers']


@router.post('/classes/{class_id}/teachers')
def assign_class_teacher(
    class_id: int,
    payload: TeacherAssignRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).assign_teacher(class_id, payload.teacher_id, payload.role)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_class(row)


@router.patch('/classes/{class_id}/teachers')
def update_class_teacher_role(
    class_id: int,
    payload: TeacherRoleUpdateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).update_teacher_role(class_id, payload.teacher_id, payload.role)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_class(row)


@router.delete('/classes/{class_id}/teachers')
def remove_class_teacher(
    class_id: int,
    teacher_id: int = Query(...),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    try:
        row = _service(db, identity).remove_teacher(class_id, teacher_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return serialize_class(row)


def _roster_payload(target, students) -> dict:
    return {
        'class': {
            'id': target.id,
            'name': target.name,
            'grade_id': target.grade_id,
            'grade_name': target.grade_name,
            'capacity': target.capacity,
            'enrolled': target.enrolled,
        },
        'students': [serialize_student(row) for row in students],
    }


@router.get('/classes/{class_id}/students')
def list_class_students(class_id: int, db: Session = Depends(get_db), identity: IdentityProvider = Depends(require_identity)):
    try:
        target, students = EnrollmentService(db, identity).list_class_students(class_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return _roster_payload(target, students)


@router.post('/classes/{class_id}/students')
def bulk_assign_class_students(
    class_id: int,
    payload: StudentBulkAssignRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(require_identity),
):
    service = EnrollmentService(db, identity)
    try:
        service.bulk_assign_students_to_class(payload.student_ids, class_id)
        target, students = service.list_class_students(class_id)
    except DomainError as exc:
        raise domain_http_error(exc) from exc
    return _roster_payload(target, students)
