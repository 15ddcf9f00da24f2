from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from schoolhub.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schoolhub.core.identity import IdentityProvider, Principal, require_moderator
from schoolhub.core.time_provider import TimeProvider, default_time_provider
from schoolhub.models import AuthUser, ClassSection, ClassStatus, ClassTeacherAssignment, Grade, Role, TeacherRole
from schoolhub.services.observability_counters import record_observability_event


logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = ('day', 'time', 'capacity')
_STAFF_ROLES = frozenset({Role.SUPER_ADMIN.value, Role.ADMIN.value, Role.TEACHER.value})


def _role_of(assignment) -> str:
    role = assignment.get('role') if isinstance(assignment, dict) else getattr(assignment, 'role', '')
    return str(getattr(role, 'value', role) or '')


def _teacher_of(assignment) -> int:
    teacher_id = assignment.get('teacher_id') if isinstance(assignment, dict) else getattr(assignment, 'teacher_id', 0)
    return int(teacher_id or 0)


def _normalize_teacher_role(role) -> TeacherRole:
    if isinstance(role, TeacherRole):
        return role
    try:
        return TeacherRole(str(role or TeacherRole.ASSISTANT.value).strip().lower())
    except ValueError as exc:
        raise ValidationError({'role': 'Role must be primary or assistant'}) from exc


def check_teacher_assignment(assignments, teacher_id: int, role: TeacherRole | str) -> None:
    """Rejects adding ``teacher_id`` with ``role`` to the current assignment list."""
    requested = _normalize_teacher_role(role)
    if any(_teacher_of(row) == int(teacher_id) for row in assignments):
        raise ConflictError('Teacher is already assigned to this class', code='class/duplicate-teacher')
    if requested is TeacherRole.PRIMARY and any(_role_of(row) == TeacherRole.PRIMARY.value for row in assignments):
        raise ConflictError('Class already has a primary teacher', code='class/primary-exists')


def check_role_change(assignments, teacher_id: int, new_role: TeacherRole | str) -> bool:
    """Returns ``False`` when the teacher already holds ``new_role``.

    Raises ``NotFoundError`` for a teacher who is not on the roster and
    ``ConflictError`` when promoting next to an existing primary.
    """
    requested = _normalize_teacher_role(new_role)
    current = next((row for row in assignments if _teacher_of(row) == int(teacher_id)), None)
    if current is None:
        raise NotFoundError('Teacher is not assigned to this class', code='class/teacher-not-assigned')
    if _role_of(current) == requested.value:
        return False
    if requested is TeacherRole.PRIMARY and any(
        _role_of(row) == TeacherRole.PRIMARY.value and _teacher_of(row) != int(teacher_id) for row in assignments
    ):
        raise ConflictError('Class already has a primary teacher', code='class/primary-exists')
    return True


def primary_teacher(assignments):
    return next((row for row in assignments if _role_of(row) == TeacherRole.PRIMARY.value), None)


def compute_teacher_workload(classes) -> list[dict]:
    totals: dict[int, dict] = {}
    for class_row in classes:
        for assignment in class_row.teachers:
            entry = totals.setdefault(
                int(assignment.teacher_id),
                {
                    'teacher_id': int(assignment.teacher_id),
                    'teacher_name': assignment.teacher_name,
                    'primary_count': 0,
                    'assistant_count': 0,
                    'total': 0,
                },
            )
            if assignment.role == TeacherRole.PRIMARY.value:
                entry['primary_count'] += 1
            else:
                entry['assistant_count'] += 1
            entry['total'] += 1
    return sorted(totals.values(), key=lambda item: (-item['total'], item['teacher_name'] or '', item['teacher_id']))


def _serialize_assignment(row: ClassTeacherAssignment) -> dict:
    return {
        'teacher_id': row.teacher_id,
        'teacher_name': row.teacher_name,
        'teacher_email': row.teacher_email,
        'role': row.role,
        'assigned_at': row.assigned_at.isoformat() if row.assigned_at else None,
        'assigned_by': row.assigned_by,
    }


def serialize_class(row: ClassSection) -> dict:
    primary = primary_teacher(row.teachers)
    return {
        'id': row.id,
        'name': row.name,
        'grade_id': row.grade_id,
        'grade_name': row.grade_name,
        'day': row.day,
        'time': row.time,
        'capacity': row.capacity,
        'enrolled': row.enrolled,
        'available': max(0, int(row.capacity or 0) - int(row.enrolled or 0)),
        'status': row.status,
        'academic_year': row.academic_year,
        'teachers': [_serialize_assignment(item) for item in row.teachers],
        'primary_teacher_id': primary.teacher_id if primary else None,
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }


def serialize_grade(row: Grade) -> dict:
    return {'id': row.id, 'name': row.name, 'display_order': row.display_order}


def _parse_capacity(value) -> int:
    try:
        capacity = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError({'capacity': 'Capacity must be a positive integer'}) from exc
    if isinstance(value, bool) or capacity <= 0:
        raise ValidationError({'capacity': 'Capacity must be a positive integer'})
    return capacity


class ClassRosterService:
    """Class sections, their teacher roster and the grade catalogue."""

    def __init__(
        self,
        db: Session,
        identity: IdentityProvider,
        *,
        time_provider: TimeProvider = default_time_provider,
    ) -> None:
        self.db = db
        self.identity = identity
        self.time_provider = time_provider

    def _principal(self) -> Principal:
        return self.identity.resolve()

    def _require_admin(self, action: str) -> Principal:
        principal = self._principal()
        require_moderator(principal, action=action)
        return principal

    def _require_staff(self) -> Principal:
        principal = self._principal()
        if principal.role not in _STAFF_ROLES:
            raise AuthorizationError('Staff role required')
        return principal

    def _load(self, class_id: int) -> ClassSection:
        row = (
            self.db.query(ClassSection)
            .options(selectinload(ClassSection.teachers))
            .filter(ClassSection.id == int(class_id))
            .populate_existing()
            .first()
        )
        if not row:
            raise NotFoundError('Class not found', code='class/not-found')
        return row

    def _grade(self, grade_id) -> Grade:
        grade = self.db.query(Grade).filter(Grade.id == int(grade_id or 0)).first()
        if not grade:
            raise NotFoundError('Grade not found', code='grade/not-found')
        return grade

    def _commit(self, row, *, event: str):
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.db.rollback()
            if event.startswith('teacher_'):
                record_observability_event('class_teacher_conflict')
            logger.warning('class_write_conflict class_id=%s event=%s', getattr(row, 'id', None), event)
            raise ConflictError('Class was changed by another request; reload and retry', code='class/conflict') from exc
        self.db.refresh(row)
        return row

    def create_grade(self, name: str, display_order: int = 0) -> Grade:
        self._require_admin('create grades')
        clean = (name or '').strip()
        if not clean:
            raise ValidationError({'name': 'Grade name is required'})
        if self.db.query(Grade.id).filter(func.lower(Grade.name) == clean.lower()).first():
            raise ConflictError('Grade name already exists', code='grade/duplicate')
        grade = Grade(name=clean, display_order=int(display_order or 0), created_at=self.time_provider.utcnow())
        self.db.add(grade)
        return self._commit(grade, event='grade_create')

    def list_grades(self) -> list[Grade]:
        self._require_staff()
        return self.db.query(Grade).order_by(Grade.display_order.asc(), Grade.name.asc()).all()

    def create_class(self, data: dict) -> ClassSection:
        principal = self._require_admin('create classes')
        name = str(data.get('name') or '').strip()
        if not name:
            raise ValidationError({'name': 'Class name is required'})
        capacity = _parse_capacity(data.get('capacity', 20))
        grade = self._grade(data.get('grade_id'))

        now = self.time_provider.utcnow()
        row = ClassSection(
            name=name,
            grade_id=grade.id,
            grade_name=grade.name,
            day=str(data.get('day') or '').strip(),
            time=str(data.get('time') or '').strip(),
            capacity=capacity,
            enrolled=0,
            status=ClassStatus.ACTIVE.value,
            academic_year=str(data.get('academic_year') or '').strip(),
            created_at=now,
            updated_at=now,
        )
        self.db.add(row)
        self._commit(row, event='create')
        logger.info('class_created class_id=%s grade_id=%s actor_id=%s', row.id, grade.id, principal.id)
        return row

    def get_class(self, class_id: int) -> ClassSection:
        self._require_staff()
        return self._load(class_id)

    def list_classes(
        self,
        *,
        status: str | None = None,
        grade_id: int | None = None,
        teacher_id: int | None = None,
        unassigned: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ClassSection], int]:
        self._require_staff()
        query = self.db.query(ClassSection)
        if status and status != 'all':
            try:
                query = query.filter(ClassSection.status == ClassStatus(status).value)
            except ValueError as exc:
                raise ValidationError({'status': f'Unknown status: {status}'}) from exc
        if grade_id:
            query = query.filter(ClassSection.grade_id == int(grade_id))
        if teacher_id:
            query = query.filter(
                ClassSection.teachers.any(ClassTeacherAssignment.teacher_id == int(teacher_id))
            )
        if unassigned:
            query = query.filter(
                ~ClassSection.teachers.any(ClassTeacherAssignment.role == TeacherRole.PRIMARY.value)
            )
        total = query.count()
        rows = (
            query.options(selectinload(ClassSection.teachers))
            .order_by(ClassSection.grade_name.asc(), ClassSection.name.asc(), ClassSection.id.asc())
            .offset(max(0, int(offset)))
            .limit(max(1, min(int(limit), 200)))
            .all()
        )
        return rows, total

    def class_options(self) -> list[dict]:
        self._require_staff()
        rows = (
            self.db.query(ClassSection)
            .filter(ClassSection.status == ClassStatus.ACTIVE.value)
            .order_by(ClassSection.grade_name.asc(), ClassSection.name.asc())
            .all()
        )
        return [
            {
                'id': row.id,
                'name': row.name,
                'grade_name': row.grade_name,
                'capacity': row.capacity,
                'enrolled': row.enrolled,
                'available': max(0, int(row.capacity or 0) - int(row.enrolled or 0)),
            }
            for row in rows
        ]

    def update_class(self, class_id: int, patch: dict) -> tuple[ClassSection, list[str]]:
        principal = self._require_admin('edit classes')
        row = self._load(class_id)
        warnings: list[str] = []

        if any(key in patch for key in SCHEDULE_FIELDS) and row.status != ClassStatus.ACTIVE.value:
            raise ConflictError('Schedule and capacity can only be changed on an active class', code='class/inactive')
        if 'name' in patch:
            name = str(patch.get('name') or '').strip()
            if not name:
                raise ValidationError({'name': 'Class name is required'})
            row.name = name
        if 'grade_id' in patch:
            grade = self._grade(patch.get('grade_id'))
            row.grade_id = grade.id
            row.grade_name = grade.name
        if 'day' in patch:
            row.day = str(patch.get('day') or '').strip()
        if 'time' in patch:
            row.time = str(patch.get('time') or '').strip()
        if 'capacity' in patch:
            row.capacity = _parse_capacity(patch.get('capacity'))
            if row.capacity < int(row.enrolled or 0):
                warnings.append('capacity_below_enrollment')
                logger.warning(
                    'class_capacity_below_enrollment class_id=%s capacity=%s enrolled=%s',
                    row.id,
                    row.capacity,
                    row.enrolled,
                )
        if 'academic_year' in patch:
            row.academic_year = str(patch.get('academic_year') or '').strip()

        row.updated_at = self.time_provider.utcnow()
        self._commit(row, event='update')
        logger.info('class_updated class_id=%s actor_id=%s fields=%s', row.id, principal.id, ','.join(sorted(patch)))
        return row, warnings

    def _set_status(self, class_id: int, status: ClassStatus) -> ClassSection:
        principal = self._require_admin(f'{"activate" if status is ClassStatus.ACTIVE else "deactivate"} classes')
        row = self._load(class_id)
        if row.status == status.value:
            return row
        row.status = status.value
        row.updated_at = self.time_provider.utcnow()
        self._commit(row, event=f'status_{status.value}')
        logger.info('class_status_changed class_id=%s status=%s actor_id=%s', row.id, row.status, principal.id)
        return row

    def deactivate_class(self, class_id: int) -> ClassSection:
        return self._set_status(class_id, ClassStatus.INACTIVE)

    def activate_class(self, class_id: int) -> ClassSection:
        return self._set_status(class_id, ClassStatus.ACTIVE)

    def assign_teacher(self, class_id: int, teacher_id: int, role: TeacherRole | str = TeacherRole.ASSISTANT) -> ClassSection:
        principal = self._require_admin('assign teachers')
        row = self._load(class_id)
        teacher = self.db.query(AuthUser).filter(AuthUser.id == int(teacher_id)).first()
        if not teacher:
            raise NotFoundError('Teacher not found', code='teacher/not-found')
        if teacher.role != Role.TEACHER.value or not teacher.is_active:
            raise ValidationError({'teacher_id': 'User is not an active teacher'})
        requested = _normalize_teacher_role(role)
        try:
            check_teacher_assignment(row.teachers, teacher.id, requested)
        except ConflictError:
            record_observability_event('class_teacher_conflict')
            raise

        now = self.time_provider.utcnow()
        row.teachers.append(
            ClassTeacherAssignment(
                teacher_id=teacher.id,
                teacher_name=teacher.name,
                teacher_email=teacher.email,
                role=requested.value,
                assigned_at=now,
                assigned_by=principal.id,
            )
        )
        row.updated_at = now
        self._commit(row, event='teacher_assign')
        record_observability_event('class_teacher_assigned')
        logger.info(
            'class_teacher_assigned class_id=%s teacher_id=%s role=%s actor_id=%s',
            row.id,
            teacher.id,
            requested.value,
            principal.id,
        )
        return row

    def update_teacher_role(self, class_id: int, teacher_id: int, new_role: TeacherRole | str) -> ClassSection:
        principal = self._require_admin('change teacher roles')
        row = self._load(class_id)
        if not check_role_change(row.teachers, teacher_id, new_role):
            return row
        requested = _normalize_teacher_role(new_role)
        assignment = next(item for item in row.teachers if int(item.teacher_id) == int(teacher_id))
        assignment.role = requested.value
        row.updated_at = self.time_provider.utcnow()
        self._commit(row, event='teacher_role')
        logger.info(
            'class_teacher_role_changed class_id=%s teacher_id=%s role=%s actor_id=%s',
            row.id,
            teacher_id,
            requested.value,
            principal.id,
        )
        return row

    def remove_teacher(self, class_id: int, teacher_id: int) -> ClassSection:
        principal = self._require_admin('remove teachers')
        row = self._load(class_id)
        assignment = next((item for item in row.teachers if int(item.teacher_id) == int(teacher_id)), None)
        if assignment is None:
            return row
        row.teachers.remove(assignment)
        row.updated_at = self.time_provider.utcnow()
        self._commit(row, event='teacher_remove')
        logger.info('class_teacher_removed class_id=%s teacher_id=%s actor_id=%s', row.id, teacher_id, principal.id)
        return row

    def teacher_workload(self, *, include_inactive: bool = False) -> list[dict]:
        self._require_admin('view teacher workload')
        query = self.db.query(ClassSection).options(selectinload(ClassSection.teachers))
        if not include_inactive:
            query = query.filter(ClassSection.status == ClassStatus.ACTIVE.value)
        return compute_teacher_workload(query.all())
