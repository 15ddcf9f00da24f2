from __future__ import annotations

import logging

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from schoolhub.core.errors import AuthorizationError, ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from schoolhub.core.identity import IdentityProvider, Principal, require_moderator
from schoolhub.core.time_provider import TimeProvider, default_time_provider
from schoolhub.models import AuthUser, ClassSection, ClassStatus, Role, Student, StudentStatus
from schoolhub.services.observability_counters import record_observability_event


logger = logging.getLogger(__name__)

ASSIGNABLE_STATUSES = frozenset({StudentStatus.ADMITTED.value, StudentStatus.ACTIVE.value})
DEACTIVATION_TARGETS = frozenset({StudentStatus.INACTIVE.value, StudentStatus.WITHDRAWN.value})
_STAFF_ROLES = frozenset({Role.SUPER_ADMIN.value, Role.ADMIN.value, Role.TEACHER.value})


def serialize_student(row: Student) -> dict:
    return {
        'id': row.id,
        'first_name': row.first_name,
        'last_name': row.last_name,
        'full_name': f'{row.first_name} {row.last_name}'.strip(),
        'status': row.status,
        'class_id': row.class_id,
        'class_name': row.class_name or None,
        'parent_id': row.parent_id,
        'admitted_at': row.admitted_at.isoformat() if row.admitted_at else None,
        'admitted_by': row.admitted_by,
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }


def _take_seats(db: Session, class_id: int, seats: int = 1) -> bool:
    # Guarded increment: the WHERE clause keeps enrolled <= capacity under concurrent writers.
    updated = (
        db.query(ClassSection)
        .filter(
            ClassSection.id == int(class_id),
            ClassSection.status == ClassStatus.ACTIVE.value,
            ClassSection.enrolled + int(seats) <= ClassSection.capacity,
        )
        .update(
            {
                ClassSection.enrolled: ClassSection.enrolled + int(seats),
                ClassSection.version_id: ClassSection.version_id + 1,
            },
            synchronize_session=False,
        )
    )
    return bool(updated)


def _release_seat(db: Session, class_id: int) -> None:
    db.query(ClassSection).filter(ClassSection.id == int(class_id)).update(
        {
            ClassSection.enrolled: case((ClassSection.enrolled > 0, ClassSection.enrolled - 1), else_=0),
            ClassSection.version_id: ClassSection.version_id + 1,
        },
        synchronize_session=False,
    )


class EnrollmentService:
    """Student lifecycle and capacity-bounded class enrollment."""

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

    def _load(self, student_id: int) -> Student:
        row = self.db.query(Student).filter(Student.id == int(student_id)).populate_existing().first()
        if not row:
            raise NotFoundError('Student not found', code='student/not-found')
        return row

    def _load_class(self, class_id: int) -> ClassSection:
        row = self.db.query(ClassSection).filter(ClassSection.id == int(class_id)).first()
        if not row:
            raise NotFoundError('Class not found', code='class/not-found')
        return row

    def _commit(self, *rows: Student, event: str) -> None:
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.db.rollback()
            logger.warning(
                'student_write_conflict student_ids=%s event=%s',
                ','.join(str(row.id) for row in rows),
                event,
            )
            raise ConflictError('Student was changed by another request; reload and retry', code='student/conflict') from exc
        for row in rows:
            self.db.refresh(row)

    def _seat_rejected(self, target: ClassSection, student_ids, *, requested: int) -> ConflictError:
        self.db.rollback()
        record_observability_event('student_enrollment_rejected')
        self.db.refresh(target)
        ids = ','.join(str(student_id) for student_id in student_ids)
        if target.status != ClassStatus.ACTIVE.value:
            logger.warning('student_enrollment_rejected student_ids=%s class_id=%s reason=inactive', ids, target.id)
            return ConflictError('Class is not active', code='class/inactive')
        available = max(0, int(target.capacity or 0) - int(target.enrolled or 0))
        logger.warning(
            'student_enrollment_rejected student_ids=%s class_id=%s reason=full requested=%s available=%s',
            ids,
            target.id,
            requested,
            available,
        )
        if requested == 1:
            return ConflictError('Class is at full capacity', code='class/full')
        return ConflictError(
            f'Cannot assign {requested} students; only {available} seats available',
            code='class/capacity-exceeded',
        )

    def _seat(self, row: Student, target: ClassSection, now) -> int | None:
        previous_class_id = row.class_id
        if previous_class_id:
            _release_seat(self.db, previous_class_id)
        row.class_id = target.id
        row.class_name = target.name
        row.status = StudentStatus.ACTIVE.value
        row.updated_at = now
        return previous_class_id

    def create_student(self, data: dict) -> Student:
        principal = self._require_admin('create students')
        first_name = str(data.get('first_name') or '').strip()
        if not first_name:
            raise ValidationError({'first_name': 'First name is required'})
        parent_id = data.get('parent_id')
        if parent_id:
            parent = self.db.query(AuthUser).filter(AuthUser.id == int(parent_id)).first()
            if not parent or parent.role != Role.PARENT.value:
                raise ValidationError({'parent_id': 'Parent account not found'})

        now = self.time_provider.utcnow()
        row = Student(
            first_name=first_name,
            last_name=str(data.get('last_name') or '').strip(),
            status=StudentStatus.PENDING.value,
            parent_id=int(parent_id) if parent_id else None,
            created_at=now,
            updated_at=now,
        )
        self.db.add(row)
        self._commit(row, event='create')
        logger.info('student_created student_id=%s actor_id=%s', row.id, principal.id)
        return row

    def get_student(self, student_id: int) -> Student:
        principal = self._principal()
        if principal.role in _STAFF_ROLES:
            return self._load(student_id)
        if principal.role != Role.PARENT.value:
            raise AuthorizationError('Not allowed to view this student')
        row = self.db.query(Student).filter(Student.id == int(student_id)).first()
        # Parents get the same answer for a missing student and somebody else's child.
        if not row or not row.parent_id or int(row.parent_id) != int(principal.id):
            raise AuthorizationError('Not allowed to view this student')
        return row

    def list_students(
        self,
        *,
        status: str | None = None,
        class_id: int | None = None,
        parent_id: int | None = None,
        unassigned: bool = False,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Student], int]:
        self._require_admin('list students')
        query = self.db.query(Student)
        if status and status != 'all':
            try:
                query = query.filter(Student.status == StudentStatus(status).value)
            except ValueError as exc:
                raise ValidationError({'status': f'Unknown status: {status}'}) from exc
        if class_id:
            query = query.filter(Student.class_id == int(class_id))
        if parent_id:
            query = query.filter(Student.parent_id == int(parent_id))
        if unassigned:
            query = query.filter(Student.class_id.is_(None))
        if search:
            needle = f"%{search.strip().lower()}%"
            query = query.filter(or_(func.lower(Student.first_name).like(needle), func.lower(Student.last_name).like(needle)))
        total = query.count()
        rows = (
            query.order_by(Student.created_at.desc(), Student.id.desc())
            .offset(max(0, int(offset)))
            .limit(max(1, min(int(limit), 200)))
            .all()
        )
        return rows, total

    def count_students_by_status(self) -> dict[str, int]:
        self._require_admin('view student counts')
        counts = {status.value: 0 for status in StudentStatus}
        for status, total in self.db.query(Student.status, func.count(Student.id)).group_by(Student.status).all():
            counts[status] = int(total)
        return counts

    def list_class_students(self, class_id: int) -> tuple[ClassSection, list[Student]]:
        self._require_admin('view class rosters')
        target = self._load_class(class_id)
        rows = (
            self.db.query(Student)
            .filter(Student.class_id == target.id, Student.status.in_(sorted(ASSIGNABLE_STATUSES)))
            .order_by(Student.last_name.asc(), Student.first_name.asc(), Student.id.asc())
            .all()
        )
        return target, rows

    def admit_student(self, student_id: int) -> Student:
        principal = self._require_admin('admit students')
        row = self._load(student_id)
        if row.status != StudentStatus.PENDING.value:
            raise InvalidTransitionError(f'Cannot admit a student with status: {row.status}')
        now = self.time_provider.utcnow()
        row.status = StudentStatus.ADMITTED.value
        row.admitted_at = now
        row.admitted_by = principal.id
        row.updated_at = now
        self._commit(row, event='admit')
        logger.info('student_admitted student_id=%s actor_id=%s', row.id, principal.id)
        return row

    def assign_student_to_class(self, student_id: int, class_id: int) -> Student:
        principal = self._require_admin('assign students to classes')
        row = self._load(student_id)
        if row.status not in ASSIGNABLE_STATUSES:
            raise InvalidTransitionError(f'Cannot assign a class to a student with status: {row.status}')
        target = self._load_class(class_id)
        if row.class_id and int(row.class_id) == int(target.id):
            return row

        if not _take_seats(self.db, target.id):
            raise self._seat_rejected(target, [row.id], requested=1)

        previous_class_id = self._seat(row, target, self.time_provider.utcnow())
        self._commit(row, event='assign_class')
        self.db.refresh(target)
        record_observability_event('student_enrolled')
        logger.info(
            'student_enrolled student_id=%s class_id=%s previous_class_id=%s enrolled=%s capacity=%s actor_id=%s',
            row.id,
            target.id,
            previous_class_id,
            target.enrolled,
            target.capacity,
            principal.id,
        )
        return row

    def bulk_assign_students_to_class(self, student_ids, class_id: int) -> list[Student]:
        """Seats every listed student in ``class_id`` or none of them.

        Students already in the class are left alone and take no new seat.
        The seats for the rest are claimed in one guarded UPDATE, so the whole
        batch is rejected when the class cannot hold it.
        """
        principal = self._require_admin('assign students to classes')
        ids = list(dict.fromkeys(int(student_id) for student_id in student_ids or []))
        if not ids:
            raise ValidationError({'student_ids': 'At least one student is required'})
        target = self._load_class(class_id)

        found = {row.id: row for row in self.db.query(Student).filter(Student.id.in_(ids)).populate_existing().all()}
        missing = [student_id for student_id in ids if student_id not in found]
        if missing:
            raise NotFoundError(f'Student {missing[0]} not found', code='student/not-found')
        rows = [found[student_id] for student_id in ids]
        blocked = next((row for row in rows if row.status not in ASSIGNABLE_STATUSES), None)
        if blocked is not None:
            raise InvalidTransitionError(f'Cannot assign a class to student {blocked.id} with status: {blocked.status}')

        movers = [row for row in rows if not row.class_id or int(row.class_id) != int(target.id)]
        if not movers:
            return rows
        if not _take_seats(self.db, target.id, len(movers)):
            raise self._seat_rejected(target, [row.id for row in movers], requested=len(movers))

        now = self.time_provider.utcnow()
        for row in movers:
            self._seat(row, target, now)
        self._commit(*movers, event='bulk_assign_class')
        self.db.refresh(target)
        for _ in movers:
            record_observability_event('student_enrolled')
        logger.info(
            'students_bulk_enrolled class_id=%s count=%s enrolled=%s capacity=%s actor_id=%s',
            target.id,
            len(movers),
            target.enrolled,
            target.capacity,
            principal.id,
        )
        return rows

    def unassign_student_from_class(self, student_id: int) -> Student:
        principal = self._require_admin('unassign students from classes')
        row = self._load(student_id)
        if row.status != StudentStatus.ACTIVE.value or not row.class_id:
            raise InvalidTransitionError(f'Cannot unassign a student with status: {row.status}')
        previous_class_id = row.class_id
        _release_seat(self.db, previous_class_id)
        row.class_id = None
        row.class_name = ''
        row.status = StudentStatus.ADMITTED.value
        row.updated_at = self.time_provider.utcnow()
        self._commit(row, event='unassign_class')
        logger.info('student_unenrolled student_id=%s class_id=%s actor_id=%s', row.id, previous_class_id, principal.id)
        return row

    def deactivate_student(self, student_id: int, status: StudentStatus | str = StudentStatus.INACTIVE) -> Student:
        principal = self._require_admin('deactivate students')
        row = self._load(student_id)
        target = str(getattr(status, 'value', status) or '').strip().lower()
        if target not in DEACTIVATION_TARGETS:
            raise ValidationError({'status': 'Status must be inactive or withdrawn'})
        if row.status not in ASSIGNABLE_STATUSES:
            raise InvalidTransitionError(f'Cannot deactivate a student with status: {row.status}')
        previous_class_id = row.class_id
        if previous_class_id:
            _release_seat(self.db, previous_class_id)
        row.class_id = None
        row.class_name = ''
        row.status = target
        row.updated_at = self.time_provider.utcnow()
        self._commit(row, event='deactivate')
        logger.info(
            'student_deactivated student_id=%s status=%s released_class_id=%s actor_id=%s',
            row.id,
            target,
            previous_class_id,
            principal.id,
        )
        return row
