import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from schoolhub.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schoolhub.core.identity import Principal, StaticIdentity
from schoolhub.core.time_provider import TimeProvider
from schoolhub.db import Base
from schoolhub.models import AuthUser, ClassSection, ClassTeacherAssignment, Grade, Student, TeacherRole
from schoolhub.services.class_roster_service import (
    ClassRosterService,
    check_role_change,
    check_teacher_assignment,
    compute_teacher_workload,
    serialize_class,
)
from schoolhub.services.observability_counters import clear_observability_events, count_observability_events


ADMIN = Principal(id=1, role='admin', name='Meena')
T1 = Principal(id=11, role='teacher', name='Kavya', email='kavya@example.org')
T2 = Principal(id=12, role='teacher', name='Arjun', email='arjun@example.org')
T3 = Principal(id=13, role='teacher', name='Farah', email='farah@example.org')
PARENT = Principal(id=20, role='parent', name='Lakshmi', email='lakshmi@example.org')


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


class RosterRuleTests(unittest.TestCase):
    def test_duplicate_teacher_conflicts(self):
        roster = [{'teacher_id': 11, 'role': 'assistant'}]
        with self.assertRaises(ConflictError) as ctx:
            check_teacher_assignment(roster, 11, 'assistant')
        self.assertEqual(ctx.exception.code, 'class/duplicate-teacher')

    def test_second_primary_conflicts(self):
        roster = [{'teacher_id': 11, 'role': 'primary'}]
        with self.assertRaises(ConflictError) as ctx:
            check_teacher_assignment(roster, 12, 'primary')
        self.assertEqual(ctx.exception.code, 'class/primary-exists')
        check_teacher_assignment(roster, 12, 'assistant')

    def test_unknown_role_is_validation_error(self):
        with self.assertRaises(ValidationError):
            check_teacher_assignment([], 11, 'lead')

    def test_role_change_rules(self):
        roster = [{'teacher_id': 11, 'role': 'primary'}, {'teacher_id': 12, 'role': 'assistant'}]
        self.assertFalse(check_role_change(roster, 11, 'primary'))
        self.assertTrue(check_role_change(roster, 11, 'assistant'))
        with self.assertRaises(ConflictError):
            check_role_change(roster, 12, 'primary')
        with self.assertRaises(NotFoundError):
            check_role_change(roster, 99, 'assistant')

    def test_promotion_allowed_without_primary(self):
        roster = [{'teacher_id': 11, 'role': 'assistant'}, {'teacher_id': 12, 'role': 'assistant'}]
        self.assertTrue(check_role_change(roster, 12, 'primary'))

    def test_enum_roles_are_accepted(self):
        check_teacher_assignment([], 11, TeacherRole.PRIMARY)
        roster = [{'teacher_id': 11, 'role': TeacherRole.PRIMARY}]
        with self.assertRaises(ConflictError) as ctx:
            check_teacher_assignment(roster, 12, TeacherRole.PRIMARY)
        self.assertEqual(ctx.exception.code, 'class/primary-exists')
        self.assertFalse(check_role_change(roster, 11, TeacherRole.PRIMARY))
        self.assertTrue(check_role_change(roster, 11, TeacherRole.ASSISTANT))


class ClassRosterServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_class_roster.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        clear_observability_events()
        self.clock = FixedTimeProvider(datetime(2026, 6, 1, 4, 30, tzinfo=timezone.utc))
        db = self._session_factory()
        try:
            db.query(Student).delete()
            db.query(ClassTeacherAssignment).delete()
            db.query(ClassSection).delete()
            db.query(Grade).delete()
            db.query(AuthUser).delete()
            db.add_all(
                [
                    AuthUser(id=p.id, email=p.email or f'user{p.id}@example.org', name=p.name, role=p.role, password_hash='')
                    for p in (ADMIN, T1, T2, T3, PARENT)
                ]
            )
            db.add_all([Grade(id=1, name='Grade 5', display_order=5), Grade(id=2, name='Grade 6', display_order=6)])
            db.commit()
        finally:
            db.close()
        self.db = self._session_factory()
        self.admin = ClassRosterService(self.db, StaticIdentity(ADMIN), time_provider=self.clock)

    def tearDown(self):
        self.db.close()

    def _class(self, name: str = '5A', **overrides) -> ClassSection:
        data = {'name': name, 'grade_id': 1, 'day': 'Mon-Fri', 'time': '09:00', 'capacity': 30}
        data.update(overrides)
        return self.admin.create_class(data)

    def test_create_class_snapshots_grade(self):
        row = self._class()
        self.assertEqual(row.grade_name, 'Grade 5')
        self.assertEqual(row.status, 'active')
        self.assertEqual(row.enrolled, 0)
        with self.assertRaises(NotFoundError):
            self._class(grade_id=99)
        with self.assertRaises(ValidationError):
            self._class(capacity=0)

    def test_teacher_cannot_create_class(self):
        service = ClassRosterService(self.db, StaticIdentity(T1), time_provider=self.clock)
        with self.assertRaises(AuthorizationError):
            service.create_class({'name': '5B', 'grade_id': 1})

    def test_primary_swap_scenario(self):
        row = self._class()
        row = self.admin.assign_teacher(row.id, T1.id, 'primary')
        self.assertEqual(row.teachers[0].teacher_name, 'Kavya')
        self.assertEqual(row.teachers[0].teacher_email, 'kavya@example.org')
        self.assertEqual(row.teachers[0].assigned_by, ADMIN.id)

        with self.assertRaises(ConflictError):
            self.admin.assign_teacher(row.id, T2.id, 'primary')

        self.admin.update_teacher_role(row.id, T1.id, 'assistant')
        row = self.admin.assign_teacher(row.id, T2.id, 'primary')
        roles = {item.teacher_id: item.role for item in row.teachers}
        self.assertEqual(roles, {T1.id: 'assistant', T2.id: 'primary'})
        self.assertEqual(serialize_class(row)['primary_teacher_id'], T2.id)
        self.assertEqual(count_observability_events('class_teacher_assigned'), 2)
        self.assertEqual(count_observability_events('class_teacher_conflict'), 1)

    def test_primary_swap_with_enum_roles(self):
        row = self._class()
        row = self.admin.assign_teacher(row.id, T1.id, TeacherRole.PRIMARY)
        self.assertEqual(row.teachers[0].role, 'primary')
        with self.assertRaises(ConflictError):
            self.admin.assign_teacher(row.id, T2.id, TeacherRole.PRIMARY)
        self.admin.update_teacher_role(row.id, T1.id, TeacherRole.ASSISTANT)
        row = self.admin.assign_teacher(row.id, T2.id, TeacherRole.PRIMARY)
        self.assertEqual({item.teacher_id: item.role for item in row.teachers}, {T1.id: 'assistant', T2.id: 'primary'})
        self.assertEqual(serialize_class(row)['primary_teacher_id'], T2.id)

    def test_duplicate_assignment_conflicts(self):
        row = self._class()
        self.admin.assign_teacher(row.id, T1.id, 'assistant')
        with self.assertRaises(ConflictError):
            self.admin.assign_teacher(row.id, T1.id, 'primary')
        self.assertEqual(len(self.admin.get_class(row.id).teachers), 1)

    def test_assign_requires_teacher_account(self):
        row = self._class()
        with self.assertRaises(ValidationError):
            self.admin.assign_teacher(row.id, PARENT.id, 'assistant')
        with self.assertRaises(NotFoundError):
            self.admin.assign_teacher(row.id, 999, 'assistant')
        with self.assertRaises(NotFoundError):
            self.admin.assign_teacher(999, T1.id, 'assistant')

    def test_assign_requires_admin(self):
        row = self._class()
        service = ClassRosterService(self.db, StaticIdentity(T1), time_provider=self.clock)
        with self.assertRaises(AuthorizationError):
            service.assign_teacher(row.id, T2.id, 'assistant')

    def test_update_role_rules(self):
        row = self._class()
        self.admin.assign_teacher(row.id, T1.id, 'primary')
        self.admin.assign_teacher(row.id, T2.id, 'assistant')
        with self.assertRaises(NotFoundError):
            self.admin.update_teacher_role(row.id, T3.id, 'assistant')
        with self.assertRaises(ConflictError):
            self.admin.update_teacher_role(row.id, T2.id, 'primary')
        before = self.admin.get_class(row.id).version_id
        unchanged = self.admin.update_teacher_role(row.id, T1.id, 'primary')
        self.assertEqual(unchanged.version_id, before)

    def test_remove_teacher_is_idempotent(self):
        row = self._class()
        self.admin.assign_teacher(row.id, T1.id, 'primary')
        row = self.admin.remove_teacher(row.id, T1.id)
        self.assertEqual(row.teachers, [])
        row = self.admin.remove_teacher(row.id, T1.id)
        self.assertEqual(row.teachers, [])

    def test_storage_rejects_second_primary(self):
        row = self._class()
        self.admin.assign_teacher(row.id, T1.id, 'primary')
        self.db.add(ClassTeacherAssignment(class_id=row.id, teacher_id=T2.id, role='primary'))
        with self.assertRaises(IntegrityError):
            self.db.commit()
        self.db.rollback()

    def test_update_class_warns_when_capacity_below_enrollment(self):
        row = self._class(capacity=3)
        self.db.query(ClassSection).filter(ClassSection.id == row.id).update({ClassSection.enrolled: 3})
        self.db.commit()
        row, warnings = self.admin.update_class(row.id, {'capacity': 2})
        self.assertEqual(row.capacity, 2)
        self.assertEqual(warnings, ['capacity_below_enrollment'])
        row, warnings = self.admin.update_class(row.id, {'name': '5A Morning'})
        self.assertEqual(warnings, [])

    def test_inactive_class_schedule_is_frozen(self):
        row = self._class()
        self.admin.assign_teacher(row.id, T1.id, 'primary')
        row = self.admin.deactivate_class(row.id)
        self.assertEqual(row.status, 'inactive')
        self.assertEqual(len(row.teachers), 1)
        with self.assertRaises(ConflictError):
            self.admin.update_class(row.id, {'capacity': 40})
        row, _ = self.admin.update_class(row.id, {'academic_year': '2026-27'})
        self.assertEqual(row.academic_year, '2026-27')
        row = self.admin.activate_class(row.id)
        row, _ = self.admin.update_class(row.id, {'capacity': 40, 'grade_id': 2})
        self.assertEqual((row.capacity, row.grade_name), (40, 'Grade 6'))

    def test_filters_and_options(self):
        a = self._class('5A')
        b = self._class('5B')
        c = self._class('6A', grade_id=2)
        self.admin.assign_teacher(a.id, T1.id, 'primary')
        self.admin.assign_teacher(b.id, T1.id, 'assistant')
        self.admin.deactivate_class(c.id)

        rows, total = self.admin.list_classes(teacher_id=T1.id)
        self.assertEqual({row.id for row in rows}, {a.id, b.id})
        rows, total = self.admin.list_classes(unassigned=True)
        self.assertEqual({row.id for row in rows}, {b.id, c.id})
        rows, total = self.admin.list_classes(status='active', grade_id=1)
        self.assertEqual(total, 2)
        with self.assertRaises(ValidationError):
            self.admin.list_classes(status='archived')

        options = self.admin.class_options()
        self.assertEqual([item['name'] for item in options], ['5A', '5B'])
        self.assertEqual(options[0]['available'], 30)

        with self.assertRaises(AuthorizationError):
            ClassRosterService(self.db, StaticIdentity(PARENT)).list_classes()

    def test_teacher_workload(self):
        a = self._class('5A')
        b = self._class('5B')
        self.admin.assign_teacher(a.id, T1.id, 'primary')
        self.admin.assign_teacher(b.id, T1.id, 'assistant')
        self.admin.assign_teacher(b.id, T2.id, 'primary')
        workload = self.admin.teacher_workload()
        self.assertEqual(
            workload,
            [
                {'teacher_id': T1.id, 'teacher_name': 'Kavya', 'primary_count': 1, 'assistant_count': 1, 'total': 2},
                {'teacher_id': T2.id, 'teacher_name': 'Arjun', 'primary_count': 1, 'assistant_count': 0, 'total': 1},
            ],
        )
        self.assertEqual(compute_teacher_workload([]), [])

    def test_grades(self):
        grade = self.admin.create_grade('Grade 7', 7)
        self.assertEqual(grade.name, 'Grade 7')
        with self.assertRaises(ConflictError):
            self.admin.create_grade('grade 7')
        self.assertEqual([g.name for g in self.admin.list_grades()], ['Grade 5', 'Grade 6', 'Grade 7'])


if __name__ == '__main__':
    unittest.main()
