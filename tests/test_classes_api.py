import tempfile
import unittest
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from schoolhub.core import router_guard
from schoolhub.db import Base, get_db
from schoolhub.models import AuthUser, ClassSection, ClassTeacherAssignment, Grade, Student
from schoolhub.routers import classes, students


SESSIONS = {
    'token-admin': {'user_id': 1, 'role': 'admin', 'name': 'Meena', 'email': 'meena@example.org'},
    'token-teacher': {'user_id': 11, 'role': 'teacher', 'name': 'Kavya', 'email': 'kavya@example.org'},
    'token-parent': {'user_id': 20, 'role': 'parent', 'name': 'Lakshmi', 'email': 'lakshmi@example.org'},
}
ADMIN = {'Authorization': 'Bearer token-admin'}
TEACHER = {'Authorization': 'Bearer token-teacher'}


class ClassesApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_classes_api.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        cls._orig_validate_session_token = router_guard.validate_session_token
        router_guard.validate_session_token = lambda token: SESSIONS.get(token or '')

        app = FastAPI()
        app.include_router(classes.router)
        app.include_router(students.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        router_guard.validate_session_token = cls._orig_validate_session_token
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            db.query(Student).delete()
            db.query(ClassTeacherAssignment).delete()
            db.query(ClassSection).delete()
            db.query(Grade).delete()
            db.query(AuthUser).delete()
            db.add_all(
                [
                    AuthUser(id=1, email='meena@example.org', name='Meena', role='admin', password_hash=''),
                    AuthUser(id=11, email='kavya@example.org', name='Kavya', role='teacher', password_hash=''),
                    AuthUser(id=12, email='arjun@example.org', name='Arjun', role='teacher', password_hash=''),
                    AuthUser(id=20, email='lakshmi@example.org', name='Lakshmi', role='parent', password_hash=''),
                ]
            )
            db.commit()
        finally:
            db.close()

    def _grade(self) -> dict:
        resp = self.client.post('/api/grades', json={'name': 'Grade 4', 'display_order': 4}, headers=ADMIN)
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()

    def _class(self, capacity: int = 25) -> dict:
        grade = self._grade()
        resp = self.client.post(
            '/api/classes',
            json={'name': '4A', 'grade_id': grade['id'], 'day': 'Mon-Fri', 'time': '08:30', 'capacity': capacity},
            headers=ADMIN,
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()

    def test_teacher_roster_endpoints(self):
        section = self._class()
        url = f"/api/classes/{section['id']}/teachers"

        resp = self.client.post(url, json={'teacher_id': 11, 'role': 'primary'}, headers=ADMIN)
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()['primary_teacher_id'], 11)

        resp = self.client.post(url, json={'teacher_id': 12, 'role': 'primary'}, headers=ADMIN)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()['detail']['code'], 'class/primary-exists')

        resp = self.client.post(url, json={'teacher_id': 12, 'role': 'primary'}, headers=TEACHER)
        self.assertEqual(resp.status_code, 403)

        resp = self.client.post(url, json={'teacher_id': 20, 'role': 'assistant'}, headers=ADMIN)
        self.assertEqual(resp.status_code, 422)

        self.client.patch(url, json={'teacher_id': 11, 'role': 'assistant'}, headers=ADMIN)
        self.client.post(url, json={'teacher_id': 12, 'role': 'primary'}, headers=ADMIN)
        roster = self.client.get(url, headers=TEACHER).json()
        self.assertEqual({item['teacher_id']: item['role'] for item in roster}, {11: 'assistant', 12: 'primary'})

        resp = self.client.delete(url, params={'teacher_id': 11}, headers=ADMIN)
        self.assertEqual(resp.status_code, 200)
        resp = self.client.delete(url, params={'teacher_id': 11}, headers=ADMIN)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([item['teacher_id'] for item in resp.json()['teachers']], [12])

        workload = self.client.get('/api/classes/workload', headers=ADMIN).json()
        self.assertEqual(workload, [{'teacher_id': 12, 'teacher_name': 'Arjun', 'primary_count': 1, 'assistant_count': 0, 'total': 1}])

    def test_class_edit_and_status(self):
        section = self._class(capacity=25)
        resp = self.client.patch(f"/api/classes/{section['id']}", json={'capacity': 30}, headers=ADMIN)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['class']['capacity'], 30)
        self.assertEqual(resp.json()['warnings'], [])

        resp = self.client.post(f"/api/classes/{section['id']}/deactivate", headers=ADMIN)
        self.assertEqual(resp.json()['status'], 'inactive')
        self.assertEqual(self.client.get('/api/classes/options', headers=ADMIN).json(), [])

        resp = self.client.patch(f"/api/classes/{section['id']}", json={'time': '10:00'}, headers=ADMIN)
        self.assertEqual(resp.status_code, 409)

        self.client.post(f"/api/classes/{section['id']}/activate", headers=ADMIN)
        listing = self.client.get('/api/classes', params={'unassigned': True}, headers=TEACHER).json()
        self.assertEqual(listing['total'], 1)
        self.assertEqual(self.client.get('/api/classes', headers={'Authorization': 'Bearer token-parent'}).status_code, 403)
        self.assertEqual(self.client.get('/api/classes/4040', headers=ADMIN).status_code, 404)

    def test_student_enrollment_endpoints(self):
        section = self._class(capacity=1)
        created = []
        for name in ('Aarav', 'Diya'):
            resp = self.client.post('/api/students', json={'first_name': name, 'parent_id': 20}, headers=ADMIN)
            self.assertEqual(resp.status_code, 201, resp.text)
            created.append(resp.json())
            self.assertEqual(created[-1]['status'], 'pending')

        for student in created:
            resp = self.client.post(f"/api/students/{student['id']}/admit", headers=ADMIN)
            self.assertEqual(resp.json()['status'], 'admitted')

        first, second = created
        resp = self.client.post(f"/api/students/{first['id']}/assign-class", json={'class_id': section['id']}, headers=ADMIN)
        self.assertEqual(resp.json()['status'], 'active')
        resp = self.client.post(f"/api/students/{second['id']}/assign-class", json={'class_id': section['id']}, headers=ADMIN)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()['detail']['code'], 'class/full')

        resp = self.client.post(f"/api/students/{first['id']}/unassign-class", headers=ADMIN)
        self.assertEqual(resp.json()['status'], 'admitted')
        resp = self.client.post(f"/api/students/{second['id']}/assign-class", json={'class_id': section['id']}, headers=ADMIN)
        self.assertEqual(resp.status_code, 200)

        resp = self.client.post(f"/api/students/{second['id']}/deactivate", json={'status': 'withdrawn'}, headers=ADMIN)
        self.assertEqual(resp.json()['status'], 'withdrawn')
        options = self.client.get('/api/classes/options', headers=ADMIN).json()
        self.assertEqual(options[0]['available'], 1)

        parent_view = self.client.get(f"/api/students/{first['id']}", headers={'Authorization': 'Bearer token-parent'})
        self.assertEqual(parent_view.status_code, 200)
        resp = self.client.post(f"/api/students/{first['id']}/admit", headers=ADMIN)
        self.assertEqual(resp.status_code, 409)

    def test_student_listing_and_bulk_class_assignment(self):
        section = self._class(capacity=2)
        ids = []
        for name in ('Aarav', 'Diya', 'Ishaan'):
            student = self.client.post('/api/students', json={'first_name': name}, headers=ADMIN).json()
            self.client.post(f"/api/students/{student['id']}/admit", headers=ADMIN)
            ids.append(student['id'])
        roster_url = f"/api/classes/{section['id']}/students"

        resp = self.client.post(roster_url, json={'student_ids': ids}, headers=ADMIN)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()['detail']['code'], 'class/capacity-exceeded')
        resp = self.client.post(roster_url, json={'student_ids': []}, headers=ADMIN)
        self.assertEqual(resp.status_code, 422)
        resp = self.client.post(roster_url, json={'student_ids': ids[:2]}, headers=TEACHER)
        self.assertEqual(resp.status_code, 403)

        resp = self.client.post(roster_url, json={'student_ids': ids[:2]}, headers=ADMIN)
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body['class']['enrolled'], 2)
        self.assertEqual([item['first_name'] for item in body['students']], ['Aarav', 'Diya'])
        self.assertEqual(self.client.get(roster_url, headers=ADMIN).json(), body)
        self.assertEqual(self.client.get('/api/classes/4040/students', headers=ADMIN).status_code, 404)

        listing = self.client.get('/api/students', params={'status': 'active'}, headers=ADMIN).json()
        self.assertEqual(listing['total'], 2)
        self.assertEqual(listing['counts']['active'], 2)
        self.assertEqual(listing['counts']['admitted'], 1)
        unassigned = self.client.get('/api/students', params={'unassigned': True}, headers=ADMIN).json()
        self.assertEqual([item['id'] for item in unassigned['items']], [ids[2]])
        self.assertEqual(self.client.get('/api/students', params={'status': 'graduated'}, headers=ADMIN).status_code, 422)
        self.assertEqual(self.client.get('/api/students', headers=TEACHER).status_code, 403)


if __name__ == '__main__':
    unittest.main()
