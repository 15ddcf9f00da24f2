from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from schoolhub.core.identity import Principal, StaticIdentity
from schoolhub.db import Base, SessionLocal, engine
from schoolhub.models import AuthUser, ClassSection, Role
from schoolhub.services.auth_service import hash_password
from schoolhub.services.bootstrap_service import run_bootstrap
from schoolhub.services.class_roster_service import ClassRosterService
from schoolhub.services.enrollment_service import EnrollmentService
from schoolhub.services.news_service import NewsWorkflowService


Base.metadata.create_all(bind=engine)

db = SessionLocal()
try:
    run_bootstrap(db)
    if not db.query(ClassSection).first():
        admin = AuthUser(
            email='admin@example.org',
            name='Sample Admin',
            role=Role.ADMIN.value,
            password_hash=hash_password('admin12345'),
        )
        teachers = [
            AuthUser(email='kavya@example.org', name='Kavya', role=Role.TEACHER.value, password_hash=hash_password('teacher123')),
            AuthUser(email='arjun@example.org', name='Arjun', role=Role.TEACHER.value, password_hash=hash_password('teacher123')),
        ]
        db.add(admin)
        db.add_all(teachers)
        db.commit()

        identity = StaticIdentity(Principal(id=admin.id, role=admin.role, name=admin.name, email=admin.email))
        roster = ClassRosterService(db, identity)
        grade = roster.list_grades()[2]
        section = roster.create_class({'name': f'{grade.name} A', 'grade_id': grade.id, 'day': 'Mon-Fri', 'time': '09:00', 'capacity': 30})
        roster.assign_teacher(section.id, teachers[0].id, 'primary')
        roster.assign_teacher(section.id, teachers[1].id, 'assistant')

        enrollment = EnrollmentService(db, identity)
        for first_name in ('Aarav', 'Diya', 'Ishaan'):
            student = enrollment.create_student({'first_name': first_name})
            enrollment.admit_student(student.id)
            enrollment.assign_student_to_class(student.id, section.id)

        news = NewsWorkflowService(db, identity)
        post = news.create(
            {
                'title': {'en': 'Welcome back to school', 'ta': 'பள்ளிக்கு மீண்டும் வருக'},
                'summary': {'en': 'The new academic year starts on Monday.'},
                'body': {'en': '<p>Classes resume on Monday at 9 AM.</p>'},
                'category': 'announcements',
                'tags': ['academic-year'],
            }
        )
        news.publish(post.id)
finally:
    db.close()

print('DB initialized with sample data.')
