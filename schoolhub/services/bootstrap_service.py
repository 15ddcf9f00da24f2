import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from schoolhub.config import settings
from schoolhub.models import AuthUser, Grade, Role
from schoolhub.services.auth_service import hash_password


logger = logging.getLogger(__name__)

DEFAULT_GRADES = (
    'LKG',
    'UKG',
    'Grade 1',
    'Grade 2',
    'Grade 3',
    'Grade 4',
    'Grade 5',
    'Grade 6',
    'Grade 7',
    'Grade 8',
    'Grade 9',
    'Grade 10',
    'Grade 11',
    'Grade 12',
)


def _ensure_bootstrap_admin(db: Session) -> dict:
    email = (settings.bootstrap_admin_email or '').strip().lower()
    password = settings.bootstrap_admin_password or ''
    if not email or not password:
        return {'ensured': False, 'reason': 'no_bootstrap_admin'}

    row = db.query(AuthUser).filter(func.lower(AuthUser.email) == email).first()
    if row:
        if row.role != Role.SUPER_ADMIN.value or not row.is_active:
            row.role = Role.SUPER_ADMIN.value
            row.is_active = True
            db.commit()
            logger.warning('bootstrap_admin_updated email=%s', email)
            return {'ensured': True, 'inserted': False, 'updated': True}
        return {'ensured': True, 'inserted': False, 'updated': False}

    try:
        password_hash = hash_password(password)
    except ValueError:
        logger.warning('bootstrap_admin_skipped reason=weak_password')
        return {'ensured': False, 'reason': 'weak_password'}
    db.add(
        AuthUser(
            email=email,
            name=settings.bootstrap_admin_name or 'Administrator',
            role=Role.SUPER_ADMIN.value,
            password_hash=password_hash,
            is_active=True,
        )
    )
    db.commit()
    logger.warning('bootstrap_admin_inserted email=%s - rotate the password after setup', email)
    return {'ensured': True, 'inserted': True}


def _seed_grades_if_empty(db: Session) -> dict:
    if db.query(Grade.id).first():
        return {'seeded': False, 'reason': 'grades_present'}
    db.add_all(Grade(name=name, display_order=index) for index, name in enumerate(DEFAULT_GRADES))
    db.commit()
    logger.info('bootstrap_grades_seeded count=%s', len(DEFAULT_GRADES))
    return {'seeded': True, 'count': len(DEFAULT_GRADES)}


def run_bootstrap(db: Session) -> dict:
    admin_result = _ensure_bootstrap_admin(db)
    grades_result = _seed_grades_if_empty(db)
    ran = bool(admin_result.get('inserted') or admin_result.get('updated') or grades_result.get('seeded'))
    if not ran:
        logger.info('bootstrap_skip admin=%s grades=%s', admin_result, grades_result)
    return {'ran': ran, 'admin': admin_result, 'grades': grades_result}
