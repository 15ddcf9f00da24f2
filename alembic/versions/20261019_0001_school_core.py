"""school core: users, grades, classes, teacher roster, students

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261019_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'auth_users' not in existing_tables:
        op.create_table(
            'auth_users',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('name', sa.String(length=180), nullable=False, server_default=''),
            sa.Column('role', sa.String(length=20), nullable=False, server_default='teacher'),
            sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_auth_users_id', 'auth_users', ['id'])
        op.create_index('ix_auth_users_email', 'auth_users', ['email'], unique=True)
        op.create_index('ix_auth_users_role', 'auth_users', ['role'])
        op.create_index('ix_auth_users_is_active', 'auth_users', ['is_active'])

    if 'grades' not in existing_tables:
        op.create_table(
            'grades',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=80), nullable=False, unique=True),
            sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_grades_id', 'grades', ['id'])

    if 'class_sections' not in existing_tables:
        op.create_table(
            'class_sections',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('grade_id', sa.Integer(), sa.ForeignKey('grades.id'), nullable=False),
            sa.Column('grade_name', sa.String(length=80), nullable=False, server_default=''),
            sa.Column('day', sa.String(length=20), nullable=False, server_default=''),
            sa.Column('time', sa.String(length=60), nullable=False, server_default=''),
            sa.Column('capacity', sa.Integer(), nullable=False, server_default='20'),
            sa.Column('enrolled', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
            sa.Column('academic_year', sa.String(length=20), nullable=False, server_default=''),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        )
        op.create_index('ix_class_sections_id', 'class_sections', ['id'])
        op.create_index('ix_class_sections_grade_id', 'class_sections', ['grade_id'])
        op.create_index('ix_class_sections_status', 'class_sections', ['status'])
        op.create_index('ix_class_sections_grade_status', 'class_sections', ['grade_id', 'status'])

    if 'class_teacher_assignments' not in existing_tables:
        op.create_table(
            'class_teacher_assignments',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('class_id', sa.Integer(), sa.ForeignKey('class_sections.id'), nullable=False),
            sa.Column('teacher_id', sa.Integer(), sa.ForeignKey('auth_users.id'), nullable=False),
            sa.Column('teacher_name', sa.String(length=180), nullable=False, server_default=''),
            sa.Column('teacher_email', sa.String(length=255), nullable=False, server_default=''),
            sa.Column('role', sa.String(length=20), nullable=False, server_default='assistant'),
            sa.Column('assigned_at', sa.DateTime(), nullable=True),
            sa.Column('assigned_by', sa.Integer(), nullable=True),
            sa.UniqueConstraint('class_id', 'teacher_id', name='uq_class_teacher_assignments_class_teacher'),
        )
        op.create_index('ix_class_teacher_assignments_id', 'class_teacher_assignments', ['id'])
        op.create_index('ix_class_teacher_assignments_class_id', 'class_teacher_assignments', ['class_id'])
        op.create_index('ix_class_teacher_assignments_teacher_id', 'class_teacher_assignments', ['teacher_id'])
        op.create_index('ix_class_teacher_assignments_role', 'class_teacher_assignments', ['role'])
        op.create_index(
            'uq_class_teacher_assignments_one_primary',
            'class_teacher_assignments',
            ['class_id'],
            unique=True,
            sqlite_where=sa.text("role = 'primary'"),
            postgresql_where=sa.text("role = 'primary'"),
        )

    if 'students' not in existing_tables:
        op.create_table(
            'students',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('first_name', sa.String(length=80), nullable=False),
            sa.Column('last_name', sa.String(length=80), nullable=False, server_default=''),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('class_id', sa.Integer(), sa.ForeignKey('class_sections.id'), nullable=True),
            sa.Column('class_name', sa.String(length=120), nullable=False, server_default=''),
            sa.Column('parent_id', sa.Integer(), sa.ForeignKey('auth_users.id'), nullable=True),
            sa.Column('admitted_at', sa.DateTime(), nullable=True),
            sa.Column('admitted_by', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        )
        op.create_index('ix_students_id', 'students', ['id'])
        op.create_index('ix_students_status', 'students', ['status'])
        op.create_index('ix_students_class_id', 'students', ['class_id'])
        op.create_index('ix_students_parent_id', 'students', ['parent_id'])


def downgrade() -> None:
    existing_tables = set(sa.inspect(op.get_bind()).get_table_names())
    for table_name in ('students', 'class_teacher_assignments', 'class_sections', 'grades', 'auth_users'):
        if table_name in existing_tables:
            op.drop_table(table_name)
