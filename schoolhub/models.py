from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schoolhub.core.time_provider import default_time_provider
from schoolhub.db import Base


_utcnow = default_time_provider.utcnow


class Role(str, Enum):
    SUPER_ADMIN = 'super_admin'
    ADMIN = 'admin'
    TEACHER = 'teacher'
    PARENT = 'parent'


MODERATOR_ROLES = frozenset({Role.ADMIN.value, Role.SUPER_ADMIN.value})
AUTHOR_ROLES = frozenset({Role.TEACHER.value, Role.ADMIN.value, Role.SUPER_ADMIN.value})


class NewsPostStatus(str, Enum):
    DRAFT = 'draft'
    PENDING_REVIEW = 'pending_review'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    PUBLISHED = 'published'
    UNPUBLISHED = 'unpublished'


class NewsPostCategory(str, Enum):
    SCHOOL_NEWS = 'school-news'
    EVENTS = 'events'
    ANNOUNCEMENTS = 'announcements'
    ACADEMIC = 'academic'


class DocStatus(str, Enum):
    ACTIVE = 'active'
    DELETED = 'deleted'


class ClassStatus(str, Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class TeacherRole(str, Enum):
    PRIMARY = 'primary'
    ASSISTANT = 'assistant'


class StudentStatus(str, Enum):
    PENDING = 'pending'
    ADMITTED = 'admitted'
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    WITHDRAWN = 'withdrawn'


class AuthUser(Base):
    __tablename__ = 'auth_users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(180), default='')
    role: Mapped[str] = mapped_column(String(20), default=Role.TEACHER.value, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), default='')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    class_links: Mapped[list['ClassTeacherAssignment']] = relationship('ClassTeacherAssignment', back_populates='teacher')


class Grade(Base):
    __tablename__ = 'grades'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(80), unique=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    classes: Mapped[list['ClassSection']] = relationship('ClassSection', back_populates='grade')


class ClassSection(Base):
    __tablename__ = 'class_sections'
    __table_args__ = (
        Index('ix_class_sections_grade_status', 'grade_id', 'status'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    grade_id: Mapped[int] = mapped_column(ForeignKey('grades.id'), index=True)
    grade_name: Mapped[str] = mapped_column(String(80), default='')
    day: Mapped[str] = mapped_column(String(20), default='')
    time: Mapped[str] = mapped_column(String(60), default='')
    capacity: Mapped[int] = mapped_column(Integer, default=20)
    enrolled: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default=ClassStatus.ACTIVE.value, index=True)
    academic_year: Mapped[str] = mapped_column(String(20), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {'version_id_col': version_id}

    grade: Mapped['Grade'] = relationship('Grade', back_populates='classes')
    teachers: Mapped[list['ClassTeacherAssignment']] = relationship(
        'ClassTeacherAssignment',
        back_populates='class_section',
        cascade='all, delete-orphan',
        order_by='ClassTeacherAssignment.id',
    )
    students: Mapped[list['Student']] = relationship('Student', back_populates='class_section')


class ClassTeacherAssignment(Base):
    __tablename__ = 'class_teacher_assignments'
    __table_args__ = (
        UniqueConstraint('class_id', 'teacher_id', name='uq_class_teacher_assignments_class_teacher'),
        Index(
            'uq_class_teacher_assignments_one_primary',
            'class_id',
            unique=True,
            sqlite_where=text("role = 'primary'"),
            postgresql_where=text("role = 'primary'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('class_sections.id'), index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('auth_users.id'), index=True)
    teacher_name: Mapped[str] = mapped_column(String(180), default='')
    teacher_email: Mapped[str] = mapped_column(String(255), default='')
    role: Mapped[str] = mapped_column(String(20), default=TeacherRole.ASSISTANT.value, index=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    assigned_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    class_section: Mapped['ClassSection'] = relationship('ClassSection', back_populates='teachers')
    teacher: Mapped['AuthUser'] = relationship('AuthUser', back_populates='class_links')


class Student(Base):
    __tablename__ = 'students'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    first_name: Mapped[str] = mapped_column(String(80))
    last_name: Mapped[str] = mapped_column(String(80), default='')
    status: Mapped[str] = mapped_column(String(20), default=StudentStatus.PENDING.value, index=True)
    class_id: Mapped[int | None] = mapped_column(ForeignKey('class_sections.id'), nullable=True, index=True)
    class_name: Mapped[str] = mapped_column(String(120), default='')
    parent_id: Mapped[int | None] = mapped_column(ForeignKey('auth_users.id'), nullable=True, index=True)
    admitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    admitted_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {'version_id_col': version_id}

    class_section: Mapped['ClassSection | None'] = relationship('ClassSection', back_populates='students')


class NewsPost(Base):
    __tablename__ = 'news_posts'
    __table_args__ = (
        Index('ix_news_posts_status_doc_status', 'status', 'doc_status'),
        Index('ix_news_posts_public_order', 'status', 'is_pinned', 'priority', 'published_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    title_en: Mapped[str] = mapped_column(String(200))
    title_ta: Mapped[str] = mapped_column(String(200), default='')
    summary_en: Mapped[str] = mapped_column(String(300))
    summary_ta: Mapped[str] = mapped_column(String(300), default='')
    body_en: Mapped[str] = mapped_column(Text)
    body_ta: Mapped[str] = mapped_column(Text, default='')
    category: Mapped[str] = mapped_column(String(30), default=NewsPostCategory.SCHOOL_NEWS.value, index=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    meta_description_en: Mapped[str] = mapped_column(String(160), default='')
    meta_description_ta: Mapped[str] = mapped_column(String(160), default='')
    meta_keywords: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default=NewsPostStatus.DRAFT.value, index=True)
    doc_status: Mapped[str] = mapped_column(String(20), default=DocStatus.ACTIVE.value, index=True)
    priority: Mapped[int] = mapped_column(Integer, default=50)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    views: Mapped[int] = mapped_column(Integer, default=0)
    start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    author_id: Mapped[int] = mapped_column(ForeignKey('auth_users.id'), index=True)
    author_name: Mapped[str] = mapped_column(String(180), default='')
    author_role: Mapped[str] = mapped_column(String(20), default=Role.TEACHER.value)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reviewed_by_name: Mapped[str | None] = mapped_column(String(180), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    published_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    published_by_name: Mapped[str | None] = mapped_column(String(180), nullable=True)
    unpublished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    unpublished_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {'version_id_col': version_id}

    images: Mapped[list['NewsPostImage']] = relationship(
        'NewsPostImage',
        back_populates='post',
        cascade='all, delete-orphan',
        order_by='NewsPostImage.position',
    )


class NewsPostImage(Base):
    __tablename__ = 'news_post_images'
    __table_args__ = (
        Index('ix_news_post_images_post_kind', 'post_id', 'kind'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    post_id: Mapped[int] = mapped_column(ForeignKey('news_posts.id'), index=True)
    kind: Mapped[str] = mapped_column(String(20), default='gallery')  # featured | gallery
    url: Mapped[str] = mapped_column(String(1000))
    thumbnail_url: Mapped[str] = mapped_column(String(1000), default='')
    alt_en: Mapped[str] = mapped_column(String(300), default='')
    alt_ta: Mapped[str] = mapped_column(String(300), default='')
    caption_en: Mapped[str] = mapped_column(String(500), default='')
    caption_ta: Mapped[str] = mapped_column(String(500), default='')
    position: Mapped[int] = mapped_column(Integer, default=0)

    post: Mapped['NewsPost'] = relationship('NewsPost', back_populates='images')
