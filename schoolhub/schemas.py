from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class BilingualTextIn(BaseModel):
    en: str = ''
    ta: str = ''


class NewsImageIn(BaseModel):
    url: str
    thumbnail_url: str = ''
    alt: BilingualTextIn = Field(default_factory=BilingualTextIn)
    caption: BilingualTextIn | None = None
    order: int | None = None


class NewsPostCreateRequest(BaseModel):
    title: BilingualTextIn
    summary: BilingualTextIn
    body: BilingualTextIn
    category: str
    tags: list[str] = Field(default_factory=list)
    featured_image: NewsImageIn | None = None
    images: list[NewsImageIn] = Field(default_factory=list)
    priority: int = 50
    start_date: datetime | None = None
    end_date: datetime | None = None
    meta_description: BilingualTextIn | None = None
    meta_keywords: list[str] = Field(default_factory=list)


class NewsPostUpdateRequest(BaseModel):
    title: BilingualTextIn | None = None
    summary: BilingualTextIn | None = None
    body: BilingualTextIn | None = None
    category: str | None = None
    tags: list[str] | None = None
    featured_image: NewsImageIn | None = None
    images: list[NewsImageIn] | None = None
    priority: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    meta_description: BilingualTextIn | None = None
    meta_keywords: list[str] | None = None


class NewsRejectRequest(BaseModel):
    reason: str = ''


class NewsPinRequest(BaseModel):
    is_pinned: bool


class GradeCreateRequest(BaseModel):
    name: str
    display_order: int = 0


class ClassCreateRequest(BaseModel):
    name: str
    grade_id: int
    day: str = ''
    time: str = ''
    capacity: int = Field(default=20, ge=1)
    academic_year: str = ''


class ClassUpdateRequest(BaseModel):
    name: str | None = None
    grade_id: int | None = None
    day: str | None = None
    time: str | None = None
    capacity: int | None = Field(default=None, ge=1)
    academic_year: str | None = None


class TeacherAssignRequest(BaseModel):
    teacher_id: int
    role: Literal['primary', 'assistant'] = 'assistant'


class TeacherRoleUpdateRequest(BaseModel):
    teacher_id: int
    role: Literal['primary', 'assistant']


class StudentCreateRequest(BaseModel):
    first_name: str
    last_name: str = ''
    parent_id: int | None = None


class StudentAssignClassRequest(BaseModel):
    class_id: int


class StudentBulkAssignRequest(BaseModel):
    student_ids: list[int] = Field(min_length=1)


class StudentDeactivateRequest(BaseModel):
    status: Literal['inactive', 'withdrawn'] = 'inactive'


class PasswordLoginRequest(BaseModel):
    email: str
    password: str
