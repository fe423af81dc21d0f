"""
Pydantic schemas for API request/response models.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


# ── Pagination ──

class PaginatedResponse(BaseModel):
    total: int
    page: int
    size: int
    pages: int


def page_count(total: int, size: int) -> int:
    return (total + size - 1) // size if total > 0 else 1


def _reject_null(value):
    # Partial updates may omit a required column, but never clear it.
    if value is None:
        raise ValueError("must not be null")
    return value


# ── Employees ──

class EmployeeProfile(BaseModel):
    employee_number: str = Field(min_length=1, max_length=30)
    full_name_ar: str = Field(min_length=1, max_length=200)
    full_name_en: str | None = None
    job_title: str | None = None
    phone: str | None = None
    department_id: int | None = None
    specialization_id: int | None = None
    hire_date: date | None = None


class EmployeeCreate(EmployeeProfile):
    user_id: int | None = None


class EmployeeUpdate(BaseModel):
    full_name_ar: str | None = None
    full_name_en: str | None = None
    job_title: str | None = None
    phone: str | None = None
    department_id: int | None = None
    specialization_id: int | None = None
    hire_date: date | None = None
    is_active: bool | None = None

    @field_validator("full_name_ar", "is_active")
    @classmethod
    def required_fields(cls, value):
        return _reject_null(value)


# ── Users ──

class UserCreate(BaseModel):
    email: EmailStr
    password: str | None = None  # auto-generated if omitted
    role_level: int = Field(4, ge=2, le=5)
    is_active: bool = True
    employee: EmployeeProfile | None = None


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    password: str | None = None
    role_level: int | None = Field(None, ge=2, le=5)
    is_active: bool | None = None


# ── Departments ──

class DepartmentCreate(BaseModel):
    name_ar: str = Field(min_length=1, max_length=100)
    name_en: str = Field(min_length=1, max_length=100)
    description: str | None = None


class SpecializationCreate(BaseModel):
    name_ar: str = Field(min_length=1, max_length=100)
    name_en: str = Field(min_length=1, max_length=100)


# ── Clients ──

class ClientCreate(BaseModel):
    full_name_ar: str = Field(min_length=1, max_length=200)
    full_name_en: str | None = None
    company_name: str | None = None
    business_field: str | None = None
    primary_phone: str = Field(min_length=1, max_length=30)
    primary_email: EmailStr
    address: str | None = None
    country: str | None = None
    category_id: int | None = None
    assigned_employee_id: int | None = None
    contract_number: str | None = None
    contract_start_date: date | None = None
    contract_end_date: date | None = None
    contract_value: Decimal | None = None
    contract_currency: str = "SAR"
    payment_type: str = Field("postpaid", pattern="^(prepaid|postpaid)$")


class ClientUpdate(BaseModel):
    full_name_ar: str | None = None
    full_name_en: str | None = None
    company_name: str | None = None
    business_field: str | None = None
    primary_phone: str | None = None
    primary_email: EmailStr | None = None
    address: str | None = None
    country: str | None = None
    category_id: int | None = None
    assigned_employee_id: int | None = None
    contract_start_date: date | None = None
    contract_end_date: date | None = None
    contract_value: Decimal | None = None
    contract_currency: str | None = None
    payment_type: str | None = Field(None, pattern="^(prepaid|postpaid)$")
    status: str | None = Field(None, pattern="^(active|inactive|suspended)$")

    @field_validator(
        "full_name_ar", "primary_phone", "primary_email", "contract_currency", "payment_type", "status",
    )
    @classmethod
    def required_fields(cls, value):
        return _reject_null(value)


class ClientCategoryCreate(BaseModel):
    name_ar: str = Field(min_length=1, max_length=100)
    name_en: str = Field(min_length=1, max_length=100)
    specialization_id: int | None = None
    description: str | None = None


# ── Tasks ──

TASK_STATUSES = ("new", "in_progress", "on_hold", "under_review", "completed", "delayed", "cancelled")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category_id: int | None = None
    priority: str = Field("medium", pattern="^(low|medium|high|urgent)$")
    expected_duration: int | None = Field(None, ge=1)  # hours
    start_date: date | None = None
    due_date: date | None = None
    client_id: int | None = None
    assigned_to: int | None = None


class TaskUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    category_id: int | None = None
    priority: str | None = Field(None, pattern="^(low|medium|high|urgent)$")
    expected_duration: int | None = Field(None, ge=1)
    start_date: date | None = None
    due_date: date | None = None
    client_id: int | None = None
    assigned_to: int | None = None

    @field_validator("title", "priority")
    @classmethod
    def required_fields(cls, value):
        return _reject_null(value)


class TaskStatusUpdate(BaseModel):
    status: str = Field(pattern=f"^({'|'.join(TASK_STATUSES)})$")
    progress_percentage: int | None = Field(None, ge=0, le=100)
    note: str | None = None


class TaskCommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)


class TaskCategoryCreate(BaseModel):
    name_ar: str = Field(min_length=1, max_length=100)
    name_en: str = Field(min_length=1, max_length=100)
    specialization_id: int | None = None
    description: str | None = None


# ── Financial ──

class PaymentCreate(BaseModel):
    client_id: int
    amount: Decimal = Field(gt=0)
    currency: str = "SAR"
    description: str | None = None
    due_date: date | None = None


# ── Audit ──

class AuditEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int | None
    action: str
    resource_type: str | None
    resource_id: str | None
    ip_address: str | None
    details: dict | None
    created_at: datetime


class AuditListResponse(PaginatedResponse):
    items: list[AuditEntry]
