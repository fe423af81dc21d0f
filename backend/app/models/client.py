from datetime import date, datetime
from typing import Optional
from decimal import Decimal

from sqlalchemy import String, Boolean, Date, DateTime, Numeric, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class ClientCategory(Base):
    __tablename__ = "client_categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name_ar: Mapped[str] = mapped_column(String(100))
    name_en: Mapped[str] = mapped_column(String(100))
    specialization_id: Mapped[int | None] = mapped_column(ForeignKey("specializations.id"), nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    specialization: Mapped[Optional["Specialization"]] = relationship()  # noqa: F821


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True)
    full_name_ar: Mapped[str] = mapped_column(String(200))
    full_name_en: Mapped[str | None] = mapped_column(String(200), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    business_field: Mapped[str | None] = mapped_column(String(100), nullable=True)
    primary_phone: Mapped[str] = mapped_column(String(30))
    primary_email: Mapped[str] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    country: Mapped[str | None] = mapped_column(String(60), nullable=True)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("client_categories.id"), nullable=True, index=True)
    assigned_employee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True, index=True)
    contract_number: Mapped[str] = mapped_column(String(40), unique=True)
    contract_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    contract_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    contract_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    contract_currency: Mapped[str] = mapped_column(String(3), default="SAR")
    payment_type: Mapped[str] = mapped_column(String(20), default="postpaid")  # "prepaid" | "postpaid"
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    category: Mapped[Optional["ClientCategory"]] = relationship()
    history: Mapped[list["ClientHistory"]] = relationship(back_populates="client", cascade="all, delete-orphan")


class ClientHistory(Base):
    __tablename__ = "client_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), index=True)
    action_type: Mapped[str] = mapped_column(String(20))  # "CREATE" | "UPDATE" | "DELETE"
    action_description: Mapped[str] = mapped_column(String(500))
    performed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    client: Mapped["Client"] = relationship(back_populates="history")
