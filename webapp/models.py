"""
SQLAlchemy ORM models for the FDIC data schema.

Tables mirror the Supabase ``fdic_data`` schema. Monetary amounts are
reported in thousands of dollars, as published by the FDIC.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webapp.config import DB_SCHEMA
from webapp.database import Base


def _fk(table_column: str) -> ForeignKey:
    return ForeignKey(f"{DB_SCHEMA}.{table_column}")


class Institution(Base):
    __tablename__ = "institutions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cert: Mapped[str | None] = mapped_column(String(20))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    active: Mapped[str | None] = mapped_column(String(1))
    address: Mapped[str | None] = mapped_column(String(200))
    city: Mapped[str | None] = mapped_column(String(100))
    county: Mapped[str | None] = mapped_column(String(100))
    stalp: Mapped[str | None] = mapped_column(String(2))
    stname: Mapped[str | None] = mapped_column(String(50))
    zip: Mapped[str | None] = mapped_column(String(10))
    webaddr: Mapped[str | None] = mapped_column(Text)

    # Classification
    bkclass: Mapped[str | None] = mapped_column(String(4))
    cb: Mapped[str | None] = mapped_column(String(1))
    charter: Mapped[str | None] = mapped_column(String(20))
    chrtagnt: Mapped[str | None] = mapped_column(String(20))
    fedchrtr: Mapped[str | None] = mapped_column(String(1))
    stchrtr: Mapped[str | None] = mapped_column(String(1))
    regagnt: Mapped[str | None] = mapped_column(String(10))
    mutual: Mapped[str | None] = mapped_column(String(10))
    specgrp: Mapped[float | None] = mapped_column(Float)
    specgrpn: Mapped[str | None] = mapped_column(String(100))
    namehcr: Mapped[str | None] = mapped_column(String(200))
    cbsa: Mapped[str | None] = mapped_column(String(200))
    fed_rssd: Mapped[str | None] = mapped_column(String(20))

    # Financials (thousands of USD)
    asset: Mapped[float | None] = mapped_column(Float)
    dep: Mapped[float | None] = mapped_column(Float)
    depdom: Mapped[float | None] = mapped_column(Float)
    eq: Mapped[float | None] = mapped_column(Float)
    netinc: Mapped[float | None] = mapped_column(Float)
    netincq: Mapped[float | None] = mapped_column(Float)
    roa: Mapped[float | None] = mapped_column(Float)
    roaq: Mapped[float | None] = mapped_column(Float)
    roe: Mapped[float | None] = mapped_column(Float)
    roeq: Mapped[float | None] = mapped_column(Float)
    offices: Mapped[float | None] = mapped_column(Float)
    offdom: Mapped[float | None] = mapped_column(Float)
    offfor: Mapped[float | None] = mapped_column(Float)

    # Dates
    estymd: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    insdate: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    effdate: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    endefymd: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    repdte: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    dateupdt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    values: Mapped[list[ReportedValue]] = relationship(back_populates="institution")

    __table_args__ = (
        Index("idx_institutions_cert", "cert"),
        Index("idx_institutions_stalp", "stalp"),
        Index("idx_institutions_asset", "asset"),
        {"schema": DB_SCHEMA},
    )


class ReportPeriod(Base):
    __tablename__ = "report_periods"

    report_period_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_date: Mapped[str] = mapped_column(String(10), nullable=False)

    __table_args__ = (
        {"schema": DB_SCHEMA},
    )


class Field(Base):
    __tablename__ = "fields"

    field_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    field_name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    title: Mapped[str | None] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text)
    title_alt: Mapped[str | None] = mapped_column(String(300))
    description_alt: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        {"schema": DB_SCHEMA},
    )


class ReportedValue(Base):
    __tablename__ = "reported_values"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_period_id: Mapped[int] = mapped_column(Integer, _fk("report_periods.report_period_id"), nullable=False)
    field_id: Mapped[int] = mapped_column(Integer, _fk("fields.field_id"), nullable=False)
    institution_id: Mapped[int] = mapped_column(Integer, _fk("institutions.id"), nullable=False)
    value: Mapped[float | None] = mapped_column(Float)

    institution: Mapped[Institution] = relationship(back_populates="values")

    __table_args__ = (
        UniqueConstraint("report_period_id", "field_id", "institution_id", name="uq_reported_value"),
        Index("idx_reported_values_lookup", "report_period_id", "field_id", "institution_id"),
        {"schema": DB_SCHEMA},
    )
