"""
Entities tracked by the news module.

A revenue owner's "call diet" is the set of companies, people and tags
linked to them through the association tables below.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Table
from sqlalchemy.orm import relationship

from ..core.db import Base


revenue_owner_companies = Table(
    "revenue_owner_companies",
    Base.metadata,
    Column("revenue_owner_id", Integer, ForeignKey("revenue_owners.id", ondelete="CASCADE"), primary_key=True),
    Column("company_id", Integer, ForeignKey("tracked_companies.id", ondelete="CASCADE"), primary_key=True),
)

revenue_owner_people = Table(
    "revenue_owner_people",
    Base.metadata,
    Column("revenue_owner_id", Integer, ForeignKey("revenue_owners.id", ondelete="CASCADE"), primary_key=True),
    Column("person_id", Integer, ForeignKey("tracked_people.id", ondelete="CASCADE"), primary_key=True),
)

revenue_owner_tags = Table(
    "revenue_owner_tags",
    Base.metadata,
    Column("revenue_owner_id", Integer, ForeignKey("revenue_owners.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("news_tags.id", ondelete="CASCADE"), primary_key=True),
)


class TrackedCompany(Base):
    __tablename__ = "tracked_companies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    ticker = Column(String(16), nullable=True)
    cik = Column(String(16), nullable=True)
    cusip = Column(String(16), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TrackedPerson(Base):
    __tablename__ = "tracked_people"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    title = Column(String(200), nullable=True)
    company_id = Column(Integer, ForeignKey("tracked_companies.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class NewsTag(Base):
    __tablename__ = "news_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    category = Column(String(32), nullable=True)  # "topic" | "sector" | ...
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class RevenueOwner(Base):
    __tablename__ = "revenue_owners"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    companies = relationship(TrackedCompany, secondary=revenue_owner_companies, order_by=TrackedCompany.name)
    people = relationship(TrackedPerson, secondary=revenue_owner_people, order_by=TrackedPerson.name)
    tags = relationship(NewsTag, secondary=revenue_owner_tags, order_by=NewsTag.name)
