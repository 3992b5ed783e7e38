"""
Unified database models for the application.
All SQLAlchemy models are defined here.
"""

from sqlalchemy import (
    JSON,
    Column,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Enum,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

Base = declarative_base()


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Enums
class Role(enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class DatasourceType(str, enum.Enum):
    TRACES = "traces"


class DatasourceSource(str, enum.Enum):
    """Backend kind of a datasource. Fixed at creation."""

    TEMPO = "tempo"
    JAEGER = "jaeger"
    CLICKHOUSE = "clickhouse"
    CUSTOM_API = "custom_api"


# User and Organisation Models
class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    memberships = relationship("Membership", back_populates="user")


class Organisation(Base):
    __tablename__ = "organisations"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    memberships = relationship("Membership", back_populates="organisation")
    datasources = relationship(
        "Datasource", back_populates="organisation", cascade="all, delete-orphan"
    )


class Membership(Base):
    __tablename__ = "memberships"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    organisation_id = Column(
        String, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(Enum(Role), nullable=False, default=Role.MEMBER)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="memberships")
    organisation = relationship("Organisation", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "organisation_id", name="uq_membership_user_organisation"
        ),
    )


class Datasource(Base):
    """
    A named, organisation-scoped pointer at one trace backend.

    The shape of `config` depends on `source`:
    - clickhouse: {"clickhouse": {host, port, database, tableName, username, password, protocol}}
    - tempo/jaeger: {"authentication": {type, username, password | token}}
    - custom_api: {"customApi": {baseUrl, endpoints, capabilities, authentication, headers}}

    Passwords, tokens and custom-api auth values are stored encrypted.
    """

    __tablename__ = "datasources"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    url = Column(String, nullable=True)
    type = Column(
        Enum(DatasourceType, values_callable=_enum_values, name="datasource_type"),
        nullable=False,
        default=DatasourceType.TRACES,
    )
    source = Column(
        Enum(DatasourceSource, values_callable=_enum_values, name="datasource_source"),
        nullable=False,
    )
    config = Column(JSON, nullable=True)

    organisation_id = Column(
        String, ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False
    )
    created_by_id = Column(String, ForeignKey("users.id"), nullable=True)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    organisation = relationship("Organisation", back_populates="datasources")

    __table_args__ = (
        Index("idx_datasources_organisation", "organisation_id"),
        Index("idx_datasources_organisation_name", "organisation_id", "name"),
    )
