"""
Module: colony_ledger.models.registry
Responsibility: ORM persistence for the identities the ledger refers to:
    habitat domes and fungible resource types.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Dome.code and Resource.code are unique.

Non-goals:
    - CRUD over these tables belongs to the outer API layer; the ledger
      only checks that referenced identities exist.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from colony_ledger.db.base import Base, UTCDateTime


class DomeType(str, Enum):
    """Functional role of a dome."""

    HABITATION = "HABITATION"
    AGRICULTURE = "AGRICULTURE"
    INDUSTRIAL = "INDUSTRIAL"
    COMMAND = "COMMAND"


class DomeStatus(str, Enum):
    """Operational status of a dome."""

    OPERATIONAL = "OPERATIONAL"
    MAINTENANCE = "MAINTENANCE"
    OFFLINE = "OFFLINE"


class ResourceCategory(str, Enum):
    """High-level resource categories used in the colony."""

    SUPPLIES = "SUPPLIES"
    CONSTRUCTION = "CONSTRUCTION"
    ENERGY = "ENERGY"
    MEDICAL = "MEDICAL"
    LIFE_SUPPORT = "LIFE_SUPPORT"
    MISC = "MISC"


class Dome(Base):
    """A habitat unit in the colony; the partitioning key for stock."""

    __tablename__ = "domes"

    __table_args__ = (
        UniqueConstraint("code", name="uq_dome_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    dome_type: Mapped[DomeType] = mapped_column(
        String(20),
        nullable=False,
        default=DomeType.HABITATION.value,
    )

    status: Mapped[DomeStatus] = mapped_column(
        String(20),
        nullable=False,
        default=DomeStatus.OPERATIONAL.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Dome {self.code}: {self.name} ({self.status})>"


class Resource(Base):
    """A fungible commodity type (water, oxygen, food, ...)."""

    __tablename__ = "resources"

    __table_args__ = (
        UniqueConstraint("code", name="uq_resource_code"),
    )

    # e.g. WATER, OXYGEN
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # e.g. L, kg
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    category: Mapped[ResourceCategory] = mapped_column(
        String(20),
        nullable=False,
        default=ResourceCategory.MISC.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Resource {self.code}: {self.name} [{self.unit}]>"
