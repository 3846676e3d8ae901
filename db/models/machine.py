"""Tool Ledger — Factory and Machine ORM Models.

Reference data: factories own machines, machines hold tools in their
drives. Maintained by plant administration outside the ledger.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Integer, String

from db.base import Base


class Factory(Base):
    """A production plant."""
    __tablename__ = "factories"

    factory_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)


class Machine(Base):
    """A press or converting line that mounts tools."""
    __tablename__ = "machines"

    machine_id = Column(Integer, primary_key=True, autoincrement=True)
    machine_name = Column(String(255), nullable=False, index=True)
    factory_id = Column(Integer, ForeignKey("factories.factory_id"), nullable=True)
