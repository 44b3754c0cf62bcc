from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, Boolean, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from evofit.db.base import Base
import uuid


class Customer(Base):
    __tablename__ = "customer"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    trainer_id = Column(String, nullable=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    age = Column(Integer, nullable=True)
    health_conditions = Column(JSON, nullable=True)  # free text list
    medications = Column(JSON, nullable=True)        # free text list
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TrainerProtocol(Base):
    __tablename__ = "trainer_health_protocol"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    trainer_id = Column(String, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(50), nullable=False, index=True)  # longevity, parasite-cleanse, ailments, custom
    duration = Column(Integer, nullable=False)             # days
    intensity = Column(String(20), nullable=False)         # gentle, moderate, intensive
    config = Column(JSON, nullable=False, default=dict)
    tags = Column(JSON, nullable=True)
    version = Column(String(20), nullable=False, default="1.0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    versions = relationship("ProtocolVersion", back_populates="protocol", order_by="ProtocolVersion.sequence")

    def to_dict(self):
        return {
            "id": self.id,
            "trainer_id": self.trainer_id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "duration": self.duration,
            "intensity": self.intensity,
            "config": self.config,
            "tags": self.tags or [],
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProtocolVersion(Base):
    __tablename__ = "protocol_version"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    protocol_id = Column(String, ForeignKey("trainer_health_protocol.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)  # insertion order, never reused
    version_number = Column(String(20), nullable=False)
    version_name = Column(String(255), nullable=True)
    changelog = Column(Text, default="")
    config = Column(JSON, nullable=False)
    is_active = Column(Boolean, default=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    protocol = relationship("TrainerProtocol", back_populates="versions")

    __table_args__ = (
        Index("protocol_version_protocol_seq_idx", "protocol_id", "sequence", unique=True),
    )


class ProtocolAssignment(Base):
    __tablename__ = "protocol_assignment"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    protocol_id = Column(String, ForeignKey("trainer_health_protocol.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(String, ForeignKey("customer.id", ondelete="CASCADE"), nullable=False, index=True)
    trainer_id = Column(String, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active")  # active, paused, completed, cancelled
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    progress_data = Column(JSON, nullable=True)  # baseline + weekly progress + effectiveness
    assigned_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    protocol = relationship("TrainerProtocol")
