from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum
from database import Base


class ProposalStatus(PyEnum):
    DRAFT = "DRAFT"
    FINAL = "FINAL"
    PENDING_REVIEW = "PENDING_REVIEW"
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"
    ARCHIVED = "ARCHIVED"


class Proposal(Base):
    __tablename__ = 'proposals'

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    status = Column(Enum(ProposalStatus), nullable=False, default=ProposalStatus.DRAFT)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    organization_id = Column(Integer, ForeignKey('organizations.id'), nullable=False)
    creator_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    organization = relationship("Organization", back_populates="proposals")
    creator = relationship("User")
