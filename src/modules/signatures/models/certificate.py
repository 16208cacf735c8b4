from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base


class CompletionCertificate(Base):
    __tablename__ = "completion_certificates"

    id = Column(String(32), primary_key=True)
    request_id = Column(Integer, ForeignKey("signature_requests.id"), nullable=False, unique=True)
    url = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False)
    integrity_digest = Column(String(64), nullable=False)
    legal_statement = Column(Text, nullable=False)
    completed_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    request = relationship("SignatureRequest", back_populates="certificate")
