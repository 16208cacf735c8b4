# src/modules/signatures/models/signature.py

from sqlalchemy import Column, Integer, ForeignKey, DateTime, String, Text, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
from modules.signatures.models.signature_request import SignatureType


class Signature(Base):
    """Append-only record written at the moment a signer signs."""
    __tablename__ = "signatures"

    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey("proposals.id"), nullable=False, index=True)
    request_id = Column(Integer, ForeignKey("signature_requests.id"), nullable=False, index=True)
    requirement_id = Column(Integer, ForeignKey("signature_requirements.id"), nullable=False, unique=True)

    signer_email = Column(String, nullable=False)
    signer_name = Column(String, nullable=False)
    signature_type = Column(Enum(SignatureType), nullable=False)
    signature_image = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=False)
    user_agent = Column(Text, nullable=False)
    geo_location = Column(String(255), nullable=True)
    document_hash = Column(String(64), nullable=False)
    signed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    requirement = relationship("SignatureRequirement")
