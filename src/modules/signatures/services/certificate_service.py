"""
Certificate of completion for a fully signed request.

The certificate lists every signature of the request in chronological
order together with an integrity digest over that list and the
completion time (see ``integrity.compute_integrity_digest``).
"""
import io
import logging
import secrets
from datetime import datetime
from typing import List

from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from reportlab.lib import colors
from sqlalchemy.orm import Session

from config import settings
from modules.proposals.services.proposal_collaborator import DocumentSnapshot
from modules.signatures.models.certificate import CompletionCertificate
from modules.signatures.models.signature import Signature
from modules.signatures.models.signature_request import SignatureRequest
from modules.signatures.services.integrity import compute_integrity_digest

logger = logging.getLogger(__name__)

LEGAL_STATEMENT = (
    "This certificate confirms that all parties have electronically signed this agreement "
    "in accordance with applicable electronic signature laws (ESIGN Act, UETA, eIDAS). "
    "The platform acts as a legal witness to this agreement."
)


class CertificateService:

    def __init__(self, db_session: Session, base_url: str = None):
        self.db = db_session
        self.base_url = (base_url or settings.CERTIFICATE_BASE_URL).rstrip("/")

    def signatures_for(self, request_id: int) -> List[Signature]:
        return (
            self.db.query(Signature)
            .filter(Signature.request_id == request_id)
            .order_by(Signature.signed_at.asc(), Signature.id.asc())
            .all()
        )

    @staticmethod
    def entries_for(signatures: List[Signature]) -> List[dict]:
        return [
            {
                "signer_name": sig.signer_name,
                "signer_email": sig.signer_email,
                "signed_at": sig.signed_at.isoformat(),
                "ip_address": sig.ip_address,
                "document_hash": sig.document_hash,
            }
            for sig in signatures
        ]

    def generate(self, request: SignatureRequest, document: DocumentSnapshot,
                 completed_at: datetime) -> CompletionCertificate:
        """Build and stage the certificate; the caller owns the commit."""
        entries = self.entries_for(self.signatures_for(request.id))
        digest = compute_integrity_digest(request.id, request.document_id, entries, completed_at)
        certificate_id = secrets.token_hex(16)

        payload = {
            "certificate_id": certificate_id,
            "request_id": request.id,
            "document_id": request.document_id,
            "document_title": document.title,
            "organization_name": document.organization_name,
            "signature_type": request.signature_type.value,
            "signing_order": request.signing_order.value,
            "signatures": entries,
            "document_hash": request.document_hash,
            "completed_at": completed_at.isoformat(),
            "integrity_digest": digest,
            "legal_statement": LEGAL_STATEMENT,
            "platform_witness": {
                "platform": "SignFlow",
                "witnessed_at": completed_at.isoformat(),
                "verification_method": "Email link verification and IP tracking",
                "compliance_frameworks": ["ESIGN Act", "UETA", "eIDAS"],
            },
        }
        certificate = CompletionCertificate(
            id=certificate_id,
            request_id=request.id,
            url=f"{self.base_url}/{certificate_id}.pdf",
            payload=payload,
            integrity_digest=digest,
            legal_statement=LEGAL_STATEMENT,
            completed_at=completed_at,
        )
        self.db.add(certificate)
        logger.info("Certificate %s generated for signature request %s", certificate_id, request.id)
        return certificate

    def verify(self, certificate: CompletionCertificate) -> bool:
        """Recompute the digest from the stored signatures."""
        request = certificate.request
        entries = self.entries_for(self.signatures_for(request.id))
        recomputed = compute_integrity_digest(
            request.id, request.document_id, entries, certificate.completed_at
        )
        return recomputed == certificate.integrity_digest

    @staticmethod
    def render_pdf(certificate: CompletionCertificate) -> bytes:
        payload = certificate.payload
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, title="Certificate of Completion",
                                leftMargin=0.8 * inch, rightMargin=0.8 * inch)
        styles = getSampleStyleSheet()
        story = [
            Paragraph("Certificate of Completion", styles["Title"]),
            Paragraph(f"Document: {payload['document_title']}", styles["Normal"]),
            Paragraph(f"Organization: {payload.get('organization_name') or '-'}", styles["Normal"]),
            Paragraph(f"Certificate ID: {certificate.id}", styles["Normal"]),
            Paragraph(f"Completed at: {payload['completed_at']} UTC", styles["Normal"]),
            Paragraph(f"Document hash: {payload['document_hash']}", styles["Normal"]),
            Spacer(1, 0.25 * inch),
        ]

        rows = [["Signer", "Email", "Signed at (UTC)", "IP address"]]
        for entry in payload["signatures"]:
            rows.append([entry["signer_name"], entry["signer_email"], entry["signed_at"], entry["ip_address"]])
        table = Table(rows, repeatRows=1)
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
        ]))
        story += [
            table,
            Spacer(1, 0.25 * inch),
            Paragraph(f"Integrity digest: {certificate.integrity_digest}", styles["Normal"]),
            Spacer(1, 0.15 * inch),
            Paragraph(certificate.legal_statement, styles["Italic"]),
        ]
        doc.build(story)
        return buffer.getvalue()
