import secrets
from typing import Optional

from sqlalchemy.orm import Session

from modules.signatures.models.signature_request import SignatureRequirement

TOKEN_BYTES = 32


class SignerTokenService:
    """Mints and resolves the bearer tokens handed to signers."""

    def __init__(self, db_session: Session):
        self.db = db_session

    @staticmethod
    def issue_token() -> str:
        # 256 bits from the OS CSPRNG, hex encoded (64 chars).
        return secrets.token_hex(TOKEN_BYTES)

    def issue_unique_tokens(self, count: int) -> list:
        tokens = set()
        while len(tokens) < count:
            tokens.add(self.issue_token())
        return list(tokens)

    def resolve(self, token: str) -> Optional[SignatureRequirement]:
        if not token or len(token) != TOKEN_BYTES * 2:
            return None
        return (
            self.db.query(SignatureRequirement)
            .filter(SignatureRequirement.auth_token == token)
            .first()
        )
