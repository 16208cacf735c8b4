# create_tables.py
import logging

from database import engine, Base
# Importa todos los modelos para que se registren con Base
from modules.organizations.models import User, Organization, OrganizationMember  # noqa: F401
from modules.proposals.models import Proposal  # noqa: F401
from modules.notifications.models.notification import Notification  # noqa: F401
from modules.signatures.models import (  # noqa: F401
    SignatureRequest, SignatureRequirement, ReminderSchedule,
    Signature, CompletionCertificate, SignatureAuditEvent,
)

logger = logging.getLogger(__name__)


def create_tables(bind=None):
    """Crea todas las tablas en la base de datos"""
    bind = bind or engine
    logger.info("Tables to create: %s", list(Base.metadata.tables.keys()))
    Base.metadata.create_all(bind=bind)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_tables()
