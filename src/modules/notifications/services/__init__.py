from .email_dispatcher import EmailDispatcher, EmailMessage, LoggingTransport, SmtpTransport
from .notification_service import NotificationService
from .outbox import Outbox

__all__ = [
    'EmailDispatcher', 'EmailMessage', 'LoggingTransport', 'SmtpTransport',
    'NotificationService', 'Outbox',
]
