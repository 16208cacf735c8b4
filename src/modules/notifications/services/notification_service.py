# modules/notifications/services/notification_service.py
from typing import List, Optional

from modules.notifications.models.notification import Notification
from modules.notifications.repositories.notification_repository import NotificationRepository


class NotificationTemplate:
    def __init__(self, user_id: int, type: str, title: str, message: str,
                 resource_type: Optional[str] = None, resource_id: Optional[int] = None):
        self.user_id = user_id
        self.type = type
        self.title = title
        self.message = message
        self.resource_type = resource_type
        self.resource_id = resource_id

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
        }


class SignatureDeclinedNotification(NotificationTemplate):
    def __init__(self, user_id: int, signer_name: str, document_title: str, document_id: int):
        super().__init__(
            user_id,
            type="STATUS_CHANGE",
            title="Signature Declined",
            message=f'{signer_name} declined to sign "{document_title}"',
            resource_type="proposal",
            resource_id=document_id,
        )


class AgreementSignedNotification(NotificationTemplate):
    def __init__(self, user_id: int, document_title: str, document_id: int):
        super().__init__(
            user_id,
            type="PROPOSAL_SIGNED",
            title="Agreement Signed",
            message=(
                f'All parties have signed "{document_title}". '
                "The agreement is now legally binding."
            ),
            resource_type="proposal",
            resource_id=document_id,
        )


class NotificationService:
    def __init__(self, repository: NotificationRepository):
        self.notification_repository = repository

    def _create(self, template: NotificationTemplate) -> Notification:
        notif = Notification(**template.to_dict())
        return self.notification_repository.save(notif)

    def create_signature_declined_notification(
        self,
        user_id: int,
        signer_name: str,
        document_title: str,
        document_id: int,
    ) -> Notification:
        return self._create(SignatureDeclinedNotification(user_id, signer_name, document_title, document_id))

    def create_agreement_signed_notification(
        self,
        user_id: int,
        document_title: str,
        document_id: int,
    ) -> Notification:
        return self._create(AgreementSignedNotification(user_id, document_title, document_id))

    def get_notifications(self, user_id: int) -> List[Notification]:
        return self.notification_repository.find_by_user_id(user_id)

    def mark_as_read(self, notification_id: int, user_id: int) -> Optional[Notification]:
        return self.notification_repository.update(notification_id, user_id, {'read': True})
