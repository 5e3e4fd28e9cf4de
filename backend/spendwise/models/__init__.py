from spendwise.models.alert import AlertInstanceRecord
from spendwise.models.notification import Notification

__all__ = [
    "AlertInstanceRecord",
    "Notification",
]
