from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from .users import UserRepo
from .settings import SettingsRepo, DEFAULT_SETTINGS
from .transactions import TransactionRepo
from .rounds import RoundRepo
from .notifications import NotificationRepo
from .manager import StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "UserRepo",
    "SettingsRepo",
    "DEFAULT_SETTINGS",
    "TransactionRepo",
    "RoundRepo",
    "NotificationRepo",
    "StorageManager",
]
