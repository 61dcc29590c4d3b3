from .archive import ArchiveOperation
from .background import BackgroundOperation
from .base import Operation
from .check import CheckOperation
from .command import CommandOperation
from .package import PackageOperation
from .user import UserOperation

OPERATION_REGISTRY = {
    "package": PackageOperation,
    "user": UserOperation,
    "archive": ArchiveOperation,
    "command": CommandOperation,
    "background": BackgroundOperation,
    "check": CheckOperation,
}

__all__ = [
    "Operation",
    "PackageOperation",
    "UserOperation",
    "ArchiveOperation",
    "CommandOperation",
    "BackgroundOperation",
    "CheckOperation",
    "OPERATION_REGISTRY",
]
