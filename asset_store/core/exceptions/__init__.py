# asset_store/core/exceptions/__init__.py

from .base_exception import (
    BaseBusinessException,
    NotFoundException,
    InvalidArgumentException,
    AccessDeniedException,
)
from .asset_exceptions import (
    ConflictException,
    InvalidStateException,
    StorageInconsistencyException,
    UnsupportedVariantException,
    UpstreamFailureException,
)

__all__ = [
    "BaseBusinessException",
    "NotFoundException",
    "InvalidArgumentException",
    "AccessDeniedException",

    "ConflictException",
    "InvalidStateException",
    "StorageInconsistencyException",
    "UnsupportedVariantException",
    "UpstreamFailureException",
]
