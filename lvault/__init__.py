__version__ = "0.3.0"

from .config import Config, get_config, set_config, load_config, reset_config
from .exceptions import (
    LVError,
    NotFound,
    IncorrectEncryptionKey,
    BadRequest,
    ContractError,
    Unauthorized,
    GatewayError,
    UploadCancelled,
)

__all__ = [
    "Config",
    "get_config",
    "set_config",
    "load_config",
    "reset_config",
    "LVError",
    "NotFound",
    "IncorrectEncryptionKey",
    "BadRequest",
    "ContractError",
    "Unauthorized",
    "GatewayError",
    "UploadCancelled",
]
