# Common utilities
from vodguard.common.crypto import CryptoUtils as CryptoUtils
from vodguard.common.logging_utils import configure_logging as configure_logging
from vodguard.common.logging_utils import setup_logger as setup_logger
from vodguard.common.mixins import Configurable as Configurable

__all__ = ["Configurable", "CryptoUtils", "configure_logging", "setup_logger"]
