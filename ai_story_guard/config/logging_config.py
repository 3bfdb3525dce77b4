"""
Centralized logging configuration for the service.
"""

import logging
import sys
from typing import Optional

from .loader import ServiceConfig


def setup_logging(config: Optional[ServiceConfig] = None) -> None:
    """
    Setup centralized logging configuration.

    Args:
        config: ServiceConfig instance, uses defaults if None
    """
    config = config or ServiceConfig()

    logging.basicConfig(level=getattr(logging, config.log_level.upper()),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                        handlers=[logging.StreamHandler(sys.stdout)])
