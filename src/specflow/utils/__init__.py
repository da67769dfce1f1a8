from .log import get_logger, setup_logging  # noqa: F401
from .config import load_config, save_config  # noqa: F401
