import logging
from typing import Any, Dict, Optional

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s - %(message)s"


def setup_logging(logging_cfg: Optional[Dict[str, Any]] = None) -> None:
    logging_cfg = logging_cfg or {}
    level = logging_cfg.get("level", "INFO")
    fmt = logging_cfg.get("format", DEFAULT_FORMAT)
    logging.basicConfig(level=level, format=fmt)
