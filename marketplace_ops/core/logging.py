import json
import logging
import os
import sys
from typing import Any


class StructuredAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        if isinstance(msg, dict):
            msg = json.dumps(msg, default=str)
        return msg, kwargs


def get_logger(name: str) -> StructuredAdapter:
    logger = logging.getLogger(name)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    if not logger.handlers:
        # stderr keeps operator summaries on stdout clean
        handler = logging.StreamHandler(sys.stderr)
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return StructuredAdapter(logger, {})


logger = get_logger("marketplace_ops")
