# backend/conversly/utils/logger.py
from loguru import logger
import sys

logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level="INFO"
)

logger.add(
    "logs/conversly_{time:YYYY-MM-DD}.log",
    rotation="100 MB",
    retention="10 days",
    level="DEBUG",
    delay=True,
)

# Post-call pipeline failures ("step=<name> conversation_id=..."), the worklist for manual re-analysis
logger.add(
    "logs/conversly_pipeline_failures.log",
    rotation="20 MB",
    retention="30 days",
    level="ERROR",
    filter=lambda record: "step=" in record["message"],
    delay=True,
)
