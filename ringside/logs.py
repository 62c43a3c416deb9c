import os
import sys

from loguru import logger

LOG_DIR = os.environ.get("LOG_DIR", "")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

FORMAT = "{time} | {level} | {extra[log_type]} | {message}"

logger.configure(extra={"log_type": "app"})


def configure(log_dir: str | None = None, level: str | None = None) -> None:
    """Install the stderr sink and, with a log dir, the rotating files.

    Booking and payment records are split by the `log_type` extra that the
    flow modules bind.
    """
    log_dir = LOG_DIR if log_dir is None else log_dir
    level = level or LOG_LEVEL

    logger.remove()
    logger.add(sys.stderr, level=level, format=FORMAT)

    if not log_dir:
        return

    os.makedirs(log_dir, exist_ok=True)
    logger.add(
        f"{log_dir}/app.log",
        rotation="1 week",
        retention="4 weeks",
        level=level,
        enqueue=True,
        format=FORMAT,
    )
    logger.add(
        f"{log_dir}/bookings.log",
        rotation="1 week",
        retention="4 weeks",
        level="INFO",
        enqueue=True,
        filter=lambda record: record["extra"].get("log_type") == "booking",
        format=FORMAT,
    )
    logger.add(
        f"{log_dir}/payments.log",
        rotation="1 week",
        retention="4 weeks",
        level="INFO",
        enqueue=True,
        filter=lambda record: record["extra"].get("log_type") == "payment",
        format=FORMAT,
    )
    logger.add(
        f"{log_dir}/errors.log",
        rotation="1 week",
        retention="8 weeks",
        level="ERROR",
        enqueue=True,
        format=FORMAT,
    )


booking_log = logger.bind(log_type="booking")
payment_log = logger.bind(log_type="payment")
