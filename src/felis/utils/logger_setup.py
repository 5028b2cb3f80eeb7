"""
Logging configuration shared by the API process.

    from felis.utils.logger_setup import setup_logging
    setup_logging("DEBUG")

Modules then use ``logging.getLogger(__name__)``.
"""
import logging


FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # re-init (app factory called twice, tests) must not duplicate output
    for handler in list(root.handlers):
        if getattr(handler, "_felis", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=FORMAT, datefmt=DATEFMT))
    handler._felis = True
    root.addHandler(handler)

    # tortoise logs every statement at DEBUG
    logging.getLogger("tortoise").setLevel(max(root.level, logging.INFO))
