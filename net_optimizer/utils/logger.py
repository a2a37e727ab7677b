import logging
import functools
import time

# Define Log Levels
DEBUG = logging.DEBUG
INFO = logging.INFO
WARNING = logging.WARNING
ERROR = logging.ERROR

LOG_FORMAT = "%(asctime)s - [%(levelname)s] - %(name)s - [%(filename)s:%(lineno)d] - %(message)s"


# Singleton logger setup
def get_logger(name="NetOptimizer"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


logger = get_logger()


def set_log_level(level):
    logger.setLevel(level)


def log_optimization(func):
    """Aspect: Log a pass's optimize() call with timing and layer counts."""

    @functools.wraps(func)
    def wrapper(self, structure, *args, **kwargs):
        prefix = f"[{self.strategy()}] "
        if structure is None:
            return func(self, structure, *args, **kwargs)

        logger.debug(f"{prefix}Starting network optimization pass...")
        original_count = len(structure.layers)
        start_time = time.time()

        status = func(self, structure, *args, **kwargs)

        duration = time.time() - start_time
        logger.info(
            f"{prefix}Finished in {duration:.3f}s with {status}. "
            f"Layers: {original_count} -> {len(structure.layers)}"
        )
        return status

    return wrapper
