import logging
import sys

from tqdm import tqdm


class LogWithTqdm(logging.Handler):
    """
    A logging handler that writes through `tqdm.write()` to stderr, so log
    lines never tear the prompt or a running command's output apart.
    """
    def emit(self, record):
        try:
            msg = self.format(record)
            tqdm.write(msg, file=sys.stderr)
            self.flush()
        except Exception:
            self.handleError(record)


def configure_logger(general_level='WARNING', module_specific_levels=None, silenced_loggers=None):
    """
    Configures the root logger and specific module loggers with a
    TQDM-friendly handler.
    """
    tqdm_aware_handler = LogWithTqdm()
    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(message)s"
    )
    tqdm_aware_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    log_level = getattr(logging, general_level.upper(), logging.WARNING) if isinstance(general_level, str) else general_level
    root_logger.setLevel(log_level)

    root_logger.handlers.clear()
    root_logger.addHandler(tqdm_aware_handler)

    if module_specific_levels:
        for name, level in module_specific_levels.items():
            level_to_set = getattr(logging, level.upper(), logging.INFO) if isinstance(level, str) else level
            logging.getLogger(name).setLevel(level_to_set)

    # Muzzle noisy third-party loggers by setting their level high.
    if silenced_loggers:
        for name, level in silenced_loggers.items():
            level_to_set = getattr(logging, level.upper(), logging.CRITICAL) if isinstance(level, str) else level
            logging.getLogger(name).setLevel(level_to_set)
