import logging
import typing as tp
import pathlib

__version__ = "0.1.0"


def create_allure_environment_opts(opts: dict, dst: tp.Optional[pathlib.Path] = None):
    """Append ``key=value`` lines to allure's environment.properties."""
    dst = dst or pathlib.Path("allure-results") / "environment.properties"
    lines = [f"{key}={value if value not in (None, '') else 'empty value'}" for key, value in opts.items()]
    with open(dst, "a+") as file:
        file.write("\n".join(lines) + "\n")


def setup_logging(log_level=logging.DEBUG):
    """Setup root logger and quiet some levels."""
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # HTTP traffic of every RPC call is too noisy for debug output
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logger
