import logging
import sys


def config_logger(logging_level):
    """
    Python custom logging initialization

    Logs go to stderr, stdout is reserved for the JSON the tools produce.
    Current timestamp is added to every line.
    """
    logging.basicConfig(
        format='%(asctime)s %(levelname)-8s %(message)s',
        level=logging_level,
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("pika").setLevel(logging.WARNING)
