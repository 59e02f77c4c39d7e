from configparser import ConfigParser
import math
import os

from amqp_tools.rabbit_protocol import DEFAULT_URL

CONFIG_FILE = "config.ini"
DEFAULT_LOGGING_LEVEL = "WARNING"

_TRUE_VALUES = ("true", "yes", "on", "1")
_FALSE_VALUES = ("false", "no", "off", "0", "")
_INFINITE_VALUES = ("inf", "infinity", "")


def read_config():
    """ Load the shared config file

    Environment variables are layered as defaults, so every key can be set
    either in the file or in the environment. If the config file does not
    exist the returned object only holds the environment.
    """
    config = ConfigParser(os.environ, interpolation=None, strict=False)
    config.read(os.getenv("AMQP_TOOLS_CONFIG", CONFIG_FILE))
    return config


def get_setting(config, section, key, default=None):
    """Value of *key*, looked up in the environment, then *section* of the file."""
    if key in os.environ:
        return os.environ[key]
    if config.has_section(section):
        return config[section].get(key, default)
    return config["DEFAULT"].get(key, default)


def parse_bool(value):
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {value}")


def parse_limit(value):
    """Parse a message count where empty or ``Infinity`` means no limit."""
    if isinstance(value, (int, float)):
        return value
    lowered = str(value).strip().lower()
    if lowered in _INFINITE_VALUES:
        return math.inf
    count = int(lowered)
    if count < 0:
        raise ValueError(f"Message count cannot be negative: {value}")
    return count


def common_params(args, config, section):
    """Settings shared by both tools: broker URL and logging level."""
    params = {}
    params["url"] = args.url or get_setting(config, section, "AMQP_URL", DEFAULT_URL)
    if args.verbose:
        params["logging_level"] = "DEBUG"
    else:
        params["logging_level"] = get_setting(config, section, "LOGGING_LEVEL", DEFAULT_LOGGING_LEVEL).upper()
    return params
