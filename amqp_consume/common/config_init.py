import argparse
import sys

from amqp_tools.utils.config_init import (
    common_params,
    get_setting,
    parse_bool,
    parse_limit,
    read_config,
)

SECTION = "CONSUME"

DESCRIPTION = "Consumes AMQP messages from Queues and Exchange+RoutingKey"

EPILOG = """\
specification := queue|binding
binding       := exchange "/" route ("/" route)*

The output is a stream of JSON data, or an array of messages when indentation
is used. Binary content is converted to text as described by contentEncoding,
and content with contentType 'application/json' is parsed.

examples:
  amqp-consume -x 10 -a my-queue
      Consume and acknowledge 10 messages from queue named 'my-queue'.

  amqp-consume amq.topic/# My-Exchange/my.routing.key my-queue
      Consume all messages from exchange 'amq.topic', messages from exchange
      'My-Exchange' matching the routing key 'my.routing.key', and also
      messages from queue named 'my-queue'. (Stop consuming on interrupt.)
"""


def build_parser():
    parser = argparse.ArgumentParser(
        prog="amqp-consume",
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-u", "--url", help="URL of AMQP server")
    parser.add_argument("-x", "--max", help="maximum messages to consume")
    parser.add_argument("--min", help="require minimum messages available to consume")
    parser.add_argument("-i", "--indentation", help="JSON output indentation")
    parser.add_argument("-a", "--ack", action="store_true", default=None, help="acknowledge consumed messages")
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="turn volume up to 11")
    parser.add_argument("specifications", nargs="*", metavar="specification", help="queue or binding to consume from")
    return parser


def initialize_config(argv=None):
    """ Parse command line, env variables and config file

    Command line flags take precedence over env variables, which take
    precedence over the config file. If a parameter could not be parsed, a
    ValueError is thrown. Without any specification the usage is printed
    and the program exits with status 1.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.specifications:
        parser.print_help(sys.stderr)
        parser.exit(1)

    config = read_config()
    config_params = common_params(args, config, SECTION)

    try:
        config_params["max"] = parse_limit(args.max if args.max is not None else get_setting(config, SECTION, "CONSUME_MAX", ""))
        config_params["min"] = int(args.min if args.min is not None else get_setting(config, SECTION, "CONSUME_MIN", "0"))
        config_params["indentation"] = int(args.indentation if args.indentation is not None else get_setting(config, SECTION, "CONSUME_INDENTATION", "0"))
        config_params["ack"] = args.ack if args.ack is not None else parse_bool(get_setting(config, SECTION, "CONSUME_ACK", "false"))
    except ValueError as e:
        raise ValueError(f"Key could not be parsed. Error: {e}. Aborting consume")

    if config_params["indentation"] < 0:
        raise ValueError("Indentation cannot be negative")

    config_params["specifications"] = args.specifications
    return config_params
