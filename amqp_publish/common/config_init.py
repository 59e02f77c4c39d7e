import argparse

from amqp_tools.utils.config_init import (
    common_params,
    get_setting,
    parse_bool,
    read_config,
)

SECTION = "PUBLISH"

DESCRIPTION = """\
Publish JSON-based AMQP messages from STDIN (see amqp-consume)
By default, published to original exchange+route from metadata,
and additionally to specified queues or exchange+route"""

EPILOG = """\
specification := queue|binding
binding       := exchange "/" route ("/" route)*

examples:
  amqp-publish < saved-messages.json
      Publish the saved messages to the exchange as they were consumed from,
      using the same routing key.

  amqp-publish -n amq.topic/my.topic.routing.key < saved-messages.json
      Ignore original message metadata, instead publish to exchange
      'amq.topic' with routing key 'my.topic.routing.key'.

  amqp-publish -q < saved-messages.json
      Publish the saved messages directly to the same queue they were
      consumed from.

  amqp-publish amq.topic/route.one/route.two < saved-messages.json
      Publish the saved messages to original exchange+route, but additionally
      to exchange 'amq.topic' using both 'route.one' and 'route.two' routing
      keys.
"""


def build_parser():
    parser = argparse.ArgumentParser(
        prog="amqp-publish",
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-u", "--url", help="URL of AMQP server")
    parser.add_argument("-n", "--nometa", action="store_true", default=None, help="ignore metadata when publishing (requires specs)")
    parser.add_argument("-q", "--queue", action="store_true", default=None, help="use queue -- not exchange/route -- from metadata")
    parser.add_argument("-c", "--correlation-id", dest="correlation_id", help="correlationId for messages that carry none")
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="turn volume up to 11")
    parser.add_argument("specifications", nargs="*", metavar="specification", help="queue or binding to publish to")
    return parser


def initialize_config(argv=None):
    """ Parse command line, env variables and config file

    Command line flags take precedence over env variables, which take
    precedence over the config file. If a parameter could not be parsed, a
    ValueError is thrown.
    """
    args = build_parser().parse_args(argv)
    config = read_config()
    config_params = common_params(args, config, SECTION)

    try:
        config_params["nometa"] = args.nometa if args.nometa is not None else parse_bool(get_setting(config, SECTION, "PUBLISH_NOMETA", "false"))
        config_params["queue"] = args.queue if args.queue is not None else parse_bool(get_setting(config, SECTION, "PUBLISH_QUEUE", "false"))
    except ValueError as e:
        raise ValueError(f"Key could not be parsed. Error: {e}. Aborting publish")

    if args.correlation_id is not None:
        config_params["correlation_id"] = args.correlation_id
    else:
        config_params["correlation_id"] = get_setting(config, SECTION, "PUBLISH_CORRELATION_ID", "")

    config_params["specifications"] = args.specifications
    return config_params
