#!/usr/bin/env python3

import logging
import sys

from pika.exceptions import AMQPError

from amqp_publish.common import config_init
from amqp_publish.common.publisher import Publisher
from amqp_publish.common.stdin_reader import StdinReader
from amqp_tools.errors import AmqpToolsError
from amqp_tools.rabbit_protocol import RabbitMQ, redact_url
from amqp_tools.specs import parse_specifications, specification_routes
from amqp_tools.utils.logger import config_logger


def main(argv=None):
    try:
        config = config_init.initialize_config(argv)
    except (KeyError, ValueError) as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    config_logger(config["logging_level"])

    logging.debug(f"action: config | result: success | url: {redact_url(config['url'])} | "
                  f"nometa: {config['nometa']} | queue: {config['queue']}")

    routes = specification_routes(parse_specifications(config["specifications"]))
    publisher = Publisher(
        RabbitMQ(config["url"]),
        routes,
        nometa=config["nometa"],
        queue_mode=config["queue"],
        correlation_id=config["correlation_id"],
    )

    try:
        publisher.run(StdinReader())
    except KeyboardInterrupt:
        logging.info("Publish stopped by user")
        sys.exit(1)
    except (AmqpToolsError, AMQPError, OSError) as e:
        print(str(e) or repr(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
