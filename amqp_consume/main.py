#!/usr/bin/env python3

import logging
import sys

from pika.exceptions import AMQPError

from amqp_consume.common import config_init
from amqp_consume.common.consumer import Consumer
from amqp_tools.errors import AmqpToolsError
from amqp_tools.rabbit_protocol import RabbitMQ, redact_url
from amqp_tools.specs import parse_specifications
from amqp_tools.utils.logger import config_logger


def main(argv=None):
    try:
        config = config_init.initialize_config(argv)
    except (KeyError, ValueError) as e:
        print(e, file=sys.stderr)
        sys.exit(1)
    config_logger(config["logging_level"])

    logging.debug(f"action: config | result: success | url: {redact_url(config['url'])} | "
                  f"max: {config['max']} | min: {config['min']} | indentation: {config['indentation']} | "
                  f"ack: {config['ack']}")

    consumer = Consumer(
        RabbitMQ(config["url"]),
        parse_specifications(config["specifications"]),
        output=sys.stdout,
        max_messages=config["max"],
        min_messages=config["min"],
        indentation=config["indentation"],
        ack=config["ack"],
    )

    try:
        consumer.run()
    except KeyboardInterrupt:
        logging.info("Consume stopped by user")
        sys.exit(1)
    except (AmqpToolsError, AMQPError, OSError) as e:
        print(str(e) or repr(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
