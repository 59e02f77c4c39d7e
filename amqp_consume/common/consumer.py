from __future__ import annotations

"""Consume session: from broker queues and bindings to JSON on stdout.

The session walks ``connecting -> checking -> (binding) -> consuming ->
draining -> closed``. Everything runs on the thread that owns the broker
connection; signal handlers only record a shutdown request that the event
loop picks up.
"""

import logging
import math
import signal
import sys
import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Callable, List, Optional, TextIO

from amqp_tools.content_codec import create_envelope, dump_json
from amqp_tools.errors import PreconditionError

CONNECTING = "connecting"
CHECKING = "checking"
BINDING = "binding"
CONSUMING = "consuming"
DRAINING = "draining"
CLOSED = "closed"

# Lifetime of the queue created for exchange bindings, in milliseconds
BINDING_QUEUE_EXPIRES = 60 * 1000
# Time given to the bulk ack to reach the broker before closing
ACK_DELAY = 0.1
POLL_INTERVAL = 0.1


def iso_now() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Consumer:
    def __init__(
        self,
        broker,
        specs: dict,
        output: Optional[TextIO] = None,
        max_messages=math.inf,
        min_messages: int = 0,
        indentation: int = 0,
        ack: bool = False,
        clock: Callable[[], str] = iso_now,
    ) -> None:
        self.broker = broker
        self.queues: List[str] = list(specs["queues"])
        self.bindings: List[dict] = list(specs["bindings"])
        self.output = output if output is not None else sys.stdout
        self.max_messages = max_messages
        self.min_messages = min_messages
        self.indentation = indentation
        self.ack = ack
        self.clock = clock

        self.state = CONNECTING
        self.counter = 0
        self.emitted = 0
        self.consumer_tags: List[str] = []
        self._shutdown_requested = False

    @property
    def manual_ack(self) -> bool:
        """Messages are held unacked when a maximum is configured."""
        return self.max_messages != math.inf

    def start(self) -> None:
        """Set up the broker side up to the point messages start flowing."""
        self.state = CONNECTING
        self.broker.connect()
        self.broker.create_channel()
        if self.manual_ack:
            self.broker.prefetch(self.max_messages, global_qos=True)

        self.state = CHECKING
        message_counts = [self.broker.check_queue(queue) for queue in self.queues]
        self._check_minimum(message_counts)

        if self.bindings:
            self.state = BINDING
            self._bind_dynamic_queue()

        self.state = CONSUMING
        self._start_consuming()

    def run(self) -> None:
        """Consume until the maximum is reached or a signal arrives."""
        self.start()
        self._set_up_signal_handlers()
        while self.state != CLOSED:
            self.broker.process_events(POLL_INTERVAL)
            if self._shutdown_requested:
                self._shutdown_requested = False
                self.shutdown()

    def _check_minimum(self, message_counts: List[int]) -> None:
        if self.min_messages <= 0:
            return
        if self.bindings:
            raise PreconditionError("--min cannot be used for exchange bindings")
        if self.min_messages > self.max_messages:
            raise PreconditionError("--min cannot be greater than --max")
        available = sum(message_counts)
        if available < self.min_messages:
            raise PreconditionError(f"--min={self.min_messages}, only {available}")

    def _bind_dynamic_queue(self) -> None:
        queue = self.broker.assert_queue(
            "",
            exclusive=True,
            auto_delete=True,
            durable=False,
            expires=BINDING_QUEUE_EXPIRES,
        )
        logging.debug(f"Queue \"{queue}\" created")
        self.queues.append(queue)
        for binding in self.bindings:
            self.broker.bind_queue(queue, binding["exchange"], binding["routingKey"])

    def _start_consuming(self) -> None:
        # Tags are generated here rather than by the broker: a delivery can
        # arrive before basic_consume returns, and shutdown needs every tag.
        for queue in self.queues:
            consumer_tag = str(uuid.uuid4())
            self.consumer_tags.append(consumer_tag)
            self.broker.consume(queue, partial(self.on_message, queue), consumer_tag)

        logging.debug("Consuming started")
        for consumer_tag in self.consumer_tags:
            logging.debug(f"consumerTag: {consumer_tag}")

    def on_message(self, queue: str, message) -> None:
        """Emit one delivery while below the maximum and apply the ack policy."""
        if self.state != CONSUMING:
            logging.debug(f"Ignoring message from {queue} received while {self.state}")
            return

        if self.counter < self.max_messages:
            self._write_message(queue, message)

        self.counter += 1
        if self.counter == self.max_messages:
            self.broker.call_later(0, self.shutdown)
        elif not self.manual_ack:
            self.broker.ack(message)

    def _write_message(self, queue: str, message) -> None:
        # Indented output is one JSON array, separators go before each object.
        # Without indentation every object is a line of its own.
        if self.indentation:
            self.output.write("[\n " if self.emitted == 0 else "\n,")

        envelope = create_envelope({"date": self.clock(), "queue": queue}, message)
        self.output.write(dump_json(envelope, self.indentation))

        if not self.indentation:
            self.output.write("\n")
        self.output.flush()
        self.emitted += 1

    def request_shutdown(self) -> None:
        """Ask the event loop to drain; safe to call from a signal handler."""
        self._shutdown_requested = True

    def shutdown(self) -> None:
        """Cancel every subscription, settle acks and close the broker link."""
        if self.state in (DRAINING, CLOSED):
            return
        self.state = DRAINING
        logging.debug("Draining consumer")

        for consumer_tag in self.consumer_tags:
            self.broker.cancel(consumer_tag)

        if self.indentation and self.emitted:
            self.output.write("\n]\n")
            self.output.flush()

        if self.ack and self.manual_ack:
            self.broker.ack_all()

        self.broker.call_later(ACK_DELAY, self._close)

    def _close(self) -> None:
        self.broker.close_channel()
        self.broker.close_connection()
        self.state = CLOSED
        logging.debug("Consumer closed")

    def _set_up_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, _frame) -> None:
        # Only the first signal drains, later ones get the default behaviour
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        logging.info(f"Received signal {signum}, stopping...")
        self.request_shutdown()
