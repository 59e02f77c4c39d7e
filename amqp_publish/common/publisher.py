from __future__ import annotations

"""Publish session: from JSON on stdin back onto the broker.

The session walks ``connecting -> reading -> draining -> closed``. It only
drains once the input has ended *and* every published value has been
confirmed. A first interrupt ends the input early, a second one quits on
the spot.
"""

import logging
import signal
import sys
from typing import Any, Callable, List

from amqp_tools.content_codec import encode_content, publish_properties
from amqp_tools.json_stream import JsonStreamDecoder

CONNECTING = "connecting"
READING = "reading"
DRAINING = "draining"
CLOSED = "closed"

POLL_INTERVAL = 0.1


def is_truthy(value: Any) -> bool:
    # Empty objects and arrays still count as present
    if isinstance(value, (dict, list)):
        return True
    return bool(value)


def is_envelope(value: Any) -> bool:
    """Whether *value* looks like a message written by amqp-consume."""
    return isinstance(value, dict) and all(
        is_truthy(value.get(key)) for key in ("fields", "properties", "content")
    )


class Publisher:
    def __init__(
        self,
        broker,
        routes: List[dict],
        nometa: bool = False,
        queue_mode: bool = False,
        correlation_id: str = "",
        exit_func: Callable[[int], Any] = sys.exit,
    ) -> None:
        self.broker = broker
        self.routes = list(routes)
        self.nometa = nometa
        self.queue_mode = queue_mode
        self.correlation_id = correlation_id
        self.exit_func = exit_func

        self.state = CONNECTING
        self.waiting_for_confirm = 0
        self.waiting_for_data = True
        self.interrupts_received = 0
        self.input_paused = False
        self.published = 0
        self.skipped = 0

    def start(self) -> None:
        self.state = CONNECTING
        self.broker.connect()
        self.broker.create_channel(confirm=True)
        self.state = READING

    def run(self, reader) -> None:
        """Publish everything *reader* yields, then wait for the drain."""
        self.start()
        self._set_up_signal_handlers()
        logging.debug("Reading JSON from STDIN")
        self.read_and_publish(reader)
        while self.state != CLOSED:
            self.broker.process_events(POLL_INTERVAL)

    def read_and_publish(self, reader) -> None:
        """Feed input chunks through the decoder, publishing every value."""
        decoder = JsonStreamDecoder()
        while not self.input_paused:
            chunk = reader.read_chunk(POLL_INTERVAL)
            if chunk is None:
                self.broker.process_events(0)
                continue
            if chunk == "":
                for value in decoder.close():
                    self.publish(value)
                break
            for value in decoder.feed(chunk):
                self.publish(value)
            self.broker.process_events(0)

        reader.close()
        self.end_of_input()

    def message_routes(self, value: Any) -> List[dict]:
        routes = list(self.routes)
        if is_envelope(value) and not self.nometa:
            if self.queue_mode:
                routes.append({"exchange": "", "routingKey": value.get("queue") or ""})
            else:
                fields = value["fields"]
                routes.append({
                    "exchange": fields.get("exchange") or "",
                    "routingKey": fields.get("routingKey") or "",
                })
        return routes

    def publish(self, value: Any) -> None:
        """Publish one value to every route it resolves to."""
        if isinstance(value, list):
            for item in value:
                self.publish(item)
            return

        routes = self.message_routes(value)
        if not routes:
            logging.warning("Message has no route to publish to, skipping it (use a specification or metadata)")
            self.skipped += 1
            return

        envelope = is_envelope(value)
        body = encode_content(value["content"] if envelope else value)
        source_properties = value.get("properties") if isinstance(value, dict) else None
        properties = publish_properties(source_properties, self.correlation_id)

        self.waiting_for_confirm += 1
        pending = len(routes)

        def confirmed() -> None:
            nonlocal pending
            pending -= 1
            if pending == 0:
                self.waiting_for_confirm -= 1
                self.published += 1
                self.check_for_quit()

        for route in routes:
            self.broker.publish(route["exchange"], route["routingKey"], body, properties, confirmed)

    def end_of_input(self) -> None:
        self.waiting_for_data = False
        self.check_for_quit()

    def interrupt(self) -> None:
        """Handle SIGINT/SIGTERM: stop reading first, quit outright the second time."""
        self.interrupts_received += 1
        if self.interrupts_received > 1:
            self.force_quit()
            return
        self.input_paused = True

    def force_quit(self) -> None:
        logging.error("Forced Quit")
        self.exit_func(1)

    def check_for_quit(self) -> None:
        if self.interrupts_received > 1:
            self.force_quit()
            return
        if self.waiting_for_data or self.waiting_for_confirm:
            return
        self.drain()

    def drain(self) -> None:
        if self.state in (DRAINING, CLOSED):
            return
        self.state = DRAINING
        logging.info(f"Published {self.published} messages, skipped {self.skipped}")
        self.broker.close_channel()
        self.broker.close_connection()
        self.state = CLOSED
        logging.debug("B-Bye now!")

    def _set_up_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, _frame) -> None:
        logging.info(f"Received signal {signum}")
        self.interrupt()
