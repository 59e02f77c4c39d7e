import signal

import pytest

from amqp_tools.rabbit_protocol import InboundMessage


class FakeBroker:
    """In-memory stand-in for ``RabbitMQ`` that records every call.

    Tests drive deliveries through the stored consumer callbacks, run timers
    with ``run_timers`` and, when ``auto_confirm`` is off, release publish
    confirmations with ``confirm_next``.
    """

    def __init__(self, message_counts=None, auto_confirm=True):
        self.message_counts = message_counts or {}
        self.auto_confirm = auto_confirm
        self.calls = []
        self.consumers = {}
        self.timers = []
        self.published = []
        self.pending_confirms = []
        self.acked = []
        self.events_processed = 0

    def connect(self):
        self.calls.append(("connect",))

    def create_channel(self, confirm=False):
        self.calls.append(("create_channel", confirm))

    def prefetch(self, count, global_qos=False):
        self.calls.append(("prefetch", count, global_qos))

    def check_queue(self, name):
        self.calls.append(("check_queue", name))
        return self.message_counts.get(name, 0)

    def assert_queue(self, name="", exclusive=False, auto_delete=False, durable=True, expires=None):
        self.calls.append(("assert_queue", name, exclusive, auto_delete, durable, expires))
        return "amq.gen-dynamic"

    def bind_queue(self, queue, exchange, routing_key):
        self.calls.append(("bind_queue", queue, exchange, routing_key))

    def consume(self, queue, on_message, consumer_tag):
        self.calls.append(("consume", queue, consumer_tag))
        self.consumers[consumer_tag] = (queue, on_message)

    def ack(self, message):
        self.acked.append(message.delivery_tag)

    def ack_all(self):
        self.calls.append(("ack_all",))

    def cancel(self, consumer_tag):
        self.calls.append(("cancel", consumer_tag))

    def publish(self, exchange, routing_key, body, properties, on_confirm):
        self.published.append((exchange, routing_key, body, properties))
        if self.auto_confirm:
            on_confirm()
        else:
            self.pending_confirms.append(on_confirm)

    def confirm_next(self):
        self.pending_confirms.pop(0)()

    def call_later(self, delay, callback):
        self.timers.append((delay, callback))

    def run_timers(self):
        while self.timers:
            _delay, callback = self.timers.pop(0)
            callback()

    def process_events(self, time_limit=0):
        self.events_processed += 1
        self.run_timers()

    def close_channel(self):
        self.calls.append(("close_channel",))

    def close_connection(self):
        self.calls.append(("close_connection",))

    def call_names(self):
        return [call[0] for call in self.calls]

    def deliver(self, consumer_tag, message):
        _queue, on_message = self.consumers[consumer_tag]
        on_message(message)


def make_message(content=b"{}", delivery_tag=1, exchange="amq.topic", routing_key="a.b", **properties):
    fields = {
        "consumerTag": "tag",
        "deliveryTag": delivery_tag,
        "redelivered": False,
        "exchange": exchange,
        "routingKey": routing_key,
    }
    return InboundMessage(fields=fields, properties=properties, content=content, delivery_tag=delivery_tag)


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def restore_signals():
    """Put back the SIGINT and SIGTERM handlers a test installs."""
    handlers = {signum: signal.getsignal(signum) for signum in (signal.SIGINT, signal.SIGTERM)}
    yield
    for signum, handler in handlers.items():
        signal.signal(signum, handler)
