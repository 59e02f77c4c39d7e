import io
import json
import math
import signal

import pytest

from amqp_consume.common.consumer import (
    ACK_DELAY,
    CLOSED,
    CONSUMING,
    DRAINING,
    Consumer,
)
from amqp_tools.errors import PreconditionError
from amqp_tools.specs import parse_specifications
from conftest import FakeBroker, make_message

DATE = "2021-06-01T12:00:00.000Z"


def make_consumer(broker, specs, **kwargs):
    output = io.StringIO()
    consumer = Consumer(broker, parse_specifications(specs), output=output, clock=lambda: DATE, **kwargs)
    return consumer, output


def json_message(n, delivery_tag=None):
    body = json.dumps({"n": n}).encode("utf-8")
    return make_message(body, delivery_tag=delivery_tag or n, contentType="application/json")


def test_minimum_gate_aborts_before_subscribing():
    broker = FakeBroker(message_counts={"q": 3})
    consumer, output = make_consumer(broker, ["q"], min_messages=5)

    with pytest.raises(PreconditionError, match="--min=5, only 3"):
        consumer.start()

    assert "consume" not in broker.call_names()
    assert output.getvalue() == ""


def test_minimum_gate_sums_every_queue():
    broker = FakeBroker(message_counts={"q1": 3, "q2": 2})
    consumer, _ = make_consumer(broker, ["q1", "q2"], min_messages=5)
    consumer.start()
    assert consumer.state == CONSUMING


def test_minimum_gate_refuses_bindings():
    consumer, _ = make_consumer(FakeBroker(), ["amq.topic/#"], min_messages=1)
    with pytest.raises(PreconditionError, match="exchange bindings"):
        consumer.start()


def test_minimum_gate_refuses_minimum_above_maximum():
    broker = FakeBroker(message_counts={"q": 10})
    consumer, _ = make_consumer(broker, ["q"], min_messages=5, max_messages=2)
    with pytest.raises(PreconditionError, match="greater than --max"):
        consumer.start()


def test_setup_order_and_prefetch():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"], max_messages=3)
    consumer.start()

    assert broker.call_names() == ["connect", "create_channel", "prefetch", "check_queue", "consume"]
    assert ("prefetch", 3, True) in broker.calls


def test_no_prefetch_without_maximum():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"])
    consumer.start()
    assert "prefetch" not in broker.call_names()
    assert consumer.max_messages == math.inf


def test_bindings_use_one_dynamic_queue():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q", "amq.topic/a/b"])
    consumer.start()

    assert ("assert_queue", "", True, True, False, 60000) in broker.calls
    assert ("bind_queue", "amq.gen-dynamic", "amq.topic", "a") in broker.calls
    assert ("bind_queue", "amq.gen-dynamic", "amq.topic", "b") in broker.calls
    assert consumer.queues == ["q", "amq.gen-dynamic"]
    consumed = [call[1] for call in broker.calls if call[0] == "consume"]
    assert consumed == ["q", "amq.gen-dynamic"]


def test_consumer_tags_are_known_before_subscribing():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q1", "q2"])
    consumer.start()

    tags = [call[2] for call in broker.calls if call[0] == "consume"]
    assert tags == consumer.consumer_tags
    assert len(set(tags)) == 2


def test_counting_stops_at_maximum():
    broker = FakeBroker()
    consumer, output = make_consumer(broker, ["q"], max_messages=3)
    consumer.start()
    tag = consumer.consumer_tags[0]

    for n in range(1, 6):
        broker.deliver(tag, json_message(n))

    lines = output.getvalue().splitlines()
    assert [json.loads(line)["content"] for line in lines] == [{"n": 1}, {"n": 2}, {"n": 3}]
    assert consumer.counter == 5
    assert broker.acked == []
    assert [delay for delay, _ in broker.timers] == [0]

    broker.run_timers()
    assert consumer.state == CLOSED
    assert broker.call_names()[-3:] == ["cancel", "close_channel", "close_connection"]


def test_drain_is_scheduled_not_immediate():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"], max_messages=1)
    consumer.start()
    broker.deliver(consumer.consumer_tags[0], json_message(1))

    assert consumer.state == CONSUMING
    assert "cancel" not in broker.call_names()


def test_without_maximum_every_message_is_acked():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"])
    consumer.start()
    tag = consumer.consumer_tags[0]
    broker.deliver(tag, json_message(1, delivery_tag=7))
    broker.deliver(tag, json_message(2, delivery_tag=8))

    assert broker.acked == [7, 8]


def test_bulk_ack_on_drain_with_maximum_and_ack():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"], max_messages=2, ack=True)
    consumer.start()
    tag = consumer.consumer_tags[0]
    broker.deliver(tag, json_message(1))
    broker.deliver(tag, json_message(2))

    _, shutdown = broker.timers.pop(0)
    shutdown()
    assert consumer.state == DRAINING
    assert broker.call_names()[-2:] == ["cancel", "ack_all"]
    assert broker.timers[0][0] == ACK_DELAY

    broker.run_timers()
    assert consumer.state == CLOSED


def test_no_bulk_ack_without_ack_flag():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"], max_messages=1)
    consumer.start()
    broker.deliver(consumer.consumer_tags[0], json_message(1))
    broker.run_timers()
    assert "ack_all" not in broker.call_names()


def test_indented_output_is_one_array():
    broker = FakeBroker()
    consumer, output = make_consumer(broker, ["q"], max_messages=2, indentation=2)
    consumer.start()
    tag = consumer.consumer_tags[0]
    broker.deliver(tag, json_message(1))
    broker.deliver(tag, json_message(2))
    broker.run_timers()

    text = output.getvalue()
    assert text.startswith("[\n {")
    assert "\n,{" in text
    assert text.endswith("\n]\n")
    messages = json.loads(text)
    assert [m["content"] for m in messages] == [{"n": 1}, {"n": 2}]
    assert messages[0]["date"] == DATE
    assert messages[0]["queue"] == "q"


def test_indented_output_without_messages_writes_nothing():
    broker = FakeBroker()
    consumer, output = make_consumer(broker, ["q"], indentation=2)
    consumer.start()
    consumer.shutdown()
    broker.run_timers()
    assert output.getvalue() == ""


def test_ndjson_output_is_compact():
    broker = FakeBroker()
    consumer, output = make_consumer(broker, ["q"])
    consumer.start()
    broker.deliver(consumer.consumer_tags[0], json_message(1))

    line = output.getvalue()
    assert line.endswith("}\n")
    assert line.count("\n") == 1
    assert ": " not in line


def test_shutdown_runs_once():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q1", "q2"])
    consumer.start()
    consumer.shutdown()
    consumer.shutdown()

    assert broker.call_names().count("cancel") == 2
    assert len(broker.timers) == 1


def test_messages_during_drain_are_not_emitted():
    broker = FakeBroker()
    consumer, output = make_consumer(broker, ["q"])
    consumer.start()
    tag = consumer.consumer_tags[0]
    consumer.shutdown()
    broker.deliver(tag, json_message(1))

    assert output.getvalue() == ""
    assert broker.acked == []


def test_run_drains_after_shutdown_request():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"])

    process_events_before = broker.process_events

    def process_events(time_limit=0):
        if broker.events_processed == 2:
            consumer.request_shutdown()
        process_events_before(time_limit)

    broker.process_events = process_events
    consumer._set_up_signal_handlers = lambda: None
    consumer.run()

    assert consumer.state == CLOSED
    assert broker.call_names()[-3:] == ["cancel", "close_channel", "close_connection"]


@pytest.mark.usefixtures("restore_signals")
def test_first_signal_drains_and_restores_default_handlers():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"])
    consumer.start()
    consumer._set_up_signal_handlers()
    assert signal.getsignal(signal.SIGINT) == consumer._handle_signal

    requests = []
    consumer.request_shutdown = lambda: requests.append(True)
    consumer._handle_signal(signal.SIGINT, None)

    assert requests == [True]
    assert signal.getsignal(signal.SIGINT) is signal.default_int_handler
    assert signal.getsignal(signal.SIGTERM) == signal.SIG_DFL


@pytest.mark.usefixtures("restore_signals")
def test_signal_is_picked_up_by_the_event_loop():
    broker = FakeBroker()
    consumer, _ = make_consumer(broker, ["q"])
    process_events_before = broker.process_events

    def process_events(time_limit=0):
        if broker.events_processed == 1:
            consumer._handle_signal(signal.SIGTERM, None)
        process_events_before(time_limit)

    broker.process_events = process_events
    consumer.run()

    assert consumer.state == CLOSED
    assert broker.call_names().count("cancel") == 1
