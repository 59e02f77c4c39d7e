"""Errors that end an amqp-tools process.

Every subclass of ``AmqpToolsError`` is fatal: the program entry points
print its message on a single line to stderr and exit with status 1.
Broker failures are not wrapped, they arrive as ``pika.exceptions.AMQPError``
and are reported the same way.
"""


class AmqpToolsError(Exception):
    """Base class for the errors raised by the tools themselves."""


class UsageError(AmqpToolsError):
    """The program was invoked or fed in a way it cannot work with."""


class InputError(AmqpToolsError):
    """Standard input held text that is not valid JSON."""


class PreconditionError(AmqpToolsError):
    """A startup check failed before any message was consumed."""
