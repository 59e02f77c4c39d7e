import codecs
import os
import selectors
import sys

CHUNK_SIZE = 64 * 1024


class StdinReader:
    """Non-blocking text reads from standard input.

    ``read_chunk`` waits at most *timeout* seconds so the caller can keep
    servicing the broker connection between chunks. It returns ``None`` when
    nothing arrived, ``""`` at end of input, and the decoded text otherwise.
    """

    def __init__(self, stream=None, chunk_size=CHUNK_SIZE):
        self.stream = stream if stream is not None else sys.stdin.buffer
        self.fd = self.stream.fileno()
        self.chunk_size = chunk_size
        # select() rather than epoll, stdin may be redirected from a regular file
        self.selector = selectors.SelectSelector()
        self.selector.register(self.fd, selectors.EVENT_READ)
        self.decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.eof = False

    def read_chunk(self, timeout):
        if self.eof:
            return ""
        if not self.selector.select(timeout):
            return None

        data = os.read(self.fd, self.chunk_size)
        if data:
            return self.decoder.decode(data)

        self.eof = True
        self.selector.close()
        return self.decoder.decode(b"", final=True)

    def close(self):
        if not self.eof:
            self.eof = True
            self.selector.close()
