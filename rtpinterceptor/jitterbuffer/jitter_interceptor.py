"""An interceptor that places a jitter buffer in front of a remote stream."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from rtpinterceptor.jitterbuffer.jitter_buffer import (
    JitterBuffer,
    PopWhileBufferingError,
    State,
)
from rtpinterceptor.packets import Interceptor, StreamInfo, parse_rtp_packet


class JitterBufferInterceptorFactory:
    """Creates JitterBufferInterceptor instances."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log

    def new_interceptor(self, interceptor_id: str = "") -> JitterBufferInterceptor:
        return JitterBufferInterceptor(log=self.log)


class JitterBufferInterceptor(Interceptor):
    """Buffers incoming RTP packets before passing them on in sequence order.

    Until enough packets have arrived (50 by default) a read raises
    PopWhileBufferingError and should be retried later. Once playback has
    begun, a read may raise NotFoundError when the next packet is missing.
    """

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log if log is not None else logging.getLogger("jitterbuffer")
        self.buffer = JitterBuffer()
        self._lock = threading.Lock()

    def bind_remote_stream(self, info: StreamInfo, reader):
        def read(attributes):
            data, attrs = reader(attributes)
            packet = parse_rtp_packet(data)
            with self._lock:
                self.buffer.push(packet)
                if self.buffer.state == State.EMITTING:
                    return self.buffer.pop().marshal(), attrs
            raise PopWhileBufferingError()

        return read

    def unbind_remote_stream(self, info: StreamInfo) -> None:
        with self._lock:
            self.buffer.clear(True)

    def close(self) -> None:
        with self._lock:
            self.buffer.clear(True)