"""Negative acknowledgement generation and retransmission."""