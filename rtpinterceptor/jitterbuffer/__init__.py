"""Jitter buffer for reordering and smoothing incoming RTP packets."""