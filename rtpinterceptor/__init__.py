"""Interceptors for RTP and RTCP media pipelines: jitter buffering, NACKs, reports and packet dumping."""

__version__ = "0.1.0"