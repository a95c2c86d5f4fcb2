[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rtpinterceptor"
version = "0.1.0"
description = "RTP/RTCP interceptors: jitter buffer, NACK generation and retransmission, sender and receiver reports, and packet dumping"
requires-python = ">=3.10"
dependencies = []
keywords = ["rtp", "rtcp", "webrtc", "nack", "jitter buffer", "interceptor", "rtcp reports"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Conferencing",
    "Topic :: Multimedia :: Video",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rtpinterceptor"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
