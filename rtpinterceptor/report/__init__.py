"""RTCP sender and receiver report generation."""