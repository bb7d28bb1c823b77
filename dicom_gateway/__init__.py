"""
Package initialization for the DICOM gateway.

The gateway accepts DICOM uploads, extracts a fixed set of administrative
metadata tags from each stored object and forwards the resulting record to a
relational store and/or a queue, while the raw object is handed to the managed
imaging import service.
"""

# Version of the application
__version__ = "0.2.0"
