"""Locate and parse Apple Mail .emlx messages and read text from PDF and HTML attachments."""

__version__ = "1.3.0"