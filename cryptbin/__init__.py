"""
Cryptbin: zero-knowledge paste service backend.

Clients encrypt locally; the server stores opaque envelopes in a
filesystem, relational database or S3 backend and enforces expiry and
posting limits.
"""

__version__ = "1.0.0"
