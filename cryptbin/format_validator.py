# cryptbin/format_validator.py
"""
Structural validator for version 2 encrypted envelopes.

The server never decrypts anything; it only checks that a submitted
envelope has the expected shape before any byte of it is stored. Checks run
in order and stop at the first failure:

1. Key set - exactly the keys of the record kind, nothing more
2. Version - the single supported envelope version
3. Cipher parameters - iv, salt, iterations, key size, tag size,
   algorithm, mode and compression
4. Paste options - formatter and the 0/1 discussion/burn flags
5. Ciphertext - strict base64 that does not compress (entropy heuristic)

The entropy check is a cheap guard against garbage uploads, not a security
boundary; its threshold is configurable.
"""

import base64
import binascii
import zlib
from typing import Any, Optional

SUPPORTED_VERSION = 2

PASTE_KEYS = frozenset({"v", "adata", "ct", "meta"})
COMMENT_KEYS = frozenset({"v", "adata", "ct", "pasteid", "parentid"})

# Only the expiration option may be sent by the client
PASTE_META_KEYS = frozenset({"expire"})

KEY_SIZES = (128, 192, 256)
TAG_SIZES = (64, 96, 128)
ALGORITHMS = ("aes",)
MODES = ("ctr", "cbc", "gcm")
COMPRESSIONS = ("zlib", "rawdeflate", "none")
FORMATTERS = ("plaintext", "syntaxhighlighting", "markdown")

CIPHER_PARAMS_LENGTH = 8
PASTE_ADATA_LENGTH = 4


def _b64decode(value: Any) -> Optional[bytes]:
    """Strictly decode base64, None if the value is not valid base64."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def deflated_size(data: bytes) -> int:
    """Size of data after raw deflate at the default compression level."""
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
    return len(compressor.compress(data) + compressor.flush())


class FormatValidator:
    """Validates paste and comment envelopes."""

    def __init__(
        self,
        min_iterations: int = 10000,
        max_iv_bytes: int = 16,
        max_salt_bytes: int = 8,
        min_entropy_ratio: float = 1.0,
    ):
        self.min_iterations = min_iterations
        self.max_iv_bytes = max_iv_bytes
        self.max_salt_bytes = max_salt_bytes
        self.min_entropy_ratio = min_entropy_ratio

    def is_valid(self, message: Any, is_comment: bool = False) -> bool:
        return self.validate(message, is_comment) is None

    def validate(self, message: Any, is_comment: bool = False) -> Optional[str]:
        """
        Check an envelope.

        Returns:
            None if valid, otherwise a short reason for the rejection
        """
        if not isinstance(message, dict):
            return "envelope is not an object"

        expected_keys = COMMENT_KEYS if is_comment else PASTE_KEYS
        if set(message) != expected_keys:
            return "unexpected or missing keys"

        version = message["v"]
        if not _is_int(version) or version != SUPPORTED_VERSION:
            return "unsupported version"

        adata = message["adata"]
        if is_comment:
            cipher_params = adata
        else:
            if not isinstance(adata, list) or len(adata) != PASTE_ADATA_LENGTH:
                return "malformed adata"
            cipher_params = adata[0]

        reason = self._check_cipher_params(cipher_params)
        if reason:
            return reason

        if not is_comment:
            reason = self._check_paste_options(adata, message["meta"])
            if reason:
                return reason
        else:
            for field in ("pasteid", "parentid"):
                if not isinstance(message[field], str):
                    return f"invalid {field}"

        return self._check_ciphertext(message["ct"])

    def _check_cipher_params(self, params: Any) -> Optional[str]:
        if not isinstance(params, list) or len(params) != CIPHER_PARAMS_LENGTH:
            return "malformed cipher parameters"

        iv, salt, iterations, key_size, tag_size, algorithm, mode, compression = params

        iv_bytes = _b64decode(iv)
        if iv_bytes is None:
            return "invalid base64 encoding of iv"
        if len(iv_bytes) > self.max_iv_bytes:
            return "iv too long"

        salt_bytes = _b64decode(salt)
        if salt_bytes is None:
            return "invalid base64 encoding of salt"
        if len(salt_bytes) > self.max_salt_bytes:
            return "salt too long"

        if not _is_int(iterations) or iterations < self.min_iterations:
            return "not enough iterations"
        if key_size not in KEY_SIZES or not _is_int(key_size):
            return "invalid key size"
        if tag_size not in TAG_SIZES or not _is_int(tag_size):
            return "invalid tag length"
        if algorithm not in ALGORITHMS:
            return "invalid algorithm"
        if mode not in MODES:
            return "invalid mode"
        if compression not in COMPRESSIONS:
            return "invalid compression"
        return None

    @staticmethod
    def _check_paste_options(adata: list, meta: Any) -> Optional[str]:
        _, formatter, open_discussion, burn_after_reading = adata
        if formatter not in FORMATTERS:
            return "invalid formatter"
        if open_discussion not in (0, 1) or not _is_int(open_discussion):
            return "invalid discussion flag"
        if burn_after_reading not in (0, 1) or not _is_int(burn_after_reading):
            return "invalid burn flag"

        if not isinstance(meta, dict) or set(meta) != PASTE_META_KEYS:
            return "invalid meta key"
        return None

    def _check_ciphertext(self, ct: Any) -> Optional[str]:
        data = _b64decode(ct)
        if not data:
            return "invalid base64 encoding of ct"
        if deflated_size(data) < len(data) * self.min_entropy_ratio:
            return "low ct entropy"
        return None
