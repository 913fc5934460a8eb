import base64
import os

import pytest

from client.passkey import codec
from client.passkey.errors import DecodeError


@pytest.mark.parametrize("length", [0, 1, 2, 3, 31, 32, 33, 255, 1024])
def test_decode_reverses_encode(length):
    data = os.urandom(length)
    assert codec.decode(codec.encode(data)) == data


def test_encode_uses_url_safe_alphabet_without_padding():
    # 0xfb 0xff 0xfe encodes to "+//+" in the standard alphabet.
    data = b"\xfb\xff\xfe" * 5 + b"\x00"
    encoded = codec.encode(data)

    assert "+" not in encoded
    assert "/" not in encoded
    assert "=" not in encoded
    assert encoded == base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def test_encode_accepts_bytearray_and_memoryview():
    assert codec.encode(bytearray(b"challenge")) == "Y2hhbGxlbmdl"
    assert codec.encode(memoryview(b"challenge")) == "Y2hhbGxlbmdl"


def test_encode_rejects_text():
    with pytest.raises(TypeError):
        codec.encode("challenge")


def test_encode_optional_passes_none_through():
    assert codec.encode_optional(None) is None
    assert codec.encode_optional(b"user1") == "dXNlcjE"


def test_decode_known_values():
    assert codec.decode("Y2hhbGxlbmdl") == b"challenge"
    assert codec.decode("dXNlcjE") == b"user1"
    assert codec.decode("") == b""


def test_decode_tolerates_padding():
    assert codec.decode("dXNlcjE=") == b"user1"


@pytest.mark.parametrize(
    "value",
    [
        "abc+def",
        "abc/def",
        "ab cd",
        "abc\n",
        "ab=cd",
        "A",
        "AAAAA",
    ],
)
def test_decode_rejects_malformed_text(value):
    with pytest.raises(DecodeError):
        codec.decode(value)


@pytest.mark.parametrize("value", [None, b"Y2hhbGxlbmdl", 42])
def test_decode_rejects_non_text(value):
    with pytest.raises(DecodeError):
        codec.decode(value)


def test_decode_error_is_a_value_error():
    with pytest.raises(ValueError):
        codec.decode("%%%")
