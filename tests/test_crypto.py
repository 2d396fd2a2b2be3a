"""Tests for the mixing hash, the XOR cipher and key helpers."""

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from cloudbox.crypto import (
    HASH_SIZE,
    PUBLIC_KEY_LENGTH,
    decrypt,
    derive_instance_id,
    encrypt,
    generate_key_material,
    mix256,
    public_key_from_private,
    transform,
    validate_public_key,
)
from cloudbox.errors import FormatError


class TestMix256:
    """Tests for mix256."""

    def test_empty_input_returns_initial_accumulators(self):
        """No chunk is mixed for empty input."""
        expected = bytes.fromhex(
            "55555555" "33333333" "92249224" "1cc7711c"
            "aaaaaaaa" "cccccccc" "6ddb6ddb" "e3388ee3"
        )
        assert mix256(b"") == expected

    @pytest.mark.parametrize("length", [1, 31, 32, 33, 100])
    def test_output_is_32_bytes(self, length):
        """Output is always one 32-byte block."""
        assert len(mix256(bytes(range(length)))) == HASH_SIZE

    def test_deterministic(self):
        """Same input gives same output."""
        data = b"cloudbox pairing"
        assert mix256(data) == mix256(data)

    def test_length_is_mixed_in(self):
        """Trailing zeros change the digest even though padding is zero."""
        assert mix256(b"\x01") != mix256(b"\x01\x00")

    def test_single_bit_changes_output(self):
        """Flipping one input bit changes the digest."""
        assert mix256(b"\x00" * 32) != mix256(b"\x01" + b"\x00" * 31)

    @pytest.mark.parametrize(
        "data, digest",
        [
            (
                b"abc",
                "f42efa8cf32affea523d5efddcdebdc56ab366730cd50015adc2a1022321423a",
            ),
            (
                b"cloudbox",
                "7ef5b5071f9dd36cdae81d03540bfe3be266258d840043eb2517e2fcabf401c4",
            ),
            (
                bytes(range(1)),
                "faff5fd59c9939b33d8e98a4b36d7b9c0500a02a6366c64cc271675b4c928463",
            ),
            (
                bytes(range(31)),
                "1ef46d157c960f77d18da26c5b6a4550f11b82fa9379e0983e624d83b485aaa0",
            ),
            (
                bytes(range(32)),
                "330096c25162f4a0fc7959bb769ebe87dcef792dbe8d1b4f1396b65499715168",
            ),
            (
                bytes(range(33)),
                "555c0a5d173e683fba25c52430c222189ab3e5b2f8d187d055ca2acbdf2dcdf7",
            ),
            (
                bytes(range(64)),
                "44391bfa225f7d9c8348dc8b0dab3fb3bbc6e405dda082637cb72374f254c04c",
            ),
        ],
    )
    def test_known_digests(self, data, digest):
        """Digests match the values every CloudBox client computes."""
        assert mix256(data).hex() == digest


class TestTransform:
    """Tests for the self-inverse cipher."""

    @pytest.mark.parametrize("key_length", [0, 1, 3, 4, 24, 32, 33, 64])
    @pytest.mark.parametrize("data_length", [0, 1, 7, 8, 9, 31, 32, 33, 100])
    def test_self_inverse(self, key_length, data_length):
        """Applying transform twice restores the data."""
        key = bytes((i * 7 + 1) % 256 for i in range(key_length))
        data = bytes((i * 13 + 5) % 256 for i in range(data_length))

        once = transform(key, data)

        assert len(once) == data_length
        assert transform(key, once) == data

    def test_empty_data(self):
        """Empty data gives empty output."""
        assert transform(b"key", b"") == b""

    def test_output_differs_from_input(self):
        """Ciphertext is not the plaintext."""
        data = bytes(64)
        assert transform(b"secret", data) != data

    def test_depends_on_key(self):
        """Different keys give different output."""
        data = b"same data for both keys"
        assert transform(b"key-a", data) != transform(b"key-b", data)

    def test_depends_on_length(self):
        """The data length is folded into the key."""
        key = b"same key"
        assert transform(key, b"abcdefgh")[:4] != transform(key, b"abcdefghi")[:4]

    def test_aliases(self):
        """encrypt and decrypt are the same operation."""
        assert encrypt is transform
        assert decrypt is transform

    @pytest.mark.parametrize(
        "key_length, data_length, expected",
        [
            (0, 9, "7f247b902c1651bad9"),
            (0, 40, (
                "72bdf5f9008fdfd3f5a4aa30b793755475b2fad6"
                "cf20507c5a6b853f98bcbafb8cdcc71fd8888bd3"
            )),
            (3, 9, "28a964a27a9341888f"),
            (3, 31, (
                "38f331127cc9143889e261dbcbd5bebf"
                "09f4313db3669b97262d4ed4e4fa71"
            )),
            (3, 32, (
                "716576710a5f535bff7426b8bd43f9dc"
                "7f62765ec5f0dcf450bb09b7926c3673"
            )),
            (3, 40, (
                "8836878dfb0ca2a70e27d7444c100820"
                "8e3187a234a32d08a1e8f84b633fc78fe860570bbd3c14c7"
            )),
            (33, 9, "0fe5a081a1fbae8f70"),
            (33, 40, (
                "a9e363b726fd6db9f7b27426d9998f663f9c1c08"
                "79e25286c88dabd96626f0793c74e403950c8ceb"
            )),
            (64, 9, "b3977b3ce06591d6d5"),
            (64, 31, (
                "67320fcf22c0e52517abd086159c4fa2"
                "97fdc0e0edafaa8ab824bfc93ab3c0"
            )),
            (64, 32, (
                "389bc0d342692a3977021f9a753580be"
                "f7540ffc8d066596d88d70d55a1a0f51"
            )),
            (64, 40, (
                "f19c8c98836e6672b60553d1b432ccf5365343b7"
                "4c0129dd198a3c9e9b1d431a1655de7f42c15273"
            )),
        ],
    )
    def test_known_ciphertexts(self, key_length, data_length, expected):
        """Short, block-sized and over-long keys give the shared ciphertexts."""
        key = bytes((i * 7 + 1) % 256 for i in range(key_length))
        data = bytes((i * 13 + 5) % 256 for i in range(data_length))

        assert transform(key, data).hex() == expected
        assert transform(key, bytes.fromhex(expected)) == data

    def test_known_short_message(self):
        assert transform(b"key", b"hello").hex() == "bd60ad72b2"


class TestPublicKeys:
    """Tests for secp256k1 key helpers."""

    def test_valid_key_passes(self):
        """A generated compressed key validates and is returned."""
        key = public_key_from_private(ec.generate_private_key(ec.SECP256K1()))

        assert len(key) == PUBLIC_KEY_LENGTH
        assert validate_public_key(key) == key

    def test_wrong_length_rejected(self):
        """Keys must be 33 bytes."""
        with pytest.raises(FormatError):
            validate_public_key(b"\x02" * 32)

    def test_invalid_prefix_rejected(self):
        """An unknown point prefix is rejected."""
        with pytest.raises(FormatError):
            validate_public_key(b"\x05" + b"\x11" * 32)


class TestKeyMaterial:
    """Tests for random key material."""

    def test_default_length(self):
        """Default is 24 bytes."""
        assert len(generate_key_material()) == 24

    def test_random(self):
        """Two calls differ."""
        assert generate_key_material() != generate_key_material()


class TestDeriveInstanceId:
    """Tests for instance id derivation."""

    def test_deterministic(self):
        """Same path gives same id."""
        assert derive_instance_id("/srv/cloud") == derive_instance_id("/srv/cloud")

    def test_different_paths(self):
        """Different paths give different ids."""
        assert derive_instance_id("/srv/a") != derive_instance_id("/srv/b")

    def test_fits_u64(self):
        """Ids are unsigned 64-bit."""
        assert 0 <= derive_instance_id("/home/user/Cloud") < 2**64
