import pytest

from nullivote import curve, keys
from nullivote.curve import ORDER
from nullivote.errors import InvalidScalar, InvalidSecretLength


def test_derive_keypair_is_deterministic():
    secret = bytes(range(32))
    a = keys.derive_keypair(secret)
    b = keys.derive_keypair(secret)
    assert a == b
    assert keys.verify_keypair(a)
    assert a.public_point == curve.scalar_mul(a.secret_scalar, curve.base_point())


def test_derive_keypair_rejects_wrong_length():
    for bad in (b"", b"\x01" * 31, b"\x01" * 33):
        with pytest.raises(InvalidSecretLength):
            keys.derive_keypair(bad)
    with pytest.raises(InvalidSecretLength):
        keys.derive_keypair("a" * 32)


def test_zero_scalar_is_remapped_to_one():
    G = curve.base_point()
    assert keys.derive_keypair(bytes(32)).public_point == G
    # ORDER itself reduces to zero
    assert keys.derive_keypair(ORDER.to_bytes(32, "big")).secret_scalar == 1


def test_repr_hides_secret():
    kp = keys.keypair_from_scalar(987654321)
    assert "987654321" not in repr(kp)


def test_keypair_from_scalar_range():
    with pytest.raises(InvalidScalar):
        keys.keypair_from_scalar(0)
    with pytest.raises(InvalidScalar):
        keys.keypair_from_scalar(ORDER)
    assert keys.keypair_from_scalar(ORDER - 1).public_point == curve.negate(curve.base_point())


def test_verify_keypair_detects_mismatch():
    a = keys.keypair_from_scalar(5)
    b = keys.keypair_from_scalar(6)
    assert not keys.verify_keypair(keys.Keypair(secret_scalar=a.secret_scalar, public_point=b.public_point))


def test_derive_voter_secret():
    s1 = keys.derive_voter_secret("alice@example.org", b"master")
    s2 = keys.derive_voter_secret("bob@example.org", b"master")
    assert len(s1) == 32
    assert s1 != s2
    assert s1 == keys.derive_voter_secret("alice@example.org", b"master")
    with pytest.raises(TypeError):
        keys.derive_voter_secret("alice@example.org", "master")


def test_public_key_signal():
    signal = keys.public_key_signal(curve.base_point())
    assert signal.startswith("0x")
    assert len(signal) == 66
    assert signal != keys.public_key_signal(curve.identity())
