import pytest

from nullivote import curve, elgamal, keys
from nullivote.curve import ORDER
from nullivote.errors import InvalidScalar, PointNotOnCurve


@pytest.fixture
def kp():
    return keys.keypair_from_scalar(424242)


def test_combine_then_decrypt_gives_sum_of_flags(kp):
    ct = elgamal.combine(
        elgamal.encrypt(kp.public_point, 1, 111),
        elgamal.encrypt(kp.public_point, 0, 222),
    )
    assert elgamal.decrypt_to_point(kp.secret_scalar, ct) == curve.base_point()


def test_combine_is_homomorphic(kp):
    pk = kp.public_point
    combined = elgamal.combine(elgamal.encrypt(pk, 1, 5), elgamal.encrypt(pk, 2, ORDER - 3))
    assert combined == elgamal.encrypt(pk, 3, 2)


def test_combine_all(kp):
    pk = kp.public_point
    cts = [elgamal.encrypt(pk, 1, r) for r in (7, 8, 9)]
    total = elgamal.combine_all(cts)
    assert elgamal.decrypt_to_point(kp.secret_scalar, total) == curve.scalar_mul(3, curve.base_point())
    with pytest.raises(ValueError):
        elgamal.combine_all([])


def test_encrypt_rejects_bad_inputs(kp):
    with pytest.raises(InvalidScalar):
        elgamal.encrypt(kp.public_point, 1, 0)
    with pytest.raises(InvalidScalar):
        elgamal.encrypt(kp.public_point, 1, ORDER)
    with pytest.raises(ValueError):
        elgamal.encrypt(kp.public_point, -1, 3)


def test_ciphertext_wire_format(kp):
    ct = elgamal.encrypt(kp.public_point, 1, 31337)
    wire = ct.to_strings()
    assert len(wire) == 4 and all(isinstance(v, str) for v in wire)
    assert elgamal.ciphertext_from_strings(wire) == ct

    with pytest.raises(PointNotOnCurve):
        elgamal.ciphertext_from_strings(wire[:3])
    with pytest.raises(PointNotOnCurve):
        elgamal.ciphertext_from_strings(["1", "2"] + wire[2:])


def test_blinding_scalar(kp):
    r1 = elgamal.derive_blinding_scalar(kp.secret_scalar, kp.public_point)
    r2 = elgamal.derive_blinding_scalar(kp.secret_scalar, kp.public_point)
    r3 = elgamal.derive_blinding_scalar(kp.secret_scalar, kp.public_point, b"e1|bob")
    assert r1 == r2
    assert r1 != r3
    assert 0 < r1 < ORDER and 0 < r3 < ORDER
