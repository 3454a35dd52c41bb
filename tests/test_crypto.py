from collections import Counter

from authcore.utils.crypto import generate_otp, hash_otp, verify_otp_hash

KEY = 'test-otp-hash-key'


# ==== Génération ====

def test_generated_codes_are_six_digits():
    for _ in range(500):
        code = generate_otp()
        assert len(code) == 6
        assert code.isdigit()


def test_generate_respects_length():
    assert len(generate_otp(8)) == 8


def test_leading_digit_is_roughly_uniform():
    # 10 000 tirages: chaque premier chiffre attendu ~1000 fois
    counts = Counter(generate_otp()[0] for _ in range(10000))
    assert set(counts) == set('0123456789')
    assert all(700 < n < 1300 for n in counts.values())


def test_successive_codes_are_not_repeated():
    codes = [generate_otp() for _ in range(1000)]
    # 1000 tirages sur 10^6: quelques collisions au plus
    assert len(set(codes)) > 990


# ==== Hash / vérification ====

def test_verify_accepts_own_hash():
    for _ in range(50):
        code = generate_otp()
        assert verify_otp_hash(code, hash_otp(code, KEY), KEY)


def test_verify_rejects_other_code():
    digest = hash_otp('123456', KEY)
    assert not verify_otp_hash('123457', digest, KEY)
    assert not verify_otp_hash('654321', digest, KEY)


def test_hash_is_deterministic_and_keyed():
    assert hash_otp('123456', KEY) == hash_otp('123456', KEY)
    assert hash_otp('123456', KEY) != hash_otp('123456', 'another-key')
    assert len(hash_otp('123456', KEY)) == 64


def test_verify_rejects_non_string_input():
    digest = hash_otp('123456', KEY)
    assert not verify_otp_hash(None, digest, KEY)
    assert not verify_otp_hash('123456', None, KEY)
