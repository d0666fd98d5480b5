"""
Tests for personal identifier helpers.

Covers:
- EGN birth date decoding across centuries
- EGN mod-11 and LNCH mod-10 checksums
- Insurance category derived from the EGN birth year
- Identifier selection from employee data
"""

from datetime import date

from payroll_kernel.domain.identity import (
    ID_TYPE_EGN,
    ID_TYPE_LNCH,
    INSURANCE_CATEGORY_AFTER_1960,
    INSURANCE_CATEGORY_BEFORE_1960,
    egn_birth_date,
    insurance_category_for_egn,
    is_valid_egn,
    is_valid_lnch,
    personal_identifier,
)
from tests.fakes import (
    EGN_AFTER_1960,
    EGN_BAD_CHECKSUM,
    EGN_BEFORE_1960,
    EGN_BORN_2001,
    LNCH_OTHER,
    LNCH_VALID,
)


class TestEgn:
    """EGN structure and checksum."""

    def test_valid_egns(self):
        """Known-good EGNs pass."""
        assert is_valid_egn(EGN_AFTER_1960)
        assert is_valid_egn(EGN_BEFORE_1960)
        assert is_valid_egn(EGN_BORN_2001)

    def test_checksum_mismatch_rejected(self):
        """A wrong control digit makes the EGN invalid."""
        assert not is_valid_egn(EGN_BAD_CHECKSUM)

    def test_wrong_length_or_letters_rejected(self):
        """Only ten digits qualify."""
        assert not is_valid_egn("750102001")
        assert not is_valid_egn("75010200188")
        assert not is_valid_egn("75O1020018")
        assert not is_valid_egn("")
        assert not is_valid_egn(None)

    def test_impossible_birth_date_rejected(self):
        """Month 13 is not a date in any century."""
        assert not is_valid_egn("7513020010")

    def test_birth_date_centuries(self):
        """Month offsets +40 and +20 select the 2000s and the 1800s."""
        assert egn_birth_date(EGN_AFTER_1960) == date(1975, 1, 2)
        assert egn_birth_date(EGN_BORN_2001) == date(2001, 1, 1)
        assert egn_birth_date("9922150000") == date(1899, 2, 15)


class TestInsuranceCategory:
    """Category from the birth year encoded in the EGN."""

    def test_born_before_1960(self):
        assert insurance_category_for_egn(EGN_BEFORE_1960) == INSURANCE_CATEGORY_BEFORE_1960

    def test_born_after_1960(self):
        assert insurance_category_for_egn(EGN_AFTER_1960) == INSURANCE_CATEGORY_AFTER_1960
        assert insurance_category_for_egn(EGN_BORN_2001) == INSURANCE_CATEGORY_AFTER_1960

    def test_born_in_1960_counts_as_before(self):
        """1960 itself belongs to the earlier category."""
        assert insurance_category_for_egn("6005100000") == INSURANCE_CATEGORY_BEFORE_1960

    def test_unknown_for_non_egn(self):
        assert insurance_category_for_egn("") is None
        assert insurance_category_for_egn(None) is None


class TestLnch:
    """LNCH mod-10 checksum."""

    def test_valid_lnch(self):
        assert is_valid_lnch(LNCH_VALID)
        assert is_valid_lnch(LNCH_OTHER)

    def test_invalid_lnch(self):
        assert not is_valid_lnch("1000000002")
        assert not is_valid_lnch("12345")
        assert not is_valid_lnch(None)


class TestPersonalIdentifier:
    """Choice between EGN and LNCH."""

    def test_egn_preferred(self):
        assert personal_identifier({"egn": EGN_AFTER_1960, "lnch": LNCH_VALID}) == (
            EGN_AFTER_1960,
            ID_TYPE_EGN,
        )

    def test_lnch_when_no_egn(self):
        assert personal_identifier({"egn": "", "lnch": LNCH_VALID}) == (LNCH_VALID, ID_TYPE_LNCH)

    def test_neither_known(self):
        assert personal_identifier({}) == ("", ID_TYPE_EGN)
