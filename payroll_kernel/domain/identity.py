"""
Personal identifiers -- EGN / LNCH checks and derived attributes.

Responsibility:
    Pure helpers for Bulgarian personal identifiers: the EGN (unified civil
    number, with encoded birth date and mod-11 checksum) and the LNCH
    (personal number of a foreigner, mod-10 checksum).  Also derives the
    social insurance category from the EGN birth year.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Mapping

EGN_WEIGHTS = (2, 4, 8, 5, 10, 9, 7, 3, 6)
LNCH_WEIGHTS = (21, 19, 17, 13, 11, 9, 7, 3, 1)

ID_TYPE_EGN = "0"
ID_TYPE_LNCH = "1"

INSURANCE_CATEGORY_BEFORE_1960 = "before1960"
INSURANCE_CATEGORY_AFTER_1960 = "after1960"


def egn_birth_date(egn: str) -> date | None:
    """Birth date encoded in an EGN, or None when it does not encode one."""
    if len(egn) != 10 or not egn.isdigit():
        return None
    yy, mm, dd = int(egn[0:2]), int(egn[2:4]), int(egn[4:6])
    if mm > 40:
        year, month = 2000 + yy, mm - 40
    elif mm > 20:
        year, month = 1800 + yy, mm - 20
    else:
        year, month = 1900 + yy, mm
    try:
        return date(year, month, dd)
    except ValueError:
        return None


def egn_checksum(egn: str) -> int:
    total = sum(int(d) * w for d, w in zip(egn[:9], EGN_WEIGHTS))
    remainder = total % 11
    return 0 if remainder == 10 else remainder


def is_valid_egn(egn: str | None) -> bool:
    """Ten digits, a real birth date, and a matching checksum digit."""
    if not egn or len(egn) != 10 or not egn.isdigit():
        return False
    if egn_birth_date(egn) is None:
        return False
    return egn_checksum(egn) == int(egn[9])


def is_valid_lnch(lnch: str | None) -> bool:
    """Ten digits with a matching mod-10 checksum digit."""
    if not lnch or len(lnch) != 10 or not lnch.isdigit():
        return False
    total = sum(int(d) * w for d, w in zip(lnch[:9], LNCH_WEIGHTS))
    return total % 10 == int(lnch[9])


def insurance_category_for_egn(egn: str | None) -> str | None:
    """
    Social insurance category from the birth year encoded in the EGN.

    Persons born in 1960 or earlier are ``before1960``; later births are
    ``after1960`` (eligible for the universal supplementary pension fund).
    """
    born = egn_birth_date(egn or "")
    if born is None:
        return None
    if born.year <= 1960:
        return INSURANCE_CATEGORY_BEFORE_1960
    return INSURANCE_CATEGORY_AFTER_1960


def personal_identifier(data: Mapping[str, Any]) -> tuple[str, str]:
    """
    (identifier, id type) from employee data: the EGN when present,
    otherwise the LNCH.  Returns ("", "0") when neither is known.
    """
    egn = str(data.get("egn") or "").strip()
    if egn:
        return egn, ID_TYPE_EGN
    lnch = str(data.get("lnch") or "").strip()
    if lnch:
        return lnch, ID_TYPE_LNCH
    return "", ID_TYPE_EGN
