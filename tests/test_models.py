import pytest
from sqlalchemy import CheckConstraint

from app.models.borrower import Borrower
from app.models.loan import Loan
from app.models.types import EncryptedString, pii_cipher


def test_encrypted_string_round_trip() -> None:
    column = EncryptedString(keys="first-key")
    token = column.process_bind_param("123-45-6789", None)
    assert b"6789" not in token
    assert column.process_result_value(token, None) == "123-45-6789"
    assert column.process_bind_param(None, None) is None


def test_encrypted_string_survives_key_rotation() -> None:
    token = EncryptedString(keys="old-key").process_bind_param("123-45-6789", None)
    rotated = EncryptedString(keys="new-key,old-key")
    assert rotated.process_result_value(token, None) == "123-45-6789"


def test_encrypted_string_rejects_unknown_key() -> None:
    token = EncryptedString(keys="old-key").process_bind_param("123-45-6789", None)
    with pytest.raises(ValueError):
        EncryptedString(keys="other-key").process_result_value(token, None)


def test_pii_cipher_requires_a_key() -> None:
    with pytest.raises(ValueError):
        pii_cipher(" , ")


def test_borrower_ssn_is_encrypted_column() -> None:
    assert isinstance(Borrower.__table__.c.ssn.type, EncryptedString)


def test_loan_table_has_check_constraints() -> None:
    checks = [c for c in Loan.__table__.constraints if isinstance(c, CheckConstraint)]
    assert checks
