"""Tests for PII masking and user id hashing."""

from mailgate.core.pii import hash_user_id, mask_email_and_phone


class TestMaskEmailAndPhone:
    def test_masks_email(self) -> None:
        assert mask_email_and_phone("to=alice@example.com; subject=Hi") == "to=[EMAIL]; subject=Hi"

    def test_masks_phone(self) -> None:
        assert "[PHONE]" in mask_email_and_phone("call me at +1 415-555-0100")

    def test_short_numbers_are_kept(self) -> None:
        assert mask_email_and_phone("meeting at 10 30") == "meeting at 10 30"

    def test_collapses_newlines(self) -> None:
        assert mask_email_and_phone("line one\r\nline two\n") == "line one line two"

    def test_none(self) -> None:
        assert mask_email_and_phone(None) is None


class TestHashUserId:
    def test_salted_hash_is_stable(self) -> None:
        first = hash_user_id("U123", "salt")
        assert first == hash_user_id("U123", "salt")
        assert len(first) == 64
        assert "U123" not in first

    def test_salt_changes_hash(self) -> None:
        assert hash_user_id("U123", "a") != hash_user_id("U123", "b")

    def test_no_salt_means_no_id(self) -> None:
        assert hash_user_id("U123", None) is None
        assert hash_user_id("U123", "") is None

    def test_no_user(self) -> None:
        assert hash_user_id(None, "salt") is None
