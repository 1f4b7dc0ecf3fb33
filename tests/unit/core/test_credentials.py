"""Unit tests for the credential policy."""

import re

import pytest

from dbcreds.core.credentials import (
    UsernameMetadata,
    UsernamePolicy,
    generate_username,
    uniqueness_suffix,
    validate_password,
)
from dbcreds.utils.exceptions import PolicyViolationError

NOW = 1600000000


def test_username_layout():
    username = generate_username(UsernameMetadata(display_name="test", role_name="test"), 100, now=NOW)
    assert re.fullmatch(r"v_test_test_[A-Za-z0-9]{20}_1600000000", username)


def test_display_and_role_truncated_to_fifteen():
    metadata = UsernameMetadata(display_name="d" * 40, role_name="r" * 40)
    username = generate_username(metadata, 100, now=NOW)
    assert username.startswith("v_" + "d" * 15 + "_" + "r" * 15 + "_")


def test_empty_segments_skipped():
    username = generate_username(UsernameMetadata(role_name="reader"), 100, now=NOW)
    assert re.fullmatch(r"v_reader_[A-Za-z0-9]{20}_1600000000", username)


def test_truncation_keeps_suffix():
    metadata = UsernameMetadata(display_name="display", role_name="role")
    username = generate_username(metadata, 40, now=NOW)

    assert len(username) <= 40
    assert re.search(r"_[A-Za-z0-9]{20}_1600000000$", username)


def test_suffix_only_when_head_does_not_fit():
    suffix_length = 20 + 1 + len(str(NOW))
    username = generate_username(UsernameMetadata(display_name="x"), suffix_length, now=NOW)
    assert re.fullmatch(r"[A-Za-z0-9]{20}_1600000000", username)


def test_max_length_shorter_than_suffix():
    with pytest.raises(PolicyViolationError) as exc_info:
        generate_username(UsernameMetadata(), 10, now=NOW)
    assert exc_info.value.category == "request"


def test_usernames_are_unique():
    metadata = UsernameMetadata(display_name="test", role_name="test")
    names = {generate_username(metadata, 100, now=NOW) for _ in range(50)}
    assert len(names) == 50


def test_custom_policy():
    policy = UsernamePolicy(prefix="Dyn", display_name_length=3, role_name_length=0,
                            random_length=5, separator="-", lowercase=True)
    username = generate_username(UsernameMetadata(display_name="Alice", role_name="Admin"), 63, policy, now=NOW)
    assert re.fullmatch(r"dyn-ali-[a-z0-9]{5}-1600000000", username)


def test_uniqueness_suffix():
    suffix = uniqueness_suffix(UsernamePolicy(random_length=8), now=NOW)
    assert re.fullmatch(r"[A-Za-z0-9]{8}_1600000000", suffix)


def test_password_returned_verbatim():
    assert validate_password("nuozxby98523u89bdfnkjl") == "nuozxby98523u89bdfnkjl"
    assert validate_password(" spaced; 'quoted' ") == " spaced; 'quoted' "


def test_password_too_short():
    with pytest.raises(PolicyViolationError):
        validate_password("")
    with pytest.raises(PolicyViolationError):
        validate_password("short", min_length=8)


def test_password_must_be_string():
    with pytest.raises(PolicyViolationError):
        validate_password(12345)
