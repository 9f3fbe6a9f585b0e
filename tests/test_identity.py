"""
Tests for services/identity.py - identity keys for submitters and stored rows.
"""

from conftest import make_action, make_report
from streetlights.schemas import GuestInfo, Session
from streetlights.services.identity import (
    display_name,
    extract_row_identity,
    normalize_email,
    normalize_phone,
    resolve,
)


class TestNormalize:
    def test_email(self):
        assert normalize_email("  Jane@Mail.COM ") == "jane@mail.com"
        assert normalize_email(None) == ""

    def test_phone(self):
        assert normalize_phone("(440) 555-0100") == "4405550100"
        assert normalize_phone(None) == ""


class TestResolve:
    """Precedence uid > email > phone > name."""

    def test_session_wins(self):
        assert resolve(Session(user_id="u1", email="a@b.c"), GuestInfo(name="x", email="z@z.z")) == "uid:u1"

    def test_guest_email(self):
        assert resolve(None, GuestInfo(name="Jane", email=" Jane@Mail.com ", phone="555")) == "email:jane@mail.com"

    def test_guest_phone(self):
        assert resolve(None, GuestInfo(name="Jane", phone="(440) 555-0100")) == "phone:4405550100"

    def test_guest_name_only(self):
        assert resolve(None, GuestInfo(name="  Jane ")) == "name:jane"

    def test_nothing(self):
        """No usable signal -> None."""
        assert resolve() is None
        assert resolve(None, GuestInfo()) is None


class TestRowIdentity:
    def test_report_row_matches_guest(self):
        """Stored spelling and typed spelling resolve to the same key."""
        r = make_report("r1", reporter_email="JANE@mail.com ", reporter_name="Jane")
        assert extract_row_identity(r) == resolve(None, GuestInfo(name="jane", email="jane@mail.com"))

    def test_report_row_user(self):
        r = make_report("r1", reporter_user_id="u1", reporter_email="a@b.c")
        assert extract_row_identity(r) == "uid:u1"

    def test_action_row_uses_actor(self):
        a = make_action("ol-1", "working", 10, actor_phone="440-555-0100")
        assert extract_row_identity(a) == "phone:4405550100"

    def test_empty_row(self):
        assert extract_row_identity(make_report("r1")) is None


class TestDisplayName:
    def test_profile_name(self):
        assert display_name(Session(user_id="u", name=" Bob ")) == "Bob"

    def test_email_local_part(self):
        assert display_name(Session(user_id="u", email="bob@x.com")) == "bob"

    def test_fallback(self):
        assert display_name(Session(user_id="u")) == "User"

    def test_guest(self):
        assert display_name(None, GuestInfo(name=" Ann ")) == "Ann"
