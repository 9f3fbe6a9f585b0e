# streetlights/services/identity.py
"""
Reporter identity keys.

    uid:<user id>  >  email:<trimmed lowercase>  >  phone:<digits>  >  name:<trimmed lowercase>

The same precedence is used for the person submitting now and for stored
report / action rows, so a guest typing " Jane@Mail.com " today matches the
row saved last week as "jane@mail.com".
"""
import re
from typing import Any, Optional

_NON_DIGIT = re.compile(r"\D")


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


def normalize_phone(phone: Any) -> str:
    return _NON_DIGIT.sub("", str(phone or ""))


def normalize_name(name: Any) -> str:
    return str(name or "").strip().lower()


def _key(user_id: Any = None, email: Any = None, phone: Any = None, name: Any = None) -> Optional[str]:
    uid = str(user_id or "").strip()
    if uid:
        return f"uid:{uid}"
    e = normalize_email(email)
    if e:
        return f"email:{e}"
    p = normalize_phone(phone)
    if p:
        return f"phone:{p}"
    n = normalize_name(name)
    if n:
        return f"name:{n}"
    return None


def resolve(session: Any = None, guest: Any = None) -> Optional[str]:
    """Identity of whoever is submitting. None when there is no usable signal."""
    if session is not None and getattr(session, "user_id", None):
        return _key(user_id=session.user_id)
    if guest is None:
        return None
    return _key(
        email=getattr(guest, "email", None),
        phone=getattr(guest, "phone", None),
        name=getattr(guest, "name", None),
    )


def extract_row_identity(row: Any) -> Optional[str]:
    """Identity of a stored Report (reporter_*) or LightActionEvent (actor_*)."""
    if hasattr(row, "actor_user_id"):
        return _key(row.actor_user_id, row.actor_email, row.actor_phone, row.actor_name)
    return _key(
        getattr(row, "reporter_user_id", None),
        getattr(row, "reporter_email", None),
        getattr(row, "reporter_phone", None),
        getattr(row, "reporter_name", None),
    )


def display_name(session: Any = None, guest: Any = None) -> str:
    """Best-effort reporter name; signed-in users are never blocked on it."""
    if session is not None and getattr(session, "user_id", None):
        name = str(getattr(session, "name", None) or "").strip()
        if name:
            return name
        email = str(getattr(session, "email", None) or "").strip()
        return email.split("@")[0] if email else "User"
    return str(getattr(guest, "name", None) or "").strip()
