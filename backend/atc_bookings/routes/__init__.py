"""Route modules for the booking API."""

__all__ = [
    "auth",
    "bookings",
    "keys",
    "oauth",
    "org",
    "org_members",
    "org_session",
]
