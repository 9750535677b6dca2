"""
Naming helpers for tenant subdomains, databases and database users.
"""
import re
from typing import Callable, Optional

MAX_DATABASE_NAME = 64
MAX_DATABASE_USER = 32
MAX_SUBDOMAIN_BASE = 30

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def _sanitize(value: str) -> str:
    return _NON_ALNUM.sub("_", value.lower())


def generate_database_name(subdomain: str, prefix: str = "ledgerhub_") -> str:
    """`<prefix><subdomain>` with every non-alphanumeric replaced by `_`."""
    return (prefix + _sanitize(subdomain))[:MAX_DATABASE_NAME]


def generate_database_user(subdomain: str) -> str:
    return ("fv_" + _sanitize(subdomain))[:MAX_DATABASE_USER]


def slugify_subdomain(company_name: Optional[str] = None, email: Optional[str] = None) -> str:
    """
    Base subdomain for self-registration.

    Uses the company name's alphanumerics, else the e-mail local part.
    """
    if company_name:
        slug = re.sub(r"[^a-z0-9]", "", company_name.lower())[:MAX_SUBDOMAIN_BASE]
        if slug:
            return slug
    if email:
        local = email.split("@", 1)[0]
        slug = re.sub(r"[^a-z0-9]", "", local.lower())[:MAX_SUBDOMAIN_BASE]
        if slug:
            return slug
    return "company"


def unique_subdomain(base: str, exists: Callable[[str], bool]) -> str:
    """First of base, base1, base2, ... for which exists() is False."""
    candidate = base
    counter = 1
    while exists(candidate):
        candidate = f"{base}{counter}"
        counter += 1
    return candidate
