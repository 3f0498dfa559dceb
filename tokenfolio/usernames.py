import re
import secrets
import string

USERNAME_RE = re.compile(r"^[a-zA-Z0-9-]{3,30}$")

# Usernames are the public path segment, so they cannot shadow routes or
# well-known site paths. Compared lowercased.
RESERVED_NAMES = frozenset({
    "about", "account", "accounts", "admin", "administrator", "api",
    "apis", "app", "assets", "auth", "billing", "blog", "blogs", "browse",
    "calendar", "careers", "cart", "checkout", "components", "config",
    "configs", "contact", "context", "contexts", "cookies", "css", "dashboard",
    "default", "dev", "develop", "developers", "development", "discover",
    "docs", "documentation", "drafts", "env", "events", "explore", "faq",
    "feedback", "ftp", "health", "help", "home", "hooks", "i18n", "inbox",
    "index", "interfaces", "invoices", "jobs", "js", "lang", "language",
    "languages", "legal", "lib", "libs", "locales", "localhost", "login",
    "logout", "mail", "main", "media", "member", "members", "messages",
    "models", "moderator", "moderators", "news", "notifications", "null",
    "outbox", "payment", "payments", "policies", "policy", "portfolio",
    "portfolios", "press", "privacy", "prod", "production", "profile",
    "profiles", "public", "register", "root", "schemas", "scripts", "search",
    "security", "sent", "settings", "shop", "signup", "spam", "stage",
    "staging", "static", "status", "store", "subscribe", "subscription",
    "support", "team", "template", "terms", "test", "testing", "tests",
    "translations", "trash", "tsx", "types", "undefined", "unsubscribe",
    "uptime", "user", "users", "utilities", "utils", "webhooks", "www",
})

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SUFFIX_LENGTH = 6
BASE_MAX_LENGTH = 20


def is_valid_username(username: str) -> bool:
    if not isinstance(username, str) or not USERNAME_RE.match(username):
        return False
    if username.startswith("-") or username.endswith("-"):
        return False
    if username.isdigit():
        return False
    return username.lower() not in RESERVED_NAMES


def derive_username(token_name: str) -> str:
    """Build a URL-friendly username from a token name plus a random suffix.

    Collisions are not retried here; a taken username surfaces as an
    ordinary creation error.
    """
    base = re.sub(r"[^a-z0-9]+", "-", token_name.lower()).strip("-")[:BASE_MAX_LENGTH].strip("-")
    suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    if not base:
        base = "token"
    return f"{base}-{suffix}"
