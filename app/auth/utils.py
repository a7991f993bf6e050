from passlib.context import CryptContext

# argon2 generates a fresh random salt per hash; verify() is constant-time.
context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return context.verify(plain, hashed)


def dummy_verify() -> None:
    """Burn the same time as a real verify when there is no hash to check."""
    context.dummy_verify()


def canonical_email(email: str) -> str:
    return (email or "").strip().lower()


def default_display_name(email: str) -> str:
    return canonical_email(email).split("@")[0]
