import enum

# ── Token lifetimes ───────────────────────────────────────────────────────────
ACCESS_TOKEN_EXPIRE_SECONDS: int = 86_400 * 7   # 7 days
OAUTH_STATE_EXPIRE_SECONDS: int = 600           # 10 minutes

# ── One-time passcodes ────────────────────────────────────────────────────────
OTP_MIN: int = 100_000
OTP_MAX: int = 999_999
OTP_EXPIRE_MINUTES: int = 10
OTP_MAX_ATTEMPTS: int = 5
OTP_SWEEP_INTERVAL_SECONDS: int = 300           # 5 minutes

# ── Password policy (matches the signup form) ─────────────────────────────────
PASSWORD_MIN_LENGTH: int = 6
PASSWORD_MAX_LENGTH: int = 128
DISPLAY_NAME_MIN_LENGTH: int = 2
DISPLAY_NAME_MAX_LENGTH: int = 255


# ── OTP purpose (one ledger per purpose, never cross-referenced) ──────────────
class OTPPurpose(str, enum.Enum):
    SIGNUP = "signup"
    PASSWORD_RESET = "password_reset"


# ── Federated identity providers ──────────────────────────────────────────────
class IdentityProvider(str, enum.Enum):
    GOOGLE = "google"
