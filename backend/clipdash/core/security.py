import base64
import hashlib
import hmac

from cryptography.fernet import Fernet, InvalidToken

from clipdash.core.config import settings


def _get_fernet() -> Fernet:
    digest = hashlib.sha256(settings.token_encryption_key.encode("utf-8")).digest()
    key = base64.urlsafe_b64encode(digest)
    return Fernet(key)


def encrypt_secret(secret: str) -> str:
    if not secret:
        return ""
    fernet = _get_fernet()
    return fernet.encrypt(secret.encode("utf-8")).decode("utf-8")


def decrypt_secret(encrypted_secret: str) -> str:
    if not encrypted_secret:
        return ""
    fernet = _get_fernet()
    try:
        return fernet.decrypt(encrypted_secret.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise ValueError("Invalid encrypted secret") from exc


def extract_worker_token(
    *,
    authorization: str | None,
    cron_secret_header: str | None,
    query_token: str | None,
) -> str:
    bearer = ""
    if authorization and authorization.startswith("Bearer "):
        bearer = authorization[len("Bearer "):].strip()
    return bearer or (cron_secret_header or "").strip() or (query_token or "").strip()


def is_worker_token_valid(presented: str) -> bool:
    expected = settings.worker_secret
    if not expected:
        # Unset secret leaves the trigger open outside production only.
        return not settings.is_production
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))
