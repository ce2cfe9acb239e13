from typing import Optional

from itsdangerous import BadData, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="owner-token")


def issue_owner_token(owner_id: int) -> str:
    return _serializer().dumps({"o": owner_id})


def owner_id_from_token(
    token: str, max_age_hours: Optional[int] = None
) -> Optional[int]:
    """Owner id carried by ``token``, or None when it is forged or expired."""
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadData:
        return None

    owner_id = data.get("o") if isinstance(data, dict) else None
    if not isinstance(owner_id, int) or isinstance(owner_id, bool):
        return None
    return owner_id


def owner_id_from_header(authorization: Optional[str]) -> Optional[int]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return owner_id_from_token(token.strip())
