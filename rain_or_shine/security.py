from typing import Union
from jose import JWTError, jwt
from .config import settings

def decode_access_token(token: str) -> Union[dict, None]:
    """
    Decode a JWT session token. Returns None if invalid or expired.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        return None
