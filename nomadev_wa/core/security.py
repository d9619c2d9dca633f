from fastapi import Depends, Header, HTTPException

from nomadev_wa.settings import Settings, get_settings


def require_internal_api_key(
    x_api_key: str = Header(default=""),
    settings: Settings = Depends(get_settings),
):
    expected = settings.INTERNAL_API_KEY
    if not expected or x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")
