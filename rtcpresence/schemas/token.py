from pydantic import BaseModel


class TokenResponse(BaseModel):
    token: str
    appId: str
    channel: str
    uid: int
