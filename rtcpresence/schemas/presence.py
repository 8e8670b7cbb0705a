from pydantic import BaseModel


class ViewerRecord(BaseModel):
    # epoch milliseconds
    joinedAt: int
    lastSeen: int


class SuccessResponse(BaseModel):
    success: bool = True


class ViewerCountResponse(BaseModel):
    channel: str
    viewerCount: int
