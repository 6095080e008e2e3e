from pydantic import BaseModel


class SessionTiming(BaseModel):
    is_active: bool
    can_join: bool
    is_past: bool
    seconds_until_start: int
    seconds_remaining: int
