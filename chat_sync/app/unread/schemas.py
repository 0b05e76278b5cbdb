from typing import List, Optional

from pydantic import BaseModel, Field


class ChatUnreadDetail(BaseModel):
    chat_id: str
    old_count: int
    new_count: int
    fixed: bool = Field(default=False, description="Whether the unread count was fixed")


class RecomputeUnreadResponse(BaseModel):
    status: str = Field(description="Status of the operation")
    processed_chats: int = Field(description="Number of chats processed")
    fixed_counts: int = Field(description="Number of chats where unread counts were fixed")
    details: List[ChatUnreadDetail] = Field(default=[], description="Details for each chat processed")


class UnreadInconsistency(BaseModel):
    chat_id: str
    user_id: str
    type: str = Field(description="Type of inconsistency: 'missing_counter' or 'count_mismatch'")
    stored_count: Optional[int] = Field(default=None, description="Current stored unread count")
    actual_count: int = Field(description="Unread count derived from the message log")


class RepairDetail(BaseModel):
    chat_id: str
    user_id: str
    old_count: Optional[int] = Field(default=None, description="Previous unread count")
    new_count: int = Field(description="Updated unread count")
    type: str = Field(description="Type of inconsistency that was fixed")


class RepairUnreadResponse(BaseModel):
    status: str = Field(description="Status of the operation")
    total_inconsistencies: int = Field(description="Total number of inconsistencies found")
    fixed_count: int = Field(description="Number of inconsistencies fixed")
    details: List[RepairDetail] = Field(default=[], description="Details of each fixed inconsistency")
