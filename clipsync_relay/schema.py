from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PairingStatus(str, Enum):
    ACTIVE = "active"
    # Recognised when read back, never assigned by the relay itself.
    INACTIVE = "inactive"


class ClipboardType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


# ----------stored records----------

class Pairing(BaseModel):
    id: str
    androidDeviceId: str
    androidDeviceName: str
    macDeviceId: str
    macDeviceName: str
    status: PairingStatus
    createdAt: int  # unix epoch milliseconds

    @property
    def is_active(self) -> bool:
        return self.status == PairingStatus.ACTIVE


class ClipboardItem(BaseModel):
    id: str
    pairingId: str
    content: str  # ciphertext, never interpreted
    sourceDeviceId: str
    type: str  # opaque tag, usually one of ClipboardType
    createdAt: int


# ----------request arguments----------

class CreatePairingArgs(BaseModel):
    androidDeviceId: str = Field(min_length=1)
    androidDeviceName: str
    macDeviceId: str = Field(min_length=1)
    macDeviceName: str


class PairingIdArgs(BaseModel):
    pairingId: str


class MacDeviceArgs(BaseModel):
    macDeviceId: str


class WatchForPairingArgs(BaseModel):
    macDeviceId: str
    sinceTimestamp: float


class SendClipboardArgs(BaseModel):
    pairingId: str
    content: str
    sourceDeviceId: str
    type: str


class HistoryArgs(BaseModel):
    pairingId: str
    limit: Optional[int] = None


class LiveQueryRequest(BaseModel):
    name: str
    args: dict = Field(default_factory=dict)
