"""Request bodies for the Aikotoba API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateEntryRequest(BaseModel):
    keyword: str = Field(..., min_length=1)
    body: str = ""
    passcode: str | None = None
    voiceUrl: str | None = None
    imageUrls: list[str] | None = None


class UpdateEntryRequest(BaseModel):
    body: str | None = None
    voiceUrl: str | None = None
    imageUrls: list[str] | None = None


class ChallengeRequest(BaseModel):
    guess: str


class PasscodeRequest(BaseModel):
    passcode: str


class UpgradeRequest(BaseModel):
    targetLength: int
    newPasscode: str | None = None


class SettingsUpdateRequest(BaseModel):
    pushEnabled: bool | None = None
    notifyOnStolen: bool | None = None
    notifyOnAttempts: bool | None = None
    attemptThreshold: int | None = Field(None, ge=1)
