"""Pydantic models for Object Storage Service payloads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SignedS3UploadOut(BaseModel):
    """Response of ``GET .../signeds3upload``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    upload_key: str = Field(alias="uploadKey", min_length=1)
    urls: list[str] = Field(default_factory=list)
    upload_expiration: str | None = Field(default=None, alias="uploadExpiration")
    url_expiration: str | None = Field(default=None, alias="urlExpiration")


class CompleteSignedS3UploadIn(BaseModel):
    """Request body of ``POST .../signeds3upload``."""

    model_config = ConfigDict(populate_by_name=True)

    upload_key: str = Field(alias="uploadKey", min_length=1)


class ObjectDetailsOut(BaseModel):
    """Object details returned once an upload is completed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bucket_key: str = Field(alias="bucketKey")
    object_key: str = Field(alias="objectKey")
    object_id: str = Field(alias="objectId")
    size: int = Field(default=0, ge=0)
    content_type: str | None = Field(default=None, alias="contentType")
    location: str | None = None
    sha1: str | None = None
