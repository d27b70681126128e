"""Pydantic models for the Admin GraphQL payloads used by the uploader.

Only the fields the pipeline reads are modelled; anything else in the
response is ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from bulkimg.models import RemoteRecord


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UserError(_Payload):
    field: list[str] | None = None
    message: str


class StagedParameter(_Payload):
    name: str
    value: str


class StagedTarget(_Payload):
    url: str
    resource_url: str = Field(alias="resourceUrl")
    parameters: list[StagedParameter] = Field(default_factory=list)


class StagedUploadsCreatePayload(_Payload):
    staged_targets: list[StagedTarget] = Field(default_factory=list, alias="stagedTargets")
    user_errors: list[UserError] = Field(default_factory=list, alias="userErrors")


class CreatedMedia(_Payload):
    id: str | None = None


class ProductCreateMediaPayload(_Payload):
    media: list[CreatedMedia | None] = Field(default_factory=list)
    media_user_errors: list[UserError] = Field(
        default_factory=list, alias="mediaUserErrors"
    )


class FeaturedImage(_Payload):
    url: str


class MediaNode(_Payload):
    id: str
    media_content_type: str | None = Field(default=None, alias="mediaContentType")


class MediaEdge(_Payload):
    node: MediaNode


class MediaConnection(_Payload):
    edges: list[MediaEdge] = Field(default_factory=list)


class ProductNode(_Payload):
    id: str
    handle: str
    title: str = ""
    status: str = ""
    featured_image: FeaturedImage | None = Field(default=None, alias="featuredImage")
    media: MediaConnection = Field(default_factory=MediaConnection)

    def to_record(self) -> RemoteRecord:
        return RemoteRecord(
            id=self.id,
            handle=self.handle,
            title=self.title,
            status=self.status,
            has_existing_image=self.featured_image is not None,
            media_count=len(self.media.edges),
        )


class ProductEdge(_Payload):
    node: ProductNode
    cursor: str | None = None


class PageInfo(_Payload):
    has_next_page: bool = Field(alias="hasNextPage")
    end_cursor: str | None = Field(default=None, alias="endCursor")


class ProductConnection(_Payload):
    edges: list[ProductEdge] = Field(default_factory=list)
    page_info: PageInfo = Field(alias="pageInfo")


def join_user_errors(errors: list[UserError]) -> str:
    """Join user error messages the way the Admin UI reports them."""
    return ", ".join(e.message for e in errors)
