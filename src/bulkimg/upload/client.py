"""Admin GraphQL and storage clients for the image upload pipeline.

Implements the three-step staged upload pattern:
  1. ``stagedUploadsCreate`` -- one call issues a staged target per image
  2. Multipart POST of the bytes directly to each target's storage URL
  3. ``productCreateMedia`` -- one aliased call attaches every stored image

The control-plane calls go through :meth:`CatalogClient.execute`, which
returns the decoded GraphQL body or raises.  Storage transfers never carry
the Admin access token.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from bulkimg.constants import MEDIA_CONTENT_TYPE, TRANSFER_FILE_FIELD
from bulkimg.models import (
    AttachRequest,
    LocalFile,
    RemoteRecord,
    UploadOutcome,
    UploadRequest,
    UploadSlot,
)
from bulkimg.upload.exceptions import (
    AttachError,
    CatalogAPIError,
    SlotRequestError,
    TransferError,
)
from bulkimg.upload.schemas import (
    ProductConnection,
    ProductCreateMediaPayload,
    StagedUploadsCreatePayload,
    join_user_errors,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# GraphQL documents
# ---------------------------------------------------------------------------

GET_DRAFT_PRODUCTS = """
query GetDraftProducts($first: Int!, $cursor: String, $query: String) {
  products(first: $first, after: $cursor, query: $query) {
    edges {
      node {
        id
        handle
        title
        status
        featuredImage {
          url
        }
        media(first: 1) {
          edges {
            node {
              id
              mediaContentType
            }
          }
        }
      }
      cursor
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""

STAGED_UPLOADS_CREATE = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters {
        name
        value
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

_CREATE_MEDIA_FIELD = """
  attach{i}: productCreateMedia(productId: $productId{i}, media: $media{i}) {{
    media {{
      id
    }}
    mediaUserErrors {{
      field
      message
    }}
  }}"""

_EXTENSION_SUFFIX = re.compile(r"\.[^.]+$")


def alt_text_for(filename: str) -> str:
    """Alt text for an attached image: the filename without its extension."""
    return _EXTENSION_SUFFIX.sub("", filename)


def build_attach_document(count: int) -> str:
    """Build one mutation with an aliased ``productCreateMedia`` per item."""
    params = ", ".join(
        f"$productId{i}: ID!, $media{i}: [CreateMediaInput!]!" for i in range(count)
    )
    fields = "".join(_CREATE_MEDIA_FIELD.format(i=i) for i in range(count))
    return f"mutation AttachMedia({params}) {{{fields}\n}}\n"


# ---------------------------------------------------------------------------
# Control-plane client
# ---------------------------------------------------------------------------


class CatalogClient:
    """Thin Admin GraphQL client over :class:`httpx.AsyncClient`.

    Usage::

        async with httpx.AsyncClient(timeout=60.0) as http:
            catalog = CatalogClient(http, endpoint=config.graphql_url,
                                    access_token=token)
            records = await catalog.fetch_draft_records()
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        endpoint: str,
        access_token: str,
        page_size: int = 100,
        record_query: str = "status:draft",
    ) -> None:
        self._http = http
        self._endpoint = endpoint
        self._access_token = access_token
        self._page_size = page_size
        self._record_query = record_query

    async def execute(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """POST a GraphQL document and return the decoded body.

        Raises:
            CatalogAPIError: On a non-2xx status, a non-JSON body, or a body
                with ``errors`` and no ``data``.
            httpx.HTTPError: On transport failures.
        """
        response = await self._http.post(
            self._endpoint,
            json={"query": query, "variables": variables or {}},
            headers={
                "X-Shopify-Access-Token": self._access_token,
                "Content-Type": "application/json",
            },
        )
        if not response.is_success:
            raise CatalogAPIError(
                f"Catalog API returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise CatalogAPIError("Catalog API returned a non-JSON body") from exc

        if body.get("data") is None:
            messages = [e.get("message", "") for e in body.get("errors") or []]
            raise CatalogAPIError(
                ", ".join(m for m in messages if m) or "Catalog API returned no data"
            )
        if body.get("errors"):
            logger.debug("GraphQL partial errors: %s", body["errors"])
        return body

    # ------------------------------------------------------------------
    # Record listing
    # ------------------------------------------------------------------

    async def fetch_draft_records(self) -> list[RemoteRecord]:
        """Fetch every record matching the configured query, page by page."""
        records: list[RemoteRecord] = []
        cursor: str | None = None
        while True:
            body = await self.execute(
                GET_DRAFT_PRODUCTS,
                {"first": self._page_size, "cursor": cursor, "query": self._record_query},
            )
            try:
                page = ProductConnection.model_validate(body["data"]["products"])
            except (KeyError, TypeError, PydanticValidationError) as exc:
                raise CatalogAPIError(f"Malformed products page: {exc}") from exc

            records.extend(edge.node.to_record() for edge in page.edges)
            if not page.page_info.has_next_page:
                break
            if page.page_info.end_cursor is None:
                raise CatalogAPIError("Products page has a next page but no end cursor")
            cursor = page.page_info.end_cursor

        logger.info("Fetched %d draft records", len(records))
        return records

    # ------------------------------------------------------------------
    # Phase 1: staged upload slots
    # ------------------------------------------------------------------

    async def create_upload_slots(
        self, requests: Sequence[UploadRequest]
    ) -> list[UploadSlot]:
        """Request one staged upload target per request, in request order.

        Raises:
            SlotRequestError: When the API reports user errors, returns a
                malformed payload, or returns a different number of targets.
        """
        body = await self.execute(
            STAGED_UPLOADS_CREATE,
            {
                "input": [
                    {
                        "filename": r.filename,
                        "mimeType": r.mime_type,
                        "fileSize": str(r.size_bytes),
                        "resource": MEDIA_CONTENT_TYPE,
                        "httpMethod": "POST",
                    }
                    for r in requests
                ]
            },
        )
        try:
            payload = StagedUploadsCreatePayload.model_validate(
                body["data"]["stagedUploadsCreate"]
            )
        except (KeyError, TypeError, PydanticValidationError) as exc:
            raise SlotRequestError(f"Malformed stagedUploadsCreate payload: {exc}") from exc

        if payload.user_errors:
            raise SlotRequestError(join_user_errors(payload.user_errors))

        if len(payload.staged_targets) != len(requests):
            raise SlotRequestError(
                f"Expected {len(requests)} upload targets, "
                f"got {len(payload.staged_targets)}"
            )

        return [
            UploadSlot(
                transfer_url=target.url,
                final_resource_url=target.resource_url,
                form_fields=tuple((p.name, p.value) for p in target.parameters),
                record_id=request.record_id,
                filename=request.filename,
            )
            for target, request in zip(payload.staged_targets, requests)
        ]

    # ------------------------------------------------------------------
    # Phase 3: attach media
    # ------------------------------------------------------------------

    async def attach_media(
        self, requests: Sequence[AttachRequest]
    ) -> list[UploadOutcome]:
        """Attach every stored image to its record in a single request.

        Returns one outcome per request, in request order.  Item-level
        problems (``mediaUserErrors`` or a null aliased field) become failed
        outcomes; a failure of the request as a whole raises.
        """
        if not requests:
            return []

        variables: dict[str, Any] = {}
        for i, r in enumerate(requests):
            variables[f"productId{i}"] = r.record_id
            variables[f"media{i}"] = [
                {
                    "originalSource": r.resource_url,
                    "mediaContentType": MEDIA_CONTENT_TYPE,
                    "alt": r.alt,
                }
            ]

        body = await self.execute(build_attach_document(len(requests)), variables)
        data = body["data"]
        if not isinstance(data, dict):
            raise AttachError("Malformed productCreateMedia response")
        errors_by_alias = _errors_by_alias(body.get("errors") or [])

        outcomes: list[UploadOutcome] = []
        for i, r in enumerate(requests):
            alias = f"attach{i}"
            raw = data.get(alias)
            if raw is None:
                error = errors_by_alias.get(alias, "No attach result returned")
                outcomes.append(UploadOutcome(r.filename, r.record_id, False, error))
                continue
            try:
                payload = ProductCreateMediaPayload.model_validate(raw)
            except PydanticValidationError as exc:
                outcomes.append(
                    UploadOutcome(r.filename, r.record_id, False, f"Malformed result: {exc}")
                )
                continue
            if payload.media_user_errors:
                outcomes.append(
                    UploadOutcome(
                        r.filename,
                        r.record_id,
                        False,
                        join_user_errors(payload.media_user_errors),
                    )
                )
            else:
                outcomes.append(UploadOutcome(r.filename, r.record_id, True))
        return outcomes


def _errors_by_alias(errors: list[dict[str, Any]]) -> dict[str, str]:
    """Group top-level GraphQL error messages by the first path segment."""
    grouped: dict[str, list[str]] = {}
    for err in errors:
        path = err.get("path") or []
        if path:
            grouped.setdefault(str(path[0]), []).append(err.get("message", ""))
    return {alias: ", ".join(msgs) for alias, msgs in grouped.items()}


# ---------------------------------------------------------------------------
# Phase 2: direct storage transfer
# ---------------------------------------------------------------------------


class StorageTransfer:
    """Uploads bytes straight to a staged target's storage URL."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def transfer(self, slot: UploadSlot, file: LocalFile, mime_type: str) -> None:
        """Multipart POST of *file* with every form field of *slot*.

        Form fields go first, verbatim; the file content goes last under
        the ``file`` field.

        Raises:
            TransferError: On a non-2xx response.
            OSError: If the file content cannot be read.
            httpx.HTTPError: On transport failures.
        """
        fields: dict[str, list[str]] = {}
        for name, value in slot.form_fields:
            fields.setdefault(name, []).append(value)

        content = file.read_bytes()
        response = await self._http.post(
            slot.transfer_url,
            data=fields,
            files={TRANSFER_FILE_FIELD: (file.name, content, mime_type)},
        )
        if not response.is_success:
            logger.error(
                "Staged upload of %s failed (HTTP %d): %s",
                slot.filename,
                response.status_code,
                response.text[:500],
            )
            raise TransferError(
                f"Upload failed: {response.status_code}",
                status_code=response.status_code,
            )
        logger.debug("Transferred %s to %s", slot.filename, slot.transfer_url)
