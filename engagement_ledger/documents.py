"""Time-limited document links issued through a storage provider."""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .models.activity import ActivityLogEntry
from .store import EntityStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_SECONDS = 300


class DocumentLinkProvider(Protocol):
    """Storage backend able to sign a download URL for an object path."""

    def create_signed_url(self, path: str, expires_in: int) -> str:
        ...


@dataclass(frozen=True)
class DocumentLink:
    path: str
    url: str
    expires_in: int

    def to_dict(self) -> dict:
        return {"path": self.path, "url": self.url, "expires_in": self.expires_in}


def issue_document_link(
    provider: DocumentLinkProvider,
    path: str,
    store: Optional[EntityStore] = None,
    client_id: Optional[str] = None,
    expert_id: Optional[str] = None,
    file_name: Optional[str] = None,
    expires_in: int = DEFAULT_EXPIRY_SECONDS,
) -> DocumentLink:
    """
    Sign a download link and record the download in the activity log.

    Provider errors propagate. The activity write is best effort: if it
    fails the link is still returned.
    """
    if expires_in <= 0:
        raise ValueError(f"expires_in must be positive, got {expires_in}")

    url = provider.create_signed_url(path, expires_in)
    link = DocumentLink(path=path, url=url, expires_in=expires_in)

    if store is not None:
        entry = ActivityLogEntry(
            expert_id=expert_id,
            client_id=client_id,
            action="document_downloaded",
            details=f"Downloaded {file_name or path}",
        )
        try:
            store.insert("activity_log", entry)
        except Exception as e:
            logger.warning("Could not log download of %s: %s", path, e)

    return link
