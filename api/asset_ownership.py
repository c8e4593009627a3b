"""
Ownership verification for client-supplied asset references.

Clients upload directly to the asset store and then hand us a public id.
Before a reference is stored we ask the asset store itself what that id is
and where it lives; nothing the client says about the asset is trusted.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from api.asset_store import AssetStore
from api.enums import AssetKind
from api.errors import AssetNotFoundError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_KINDS = (AssetKind.IMAGE.value,)


def folder_of(public_id: str) -> str:
    """All path segments of a public id except the last, joined with '/'."""
    segments = [segment for segment in public_id.split("/") if segment]
    return "/".join(segments[:-1])


async def verify_asset_ownership(
    assets: AssetStore,
    public_id: Optional[str],
    expected_folder: str,
    candidate_kinds: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """
    Confirm an asset exists and sits in the expected per-user folder.

    Candidate kinds are tried in order; a not-found answer for one kind falls
    through to the next. Any other asset store failure propagates.

    Args:
        assets: Asset store client
        public_id: Client-supplied public id
        expected_folder: Caller-computed folder, e.g. "videos/{user_id}"
        candidate_kinds: Resource kinds to try, default ("image",)

    Returns:
        The resource as reported by the asset store

    Raises:
        ValidationError: Empty public id
        NotFoundError: No candidate kind resolved the id
        ForbiddenError: The resource lives outside expected_folder
        UpstreamError: Asset store unreachable or erroring
    """
    public_id = str(public_id or "").strip()
    if not public_id:
        raise ValidationError("Asset public id is required")

    kinds = list(candidate_kinds or DEFAULT_CANDIDATE_KINDS)
    resource: Optional[Dict[str, Any]] = None

    for kind in kinds:
        try:
            resource = await assets.inspect(public_id, str(kind))
            break
        except AssetNotFoundError:
            logger.debug(f"Asset {public_id} not found as {kind}, trying next kind")
            continue

    if resource is None:
        raise NotFoundError("Cloudinary asset not found")

    resolved_id = str(resource.get("public_id") or "")
    expected = expected_folder.strip("/")
    if folder_of(resolved_id) != expected:
        logger.warning(f"Asset folder mismatch for {public_id}: expected {expected}, got {folder_of(resolved_id)}")
        raise ForbiddenError("Cloudinary asset folder mismatch")

    return resource
