"""Branch partition lookup."""

from typing import Optional

from app.core.config import settings
from app.core.errors import NotFoundError


def resolve_branch(branch_id: Optional[str]) -> str:
    """Return a known branch id; a missing id means the default branch."""
    if not branch_id:
        return settings.default_branch
    if branch_id not in settings.branch_map:
        raise NotFoundError("Branch", branch_id)
    return branch_id
