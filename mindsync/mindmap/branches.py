"""Branch bookkeeping for mindmap documents."""

import logging
import re

from ..errors import ForbiddenError, NotFoundError, ValidationError
from .models import BranchSnapshot, MindMapDoc, MAIN_BRANCH, now_iso


_ILLEGAL_REF_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def validate_branch_name(name: str) -> str:
    """Return the stripped branch name, or raise ValidationError if git would reject it."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Branch name is required", error_code="BRANCH_NAME_REQUIRED")

    problems = (
        _ILLEGAL_REF_CHARS.search(name)
        or ".." in name
        or "@{" in name
        or "//" in name
        or name == "@"
        or name.startswith(("-", "/"))
        or name.endswith(("/", ".", ".lock"))
        or any(part.startswith(".") for part in name.split("/"))
    )
    if problems:
        raise ValidationError(f"Invalid branch name: {name!r}", error_code="BRANCH_NAME_INVALID")
    return name


def get_branch_data(doc: MindMapDoc, branch: str) -> BranchSnapshot:
    """
    Return a copy of the {nodes, edges} pair of ``branch``.

    ``main`` falls back to the top-level fields for documents written
    before branchData existed; any other unknown branch is empty.
    """
    snapshot = doc.branch_data.get(branch)
    if snapshot is not None:
        return snapshot.deep_copy()
    if branch == MAIN_BRANCH:
        return BranchSnapshot(nodes=list(doc.nodes), edges=list(doc.edges)).deep_copy()
    return BranchSnapshot()


def set_branch_data(doc: MindMapDoc, branch: str, snapshot: BranchSnapshot) -> None:
    """Overwrite ``branch``; for ``main`` the top-level fields are written in the same call."""
    doc.branch_data[branch] = snapshot.deep_copy()
    if branch == MAIN_BRANCH:
        mirrored = snapshot.deep_copy()
        doc.nodes = mirrored.nodes
        doc.edges = mirrored.edges
    if branch not in doc.branches:
        doc.branches.append(branch)
    doc.update_at = now_iso()


def create_branch(doc: MindMapDoc, name: str) -> str:
    """
    Create ``name`` as a deep copy of main and make it the current branch.

    Raises:
        ValidationError: name empty, illegal, reserved or already present
        ForbiddenError: the document is not currently on main
    """
    logger = logging.getLogger('mindsync.branches')
    name = validate_branch_name(name)

    if name == MAIN_BRANCH:
        raise ValidationError("Branch name 'main' is reserved", error_code="BRANCH_NAME_RESERVED")

    if (doc.current_branch or MAIN_BRANCH) != MAIN_BRANCH:
        raise ForbiddenError(
            f"Branches can only be created from '{MAIN_BRANCH}' (current: '{doc.current_branch}')",
            error_code="BRANCH_CREATE_FORBIDDEN"
        )

    if name in doc.branches or name in doc.branch_data:
        raise ValidationError(f"Branch '{name}' already exists", error_code="BRANCH_EXISTS")

    set_branch_data(doc, name, get_branch_data(doc, MAIN_BRANCH))
    doc.current_branch = name
    logger.info(f"Created branch '{name}' for mindmap {doc.domain_id}/{doc.mmid}")
    return name


def switch_branch(doc: MindMapDoc, name: str) -> None:
    if name != MAIN_BRANCH and name not in doc.branches:
        raise NotFoundError(f"Branch '{name}' does not exist", error_code="BRANCH_NOT_FOUND")
    doc.current_branch = name
    doc.update_at = now_iso()
