"""Remote URL handling for mindmap repositories."""

import logging
import re
from contextlib import contextmanager
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from git import Repo, GitCommandError

from ..errors import GitOperationError, RemoteAuthError, ValidationError


_SHORTHAND = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_CREDENTIALS_IN_URL = re.compile(r"(https?://)[^/@\s]+@")


def is_ssh_url(url: str) -> bool:
    return url.startswith("git@") or url.startswith("ssh://")


def is_local_url(url: str) -> bool:
    return url.startswith("/") or url.startswith("file://") or url.startswith("./") or url.startswith("../")


def normalize_remote(repo_ref: str) -> str:
    """
    Token-free URL for ``repo_ref``; this is the form persisted in .git/config.

    ``org/repo`` shorthand expands to ``https://github.com/org/repo.git``.
    """
    repo_ref = (repo_ref or "").strip()
    if not repo_ref:
        raise ValidationError("Remote repository is not configured", error_code="REMOTE_NOT_CONFIGURED")

    if is_ssh_url(repo_ref) or is_local_url(repo_ref):
        return repo_ref
    if repo_ref.startswith(("https://", "http://")):
        return strip_credentials(repo_ref)
    if "://" not in repo_ref and "@" not in repo_ref and _SHORTHAND.match(repo_ref.removesuffix(".git")):
        return f"https://github.com/{repo_ref.removesuffix('.git')}.git"
    raise ValidationError(f"Unsupported remote repository reference: {redact_credentials(repo_ref)}",
                          error_code="REMOTE_URL_INVALID")


def requires_token(url: str) -> bool:
    """HTTPS GitHub remotes need an access token to push."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and (parts.hostname or "").lower() == "github.com"


def build_remote_url(repo_ref: str, token: Optional[str]) -> str:
    """
    URL to use for one network call.

    SSH and local URLs are used verbatim. HTTPS GitHub URLs get
    ``<token>@`` injected unless they already carry an auth segment, and
    ``org/repo`` shorthand expands to the injected HTTPS form.
    """
    repo_ref = (repo_ref or "").strip()
    if is_ssh_url(repo_ref) or is_local_url(repo_ref):
        return repo_ref

    if repo_ref.startswith(("https://", "http://")) and "@" in urlsplit(repo_ref).netloc:
        return repo_ref

    url = normalize_remote(repo_ref)
    if not token or not requires_token(url):
        return url

    parts = urlsplit(url)
    return urlunsplit((parts.scheme, f"{token}@{parts.netloc}", parts.path, parts.query, parts.fragment))


def strip_credentials(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if parts.scheme not in ("http", "https") or "@" not in parts.netloc:
        return url
    return urlunsplit((parts.scheme, parts.netloc.rsplit("@", 1)[1], parts.path, parts.query, parts.fragment))


def redact_credentials(text: str) -> str:
    """Hide user:token segments of any URL inside ``text``."""
    if not text:
        return text
    return _CREDENTIALS_IN_URL.sub(r"\1***@", text)


@contextmanager
def authenticated_remote(repo: Repo, clean_url: str, auth_url: str):
    """
    Point ``origin`` at ``auth_url`` for the duration of the block.

    The clean URL is written back afterwards, even when the block fails, so
    tokens never stay in .git/config.
    """
    logger = logging.getLogger('mindsync.git_sync.remote')
    swapped = auth_url != clean_url
    if swapped:
        try:
            repo.git.remote("set-url", "origin", auth_url)
        except GitCommandError as e:
            raw = redact_credentials(str(e))
            raise GitOperationError(f"git remote set-url failed: {raw.splitlines()[-1] if raw else e.status}",
                                    command="remote", error_code="GIT_REMOTE_UPDATE_FAILED", raw=raw) from e
    try:
        yield
    finally:
        if swapped:
            try:
                repo.git.remote("set-url", "origin", clean_url)
            except GitCommandError as e:
                logger.error(f"Failed to restore clean origin URL: {redact_credentials(str(e))}")


def require_token(url: str, token: Optional[str]) -> None:
    if requires_token(url) and not token:
        raise RemoteAuthError(
            "An access token is required to use an HTTPS GitHub remote",
            error_code="GIT_TOKEN_MISSING"
        )
