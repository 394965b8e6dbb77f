"""Preview naming convention.

All provider resources of one preview carry its preview name
(``pr-<num>-<slug>``), which is how orphaned resources are traced back to
the environment they belonged to.
"""

import re

from previewctl.exceptions import ValidationError

KV_SUFFIXES: dict[str, str] = {
    "session": "session",
    "cache": "cache",
    "rate_limit": "rate",
}

# Worker bindings for each namespace role
KV_BINDINGS: dict[str, str] = {
    "session": "SESSION_STORE",
    "cache": "CACHE_STORE",
    "rate_limit": "RATE_LIMIT",
}

_PREVIEW_NAME_RE = re.compile(r"^pr-(?P<pr>[1-9][0-9]*)-(?P<slug>[a-z0-9-]+)$")
_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9-]")


def sanitize_branch(branch_name: str, max_length: int = 20) -> str:
    """Turn a branch name into a DNS-safe slug.

    Every character outside ``[a-zA-Z0-9-]`` becomes ``-``, the result is
    lowercased and cut to ``max_length``.
    """
    slug = _UNSAFE_CHARS_RE.sub("-", branch_name).lower()[:max_length]
    if not slug.strip("-"):
        return "branch"
    return slug


def preview_name(pr_number: int | str, branch_name: str, max_length: int = 20) -> str:
    """Derive the environment id for a pull request."""
    try:
        number = int(pr_number)
    except (TypeError, ValueError):
        raise ValidationError("preview.invalid_pr_number", value=pr_number) from None
    if number <= 0:
        raise ValidationError("preview.invalid_pr_number", value=pr_number)
    return f"pr-{number}-{sanitize_branch(branch_name, max_length)}"


def is_preview_name(name: str) -> bool:
    return _PREVIEW_NAME_RE.match(name) is not None


def pr_number_of(name: str) -> int:
    match = _PREVIEW_NAME_RE.match(name)
    if match is None:
        raise ValidationError("preview.invalid_name", value=name)
    return int(match.group("pr"))


def worker_name(project_name: str, name: str) -> str:
    return f"{project_name}-{name}"


def kv_namespace_title(name: str, role: str) -> str:
    return f"{name}-{KV_SUFFIXES[role]}"


def database_branch_name(project_name: str, name: str) -> str:
    return f"{project_name}-preview-{name}"


def preview_host(name: str, subdomain: str, zone_name: str) -> str:
    return f"{name}.{subdomain}.{zone_name}"


def preview_url(name: str, subdomain: str, zone_name: str) -> str:
    return f"https://{preview_host(name, subdomain, zone_name)}"


def preview_name_from_worker(project_name: str, script_name: str) -> str | None:
    """Map a worker script name back to its preview, or None if it is not a preview worker."""
    prefix = f"{project_name}-"
    if not script_name.startswith(prefix):
        return None
    candidate = script_name[len(prefix) :]
    return candidate if is_preview_name(candidate) else None


def preview_name_from_kv_title(title: str) -> tuple[str, str] | None:
    """Map a KV namespace title to ``(preview_name, role)``."""
    for role, suffix in KV_SUFFIXES.items():
        tail = f"-{suffix}"
        if title.endswith(tail):
            candidate = title[: -len(tail)]
            if is_preview_name(candidate):
                return candidate, role
    return None


def preview_name_from_database(project_name: str, database_name: str) -> str | None:
    prefix = f"{project_name}-preview-"
    if not database_name.startswith(prefix):
        return None
    candidate = database_name[len(prefix) :]
    return candidate if is_preview_name(candidate) else None
