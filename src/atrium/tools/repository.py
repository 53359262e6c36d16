"""Repository operations against the GitHub REST API.

Every mutating action returns the affected resource's ``id`` and canonical
``url`` so the caller can render a confirmation.
"""

from __future__ import annotations

import base64
from typing import Any

from atrium.errors import ToolError
from atrium.tools.base import ActionTool, require


class RepositoryTool(ActionTool):
    name = "repository_action"
    description = (
        "Work with the user's GitHub repositories. Actions: list_repos, get_repo, "
        "create_repo {name, description?, private?}, read_file {repo, path, ref?}, "
        "write_file {repo, path, content, message?, branch?}, "
        "create_issue {repo, title, body?}, create_branch {repo, branch, from?}. "
        "'repo' is 'owner/name'."
    )
    actions = (
        "list_repos",
        "get_repo",
        "create_repo",
        "read_file",
        "write_file",
        "create_issue",
        "create_branch",
    )

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Accept"] = "application/vnd.github+json"
        headers["X-GitHub-Api-Version"] = "2022-11-28"
        return headers

    # ------------------------------------------------------------------
    # Read-only
    # ------------------------------------------------------------------

    async def action_list_repos(self, params: dict[str, Any]) -> dict[str, Any]:
        limit = int(params.get("limit", 30))
        body = await self._request(
            "GET", "/user/repos", params={"per_page": min(limit, 100), "sort": "updated"}
        )
        return {
            "repos": [
                {
                    "name": r.get("full_name"),
                    "url": r.get("html_url"),
                    "private": r.get("private", False),
                    "description": r.get("description") or "",
                }
                for r in body or []
            ]
        }

    async def action_get_repo(self, params: dict[str, Any]) -> dict[str, Any]:
        repo = _repo(params)
        r = await self._request("GET", f"/repos/{repo}")
        return {
            "repo": {
                "name": r.get("full_name"),
                "url": r.get("html_url"),
                "default_branch": r.get("default_branch"),
                "private": r.get("private", False),
                "description": r.get("description") or "",
            }
        }

    async def action_read_file(self, params: dict[str, Any]) -> dict[str, Any]:
        repo = _repo(params)
        (path,) = require(params, "path")
        query = {"ref": params["ref"]} if params.get("ref") else None
        body = await self._request("GET", f"/repos/{repo}/contents/{path}", params=query)
        if isinstance(body, list) or body.get("type") != "file":
            raise ToolError(f"'{path}' in {repo} is not a file")
        raw = base64.b64decode(body.get("content") or "")
        return {
            "path": path,
            "url": body.get("html_url"),
            "content": raw.decode("utf-8", errors="replace"),
        }

    # ------------------------------------------------------------------
    # Mutating
    # ------------------------------------------------------------------

    async def action_create_repo(self, params: dict[str, Any]) -> dict[str, Any]:
        (name,) = require(params, "name")
        r = await self._request(
            "POST",
            "/user/repos",
            json={
                "name": name,
                "description": params.get("description", ""),
                "private": bool(params.get("private", False)),
                "auto_init": True,
            },
        )
        return {"id": r.get("full_name"), "url": r.get("html_url")}

    async def action_write_file(self, params: dict[str, Any]) -> dict[str, Any]:
        repo = _repo(params)
        path, content = require(params, "path", "content")
        branch = params.get("branch")

        # Updating an existing file requires its current blob sha.
        existing = await self._request(
            "GET",
            f"/repos/{repo}/contents/{path}",
            params={"ref": branch} if branch else None,
            allow_missing=True,
        )
        payload: dict[str, Any] = {
            "message": params.get("message") or f"Update {path}",
            "content": base64.b64encode(str(params["content"]).encode("utf-8")).decode("ascii"),
        }
        if branch:
            payload["branch"] = branch
        if isinstance(existing, dict) and existing.get("sha"):
            payload["sha"] = existing["sha"]

        body = await self._request("PUT", f"/repos/{repo}/contents/{path}", json=payload)
        commit = body.get("commit") or {}
        return {
            "id": commit.get("sha"),
            "url": (body.get("content") or {}).get("html_url") or commit.get("html_url"),
            "created": "sha" not in payload,
        }

    async def action_create_issue(self, params: dict[str, Any]) -> dict[str, Any]:
        repo = _repo(params)
        (title,) = require(params, "title")
        r = await self._request(
            "POST", f"/repos/{repo}/issues", json={"title": title, "body": params.get("body", "")}
        )
        return {"id": r.get("number"), "url": r.get("html_url")}

    async def action_create_branch(self, params: dict[str, Any]) -> dict[str, Any]:
        repo = _repo(params)
        (branch,) = require(params, "branch")
        source = params.get("from")
        if not source:
            info = await self._request("GET", f"/repos/{repo}")
            source = info.get("default_branch") or "main"
        ref = await self._request("GET", f"/repos/{repo}/git/ref/heads/{source}")
        sha = (ref.get("object") or {}).get("sha")
        if not sha:
            raise ToolError(f"Could not resolve branch '{source}' in {repo}")
        r = await self._request(
            "POST", f"/repos/{repo}/git/refs", json={"ref": f"refs/heads/{branch}", "sha": sha}
        )
        return {"id": r.get("ref"), "url": f"https://github.com/{repo}/tree/{branch}"}


def _repo(params: dict[str, Any]) -> str:
    """``owner/name`` from either ``repo`` or ``owner`` + ``repo``."""
    repo = str(params.get("repo") or "").strip().strip("/")
    owner = str(params.get("owner") or "").strip()
    if owner and repo and "/" not in repo:
        repo = f"{owner}/{repo}"
    if repo.count("/") != 1:
        raise ToolError("Parameter 'repo' must be 'owner/name'")
    return repo
