"""Deployment operations against the Vercel REST API."""

from __future__ import annotations

from typing import Any

from atrium.errors import ToolError
from atrium.tools.base import ActionTool, require


class DeploymentTool(ActionTool):
    name = "deployment_action"
    description = (
        "Manage the user's Vercel deployments. Actions: list_projects, "
        "list_deployments {project?}, get_deployment {id}, "
        "create_deployment {name, repo, ref?}, redeploy {id}."
    )
    actions = (
        "list_projects",
        "list_deployments",
        "get_deployment",
        "create_deployment",
        "redeploy",
    )

    def _scope(self, params: dict[str, Any], **extra: Any) -> dict[str, Any]:
        query = {k: v for k, v in extra.items() if v is not None}
        if params.get("team_id"):
            query["teamId"] = params["team_id"]
        return query

    async def action_list_projects(self, params: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "GET", "/v9/projects", params=self._scope(params, limit=params.get("limit", 20))
        )
        return {
            "projects": [
                {"id": p.get("id"), "name": p.get("name"), "framework": p.get("framework")}
                for p in body.get("projects") or []
            ]
        }

    async def action_list_deployments(self, params: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "GET",
            "/v6/deployments",
            params=self._scope(
                params, projectId=params.get("project"), limit=params.get("limit", 10)
            ),
        )
        return {"deployments": [_summary(d) for d in body.get("deployments") or []]}

    async def action_get_deployment(self, params: dict[str, Any]) -> dict[str, Any]:
        (deployment_id,) = require(params, "id")
        body = await self._request(
            "GET", f"/v13/deployments/{deployment_id}", params=self._scope(params)
        )
        return {"deployment": _summary(body)}

    async def action_create_deployment(self, params: dict[str, Any]) -> dict[str, Any]:
        name, repo = require(params, "name", "repo")
        if repo.count("/") != 1:
            raise ToolError("Parameter 'repo' must be 'owner/name'")
        org, repo_name = repo.split("/")
        body = await self._request(
            "POST",
            "/v13/deployments",
            params=self._scope(params),
            json={
                "name": name,
                "target": params.get("target", "production"),
                "gitSource": {
                    "type": "github",
                    "org": org,
                    "repo": repo_name,
                    "ref": params.get("ref", "main"),
                },
            },
        )
        return {"id": _id(body), "url": _url(body), "state": _state(body)}

    async def action_redeploy(self, params: dict[str, Any]) -> dict[str, Any]:
        (deployment_id,) = require(params, "id")
        previous = await self._request(
            "GET", f"/v13/deployments/{deployment_id}", params=self._scope(params)
        )
        body = await self._request(
            "POST",
            "/v13/deployments",
            params=self._scope(params, forceNew=1),
            json={
                "name": previous.get("name"),
                "deploymentId": _id(previous),
                "target": previous.get("target") or "production",
            },
        )
        return {"id": _id(body), "url": _url(body), "state": _state(body)}


def _id(d: dict[str, Any]) -> str | None:
    return d.get("id") or d.get("uid")


def _state(d: dict[str, Any]) -> str | None:
    return d.get("readyState") or d.get("state")


def _url(d: dict[str, Any]) -> str | None:
    url = d.get("url")
    if not url:
        return None
    return url if url.startswith(("http://", "https://")) else f"https://{url}"


def _summary(d: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": _id(d),
        "name": d.get("name"),
        "url": _url(d),
        "state": _state(d),
        "created": d.get("createdAt") or d.get("created"),
    }
