"""Tests for DeploymentTool (Vercel REST over httpx.MockTransport)."""

from __future__ import annotations

import json

import httpx
import pytest

from atrium.errors import ToolError
from atrium.tools.deployment import DeploymentTool


def _tool(handler, token: str | None = "vc_test") -> DeploymentTool:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DeploymentTool("https://api.vercel.com", token=token, client=client)


@pytest.mark.asyncio
async def test_create_deployment():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "dpl_1", "url": "demo-abc.vercel.app", "readyState": "QUEUED"})

    result = await _tool(handler).run({
        "action": "create_deployment",
        "params": {"name": "demo", "repo": "alice/demo", "team_id": "team_9"},
    })
    assert result == {
        "success": True,
        "action": "create_deployment",
        "id": "dpl_1",
        "url": "https://demo-abc.vercel.app",
        "state": "QUEUED",
    }
    assert seen["path"] == "/v13/deployments"
    assert seen["params"] == {"teamId": "team_9"}
    assert seen["body"]["gitSource"] == {"type": "github", "org": "alice", "repo": "demo", "ref": "main"}


@pytest.mark.asyncio
async def test_redeploy_reuses_previous_deployment():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json={"uid": "dpl_old", "name": "demo", "target": "production"})
        return httpx.Response(200, json={"id": "dpl_new", "url": "https://demo-new.vercel.app", "state": "BUILDING"})

    result = await _tool(handler).run({"action": "redeploy", "params": {"id": "dpl_old"}})

    assert (result["id"], result["url"], result["state"]) == (
        "dpl_new",
        "https://demo-new.vercel.app",
        "BUILDING",
    )
    post = requests[1]
    assert post.url.params["forceNew"] == "1"
    assert json.loads(post.content)["deploymentId"] == "dpl_old"


@pytest.mark.asyncio
async def test_list_deployments_summaries():
    def handler(request):
        assert request.url.params["projectId"] == "prj_1"
        return httpx.Response(
            200, json={"deployments": [{"uid": "d1", "name": "demo", "url": "d1.vercel.app", "state": "READY"}]}
        )

    result = await _tool(handler).run({"action": "list_deployments", "params": {"project": "prj_1"}})
    assert result["deployments"][0]["url"] == "https://d1.vercel.app"
    assert result["deployments"][0]["id"] == "d1"


@pytest.mark.asyncio
async def test_create_deployment_requires_owner_slash_name():
    with pytest.raises(ToolError, match="owner/name"):
        await _tool(lambda r: httpx.Response(200, json={})).run(
            {"action": "create_deployment", "params": {"name": "demo", "repo": "demo"}}
        )


@pytest.mark.asyncio
async def test_missing_token():
    with pytest.raises(ToolError, match="no credential"):
        await _tool(lambda r: httpx.Response(200, json={}), token=None).run({"action": "list_projects"})
