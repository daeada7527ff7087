"""Unit tests for the GitHub, provisioner, CWS and Kubernetes API clients.

Each client runs against an ``httpx.MockTransport`` that records requests
and answers from a handler, so the wire format is checked end to end.
"""

import asyncio
import base64
import json
from typing import Callable, List

import httpx
import pytest

from src.spinwick.cloud.client import ProvisionerAPIError, ProvisionerClient
from src.spinwick.cloud.models import (
    CreateInstallationRequest,
    EnvVar,
    PatchInstallationRequest,
)
from src.spinwick.cws.client import CustomerServiceClient, CWSSession, CWSUser
from src.spinwick.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.spinwick.kube.client import KubeClient, KubernetesAPIError, LoadBalancerTimeoutError


def run_async(coro):
    return asyncio.run(coro)


class Recorder:
    """MockTransport handler that records every request."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _pr_json(number: int = 42) -> dict:
    return {
        "number": number,
        "state": "open",
        "html_url": f"https://github.com/mattermost/mattermost/pull/{number}",
        "user": {"login": "dev1"},
        "head": {"ref": "feature-branch", "sha": "abcdef1234567890"},
        "base": {"repo": {"name": "mattermost", "owner": {"login": "mattermost"}}},
        "labels": [],
    }


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class TestGitHubClient:
    def _client(self, handler) -> GitHubClient:
        recorder = Recorder(handler)
        client = GitHubClient(
            token="ghp_x", transport=recorder.transport, max_retries=2, base_delay=0
        )
        client.recorder = recorder
        return client

    def test_list_comments_follows_pagination(self):
        def handler(request):
            page = int(request.url.params["page"])
            count = 100 if page == 1 else 3
            return httpx.Response(
                200,
                json=[
                    {"id": page * 1000 + i, "user": {"login": "bot"}, "body": "hi"}
                    for i in range(count)
                ],
            )

        client = self._client(handler)
        comments = run_async(client.list_comments("mattermost", "mattermost", 42))

        assert len(comments) == 103
        assert len(client.recorder.requests) == 2
        assert client.recorder.requests[0].headers["Authorization"] == "Bearer ghp_x"

    def test_get_pull_request_uses_fresh_labels(self):
        def handler(request):
            if request.url.path.endswith("/labels"):
                return httpx.Response(200, json=[{"name": "Setup Cloud Test Server"}])
            return httpx.Response(200, json=_pr_json())

        pr = run_async(self._client(handler).get_pull_request("mattermost", "mattermost", 42))

        assert pr.labels == ["Setup Cloud Test Server"]
        assert pr.sha == "abcdef1234567890"

    def test_find_pull_request_by_branch(self):
        def handler(request):
            if request.url.path.endswith("/labels"):
                return httpx.Response(200, json=[])
            assert request.url.params["head"] == "mattermost:feature-branch"
            return httpx.Response(200, json=[_pr_json(7)])

        pr = run_async(
            self._client(handler).find_pull_request_by_branch(
                "mattermost", "mattermost-webapp", "feature-branch"
            )
        )
        assert pr.number == 7

    def test_find_pull_request_by_branch_without_match(self):
        client = self._client(lambda request: httpx.Response(200, json=[]))
        assert run_async(client.find_pull_request_by_branch("o", "r", "b")) is None

    def test_remove_label_ignores_missing_label(self):
        client = self._client(lambda request: httpx.Response(404, json={}))
        run_async(client.remove_label("o", "r", 1, "Setup Cloud Test Server"))
        assert client.recorder.requests[0].url.raw_path.decode().endswith(
            "/labels/Setup%20Cloud%20Test%20Server"
        )

    def test_remove_label_propagates_other_errors(self):
        client = self._client(lambda request: httpx.Response(422, json={}))
        with pytest.raises(GitHubAPIError):
            run_async(client.remove_label("o", "r", 1, "x"))

    def test_org_membership(self):
        client = self._client(lambda request: httpx.Response(200, json={"state": "active"}))
        assert run_async(client.is_org_member("mattermost", "dev1"))

        client = self._client(lambda request: httpx.Response(200, json={"state": "pending"}))
        assert not run_async(client.is_org_member("mattermost", "dev1"))

        client = self._client(lambda request: httpx.Response(404, json={}))
        assert not run_async(client.is_org_member("mattermost", "stranger"))

    def test_rate_limit_exhausted(self):
        client = self._client(
            lambda request: httpx.Response(
                403, headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1"}
            )
        )
        with pytest.raises(RateLimitError) as exc_info:
            run_async(client.create_comment("o", "r", 1, "hello"))
        assert exc_info.value.retry_after == 0
        assert len(client.recorder.requests) == 1

    def test_get_rate_limit(self):
        client = self._client(
            lambda request: httpx.Response(
                200,
                json={"resources": {"core": {"limit": 5000, "remaining": 12, "reset": 99}}},
            )
        )
        assert run_async(client.get_rate_limit()) == {"limit": 5000, "remaining": 12, "reset": 99}

    def test_transient_errors_are_retried(self):
        responses = iter([httpx.Response(502), httpx.Response(201, json={"id": 1})])
        client = self._client(lambda request: next(responses))
        assert run_async(client.create_comment("o", "r", 1, "hello")) == {"id": 1}
        assert len(client.recorder.requests) == 2

    def test_retries_exhausted(self):
        client = self._client(lambda request: httpx.Response(503))
        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(client.create_comment("o", "r", 1, "hello"))
        assert exc_info.value.status_code == 503
        assert len(client.recorder.requests) == 3


# ---------------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------------


def _installation_json(installation_id: str = "inst-1", **fields) -> dict:
    data = {
        "ID": installation_id,
        "OwnerID": "mattermost-pr-42",
        "Version": "abcdef1",
        "Image": "mattermostdevelopment/mm-ee-test",
        "DNS": "mattermost-pr-42-abcde.test.cloud",
        "State": "stable",
    }
    data.update(fields)
    return data


class TestProvisionerClient:
    def _client(self, handler, api_key: str = "") -> ProvisionerClient:
        recorder = Recorder(handler)
        client = ProvisionerClient(
            "http://provisioner.test", api_key=api_key, transport=recorder.transport, max_retries=0
        )
        client.recorder = recorder
        return client

    def test_create_installation_wire_format(self):
        client = self._client(
            lambda request: httpx.Response(200, json=_installation_json(State="creation-requested")),
            api_key="key-1",
        )
        installation = run_async(
            client.create_installation(
                CreateInstallationRequest(
                    owner_id="mattermost-pr-42",
                    version="abcdef1",
                    image="mattermostdevelopment/mm-ee-test",
                    dns="mattermost-pr-42-abcde.test.cloud",
                    mattermost_env={"MM_FOO": EnvVar(value="bar"), "MM_OLD": EnvVar.clear()},
                )
            )
        )

        request = client.recorder.requests[0]
        body = json.loads(request.content)
        assert request.headers["x-api-key"] == "key-1"
        assert request.url.path == "/api/installations"
        assert body["OwnerID"] == "mattermost-pr-42"
        assert body["Size"] == "miniSingleton"
        assert "License" not in body
        assert "GroupID" not in body
        assert body["MattermostEnv"] == {"MM_FOO": {"value": "bar"}, "MM_OLD": {}}
        assert installation.state == "creation-requested"
        assert installation.url == "https://mattermost-pr-42-abcde.test.cloud"

    def test_patch_only_sends_changed_fields(self):
        client = self._client(lambda request: httpx.Response(200, json=_installation_json()))
        run_async(
            client.update_installation(
                "inst-1", PatchInstallationRequest(version="1234567", image="img")
            )
        )
        request = client.recorder.requests[0]
        assert request.method == "PUT"
        assert request.url.path == "/api/installation/inst-1/mattermost"
        assert json.loads(request.content) == {"Version": "1234567", "Image": "img"}

    def test_get_installation_not_found(self):
        client = self._client(lambda request: httpx.Response(404, text="not found"))
        assert run_async(client.get_installation("gone")) is None

    def test_get_installation_by_owner(self):
        client = self._client(lambda request: httpx.Response(200, json=[_installation_json()]))
        installation = run_async(client.get_installation_by_owner("mattermost-pr-42"))
        assert installation.id == "inst-1"
        params = client.recorder.requests[0].url.params
        assert params["owner"] == "mattermost-pr-42"
        assert params["include_deleted"] == "false"

    def test_get_installation_by_owner_none(self):
        client = self._client(lambda request: httpx.Response(200, json=[]))
        assert run_async(client.get_installation_by_owner("x")) is None

    def test_get_installation_by_owner_ambiguous(self):
        client = self._client(
            lambda request: httpx.Response(
                200, json=[_installation_json("a"), _installation_json("b")]
            )
        )
        with pytest.raises(ProvisionerAPIError):
            run_async(client.get_installation_by_owner("mattermost-pr-42"))

    def test_delete_webhooks_for_owner(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(
                    200,
                    json=[{"ID": "wh-1", "OwnerID": "ns"}, {"ID": "wh-2", "OwnerID": "ns"}],
                )
            return httpx.Response(200)

        client = self._client(handler)
        assert run_async(client.delete_webhooks_for_owner("ns")) == 2
        deleted = [r.url.path for r in client.recorder.requests if r.method == "DELETE"]
        assert deleted == ["/api/webhook/wh-1", "/api/webhook/wh-2"]


# ---------------------------------------------------------------------------
# Customer web server
# ---------------------------------------------------------------------------


class TestCustomerServiceClient:
    def _client(self, handler) -> CustomerServiceClient:
        recorder = Recorder(handler)
        client = CustomerServiceClient(
            "http://cws.test",
            "http://cws-internal.test",
            "internal-key",
            transport=recorder.transport,
            max_retries=0,
        )
        client.recorder = recorder
        return client

    def test_login_returns_session_token(self):
        client = self._client(
            lambda request: httpx.Response(
                200, json={"id": "user-1", "email": "a@b.c"}, headers={"Token": "tok"}
            )
        )
        session = run_async(client.login("a@b.c", "pw"))
        assert session.token == "tok"
        assert session.user.id == "user-1"
        assert session.headers == {"Authorization": "BEARER tok"}

    def test_signup_returns_customer(self):
        client = self._client(
            lambda request: httpx.Response(
                201,
                json={"user": {"id": "user-1"}, "customer": {"id": "cust-1"}},
                headers={"Token": "tok"},
            )
        )
        session = run_async(client.signup("a@b.c", "pw"))
        assert session.customer.id == "cust-1"

    def test_internal_calls_use_internal_host_and_key(self):
        client = self._client(
            lambda request: httpx.Response(200, json={"installationId": "inst-9"})
        )
        installation_id = run_async(
            client.create_installation("cust-1", "ws", "abcdef1", "img", group_id="g")
        )

        request = client.recorder.requests[0]
        assert installation_id == "inst-9"
        assert request.url.host == "cws-internal.test"
        assert request.headers["X-MM-Api-Key"] == "internal-key"
        assert json.loads(request.content)["workspace_name"] == "ws"

    def test_get_installations_uses_session(self):
        client = self._client(
            lambda request: httpx.Response(200, json=[{"ID": "inst-1", "State": "stable"}])
        )
        session = CWSSession(token="tok", user=CWSUser(id="u"))
        installations = run_async(client.get_installations(session))
        assert installations[0].id == "inst-1"
        assert client.recorder.requests[0].headers["Authorization"] == "BEARER tok"

    def test_register_payment_webhook(self):
        client = self._client(lambda request: httpx.Response(200, json={"secret": "whsec_1"}))
        assert run_async(client.register_payment_webhook("http://lb", "ns")) == "whsec_1"


# ---------------------------------------------------------------------------
# Kubernetes
# ---------------------------------------------------------------------------


MANIFEST = """
apiVersion: apps/v1
kind: Deployment
metadata:
  name: cws-test
spec:
  template:
    spec:
      containers:
        - name: cws
          image: mattermost/cws-test:$image_tag
---
apiVersion: v1
kind: Service
metadata:
  name: cws-test-service
"""


class TestKubeClient:
    def _client(self, handler) -> KubeClient:
        recorder = Recorder(handler)
        client = KubeClient(
            "https://kube.test", token="kube-token", transport=recorder.transport, max_retries=0
        )
        client.recorder = recorder
        return client

    def test_namespace_exists(self):
        client = self._client(lambda request: httpx.Response(404, json={}))
        assert not run_async(client.namespace_exists("ns"))

        client = self._client(lambda request: httpx.Response(200, json={}))
        assert run_async(client.namespace_exists("ns"))
        assert client.recorder.requests[0].headers["Authorization"] == "Bearer kube-token"

    def test_get_or_create_namespace_creates_missing(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(404, json={})
            return httpx.Response(201, json={"metadata": {"name": "ns"}})

        client = self._client(handler)
        run_async(client.get_or_create_namespace("ns"))
        create = client.recorder.requests[1]
        assert create.url.path == "/api/v1/namespaces"
        assert json.loads(create.content)["metadata"] == {"name": "ns"}

    def test_apply_manifest_creates_each_document(self):
        client = self._client(lambda request: httpx.Response(201, json={}))
        created = run_async(
            client.apply_manifest("ns", MANIFEST, {"image_tag": "abcdef1"})
        )

        assert created == ["Deployment/cws-test", "Service/cws-test-service"]
        deployment, service = client.recorder.requests
        assert deployment.url.path == "/apis/apps/v1/namespaces/ns/deployments"
        assert service.url.path == "/api/v1/namespaces/ns/services"
        body = json.loads(deployment.content)
        assert body["metadata"]["namespace"] == "ns"
        assert body["spec"]["template"]["spec"]["containers"][0]["image"] == (
            "mattermost/cws-test:abcdef1"
        )

    def test_apply_manifest_rejects_unknown_kinds(self):
        client = self._client(lambda request: httpx.Response(201, json={}))
        with pytest.raises(KubernetesAPIError):
            run_async(client.apply_manifest("ns", "kind: CronJob\nmetadata: {name: x}\n", {}))

    def test_patch_secret_encodes_values(self):
        client = self._client(lambda request: httpx.Response(200, json={}))
        run_async(client.patch_secret("ns", "secret", {"CWS_SITEURL": "http://lb"}))

        request = client.recorder.requests[0]
        assert request.method == "PATCH"
        assert request.headers["Content-Type"] == "application/json-patch+json"
        operations = json.loads(request.content)
        assert operations == [
            {
                "op": "replace",
                "path": "/data/CWS_SITEURL",
                "value": base64.b64encode(b"http://lb").decode(),
            }
        ]

    def test_wait_for_load_balancer_hostname(self):
        responses = iter(
            [
                httpx.Response(200, json={"status": {"loadBalancer": {}}}),
                httpx.Response(
                    200,
                    json={"status": {"loadBalancer": {"ingress": [{"hostname": "lb.aws"}]}}},
                ),
            ]
        )
        client = self._client(lambda request: next(responses))
        hostname = run_async(client.wait_for_load_balancer_hostname("ns", timeout=2, interval=0))
        assert hostname == "lb.aws"

    def test_wait_for_load_balancer_times_out(self):
        client = self._client(
            lambda request: httpx.Response(200, json={"status": {"loadBalancer": {}}})
        )
        with pytest.raises(LoadBalancerTimeoutError):
            run_async(client.wait_for_load_balancer_hostname("ns", timeout=0.05, interval=0.01))
