"""Job enqueueing, WhatsApp messages, submission locks and webhook signature checks."""

import json

import httpx
import pytest
from dramatiq.brokers.stub import StubBroker
from dramatiq.common import dq_name

from core.distributed_lock import InMemoryLock, UpstashLock
from core.job_queue import NOTIFY_PARTY, SEAL_CONTRACT, DramatiqJobQueue, defer
from core.settings import settings
from fintech_verify_signature.verify_signature import verify_hmac_sha256
from security.security_generate import security_generate
from sms_notify.whatsapp_service import MESSAGES, WahaClient


@pytest.fixture
def broker():
    broker = StubBroker()
    broker.declare_queue(SEAL_CONTRACT)
    broker.declare_queue(NOTIFY_PARTY)
    yield broker
    broker.close()


class TestDramatiqJobQueue:
    """Messages are addressed by actor name."""

    def test_immediate_job(self, broker):
        queue = DramatiqJobQueue(broker)

        message_id = queue.enqueue(NOTIFY_PARTY, "party-1", "signing_link", {"reference": "CTR"})

        assert message_id
        assert broker.queues[NOTIFY_PARTY].qsize() == 1

    def test_delayed_job_goes_to_delay_queue(self, broker):
        queue = DramatiqJobQueue(broker)

        queue.enqueue(SEAL_CONTRACT, "contract-1", "token", delay_seconds=60)

        assert broker.queues[SEAL_CONTRACT].qsize() == 0
        assert broker.queues[dq_name(SEAL_CONTRACT)].qsize() == 1

    def test_defer_swallows_queue_outage(self):
        class BrokenQueue:
            def enqueue(self, name, *args, delay_seconds=0):
                raise ConnectionError("redis down")

        assert defer(BrokenQueue(), NOTIFY_PARTY, "party-1") is None


class TestWhatsAppMessages:
    """Template rendering; transport is replaced by a recorder."""

    @pytest.fixture
    def client(self, monkeypatch):
        client = WahaClient(base_url="http://waha.test")
        sent = []

        async def record(phone, text):
            sent.append((phone, text))
            return True

        monkeypatch.setattr(client, "send_text", record)
        client.sent = sent
        return client

    async def test_signed_message_names_signer(self, client):
        ok = await client.notify(
            "party-1",
            "contract_signed",
            {"reference": "CTR-2026-ABC", "party": "landlord", "phone": "+224621000001", "signer": "tenant"},
        )

        assert ok is True
        assert client.sent == [("+224621000001", "Contract CTR-2026-ABC was signed by the tenant.")]

    async def test_unknown_kind(self, client):
        assert await client.notify("party-1", "no_such_kind", {"reference": "CTR"}) is False
        assert client.sent == []

    async def test_missing_field(self, client):
        assert await client.notify("party-1", "signing_link", {"reference": "CTR"}) is False

    async def test_otp_text(self, client):
        await client.send_otp("+224621000002", "123456")

        assert "123456" in client.sent[0][1]

    def test_every_template_names_a_reference(self):
        for kind, template in MESSAGES.items():
            assert "{reference}" in template or "{payment_reference}" in template, kind


class TestUnconfiguredTransport:
    async def test_invalid_phone_not_sent(self):
        assert await WahaClient(base_url="http://waha.test").send_text("abc", "hello") is False

    async def test_missing_base_url_not_sent(self, monkeypatch):
        client = WahaClient(base_url="http://waha.test")
        client.base_url = ""

        assert await client.send_text("+224621000002", "hello") is False


class TestWebhookSignature:
    """HMAC-SHA256 over the raw body."""

    def test_valid(self):
        body = b'{"pay_token": "T1"}'
        signature = security_generate.hmac_sha256("secret", body)

        assert verify_hmac_sha256("secret", body, signature)
        assert verify_hmac_sha256("secret", body, f"sha256={signature.upper()}")

    def test_tampered_body(self):
        signature = security_generate.hmac_sha256("secret", b"original")

        assert not verify_hmac_sha256("secret", b"changed", signature)

    def test_missing_signature_or_secret(self):
        assert not verify_hmac_sha256("secret", b"body", None)
        assert not verify_hmac_sha256(None, b"body", "abc")


class FakeUpstash:
    """Answers the REST commands the lock sends, against a dict."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.commands: list[list[str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        command = json.loads(request.content)
        self.commands.append(command)
        name, key = command[0], command[1]
        if name == "SET":
            if "NX" in command and key in self.store:
                return httpx.Response(200, json={"result": None})
            self.store[key] = command[2]
            return httpx.Response(200, json={"result": "OK"})
        if name == "EVAL":
            key, token = command[3], command[4]
            if self.store.get(key) == token:
                del self.store[key]
                return httpx.Response(200, json={"result": 1})
            return httpx.Response(200, json={"result": 0})
        return httpx.Response(400, json={"error": "unsupported"})


class TestDistributedLock:
    """Owner tokens keep a late release from dropping someone else's lock."""

    @pytest.fixture
    def upstash(self, monkeypatch):
        fake = FakeUpstash()
        real_client = httpx.AsyncClient
        monkeypatch.setattr(settings, "UPSTASH_REDIS_URL", "https://redis.example.test")
        monkeypatch.setattr(settings, "UPSTASH_REDIS_TOKEN", "token")
        monkeypatch.setattr(
            httpx,
            "AsyncClient",
            lambda **kwargs: real_client(transport=httpx.MockTransport(fake), **kwargs),
        )
        return fake

    async def test_in_memory_second_acquire_blocked(self):
        locks = InMemoryLock()

        assert await locks.acquire("create:1", 30)
        assert await locks.acquire("create:1", 30) is None

    async def test_in_memory_stale_release_keeps_new_holder(self):
        locks = InMemoryLock()
        stale = await locks.acquire("create:1", 0)
        current = await locks.acquire("create:1", 30)

        assert await locks.release("create:1", stale) is False
        assert await locks.acquire("create:1", 30) is None
        assert await locks.release("create:1", current) is True

    async def test_run_once_releases_after_handler(self):
        locks = InMemoryLock()

        async def handler():
            return "done"

        assert await locks.run_once("create:1", handler) == "done"
        assert await locks.acquire("create:1", 30)

    async def test_upstash_release_checks_owner(self, upstash):
        locks = UpstashLock()
        token = await locks.acquire("create:1", 30)

        assert upstash.commands[0] == ["SET", "escrow-lock:create:1", token, "EX", "30", "NX"]
        assert await locks.acquire("create:1", 30) is None
        upstash.store["escrow-lock:create:1"] = "someone-else"
        assert await locks.release("create:1", token) is False
        assert upstash.store["escrow-lock:create:1"] == "someone-else"

    async def test_upstash_release_by_owner(self, upstash):
        locks = UpstashLock()
        token = await locks.acquire("create:1", 30)

        assert await locks.release("create:1", token) is True
        assert upstash.store == {}
