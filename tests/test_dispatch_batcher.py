"""
Dispatch Batcher Verification

Tests that:
1. Each recipient with tokens gets exactly one gateway call carrying all its tokens
2. Recipients without tokens are skipped without gateway calls or errors
3. A token lookup failure counts one error and the others still dispatch
4. A gateway timeout counts as one transport error and does not cancel siblings
5. In-flight recipients never exceed the concurrency limit
6. An overall deadline keeps finished outcomes and counts unfinished ones as errors
7. Unexpected exceptions in one recipient are absorbed as one error
8. A hung token lookup is bounded by the per-recipient timeout
9. A concurrency limit below 1 is rejected instead of hanging

Run with: pytest tests/test_dispatch_batcher.py -v
"""

import asyncio
from unittest.mock import patch

import pytest

from timely_push.models.delivery import DeliveryOutcome, DeliveryToken, Guest, PayloadSeed
from timely_push.services.dispatch import dispatch_recipient, dispatch_to_recipients
from timely_push.services.expo import GatewayTransportError
from timely_push.services.tokens import TokenLookupError


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeTokenRepository:
    """Tokens per email; an Exception value is raised instead."""

    def __init__(self, tokens_by_email: dict):
        self.tokens_by_email = tokens_by_email
        self.lookups: list[str] = []

    async def tokens_for(self, recipient):
        self.lookups.append(recipient.email)
        value = self.tokens_by_email.get(recipient.email, [])
        if isinstance(value, Exception):
            raise value
        return [DeliveryToken(owner=recipient, token=t) for t in value]


class FakeGateway:
    """Accepts every token unless a token is listed in `rejected`."""

    def __init__(self, rejected=(), delay: float = 0.0, delays: dict | None = None,
                 fail_for: dict | None = None):
        self.rejected = set(rejected)
        self.delay = delay
        self.delays = delays or {}
        self.fail_for = fail_for or {}
        self.payloads: list[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, payload):
        self.payloads.append(payload)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            first = payload["to"][0]
            await asyncio.sleep(self.delays.get(first, self.delay))
            if first in self.fail_for:
                raise self.fail_for[first]
            return [
                DeliveryOutcome(token=t, success=False, error_code="DeviceNotRegistered")
                if t in self.rejected
                else DeliveryOutcome(token=t, success=True)
                for t in payload["to"]
            ]
        finally:
            self.in_flight -= 1


def _seed() -> PayloadSeed:
    return PayloadSeed(
        notification_id="notif-1",
        trigger_kind="chat_message",
        scope_id="channel-1",
        scope_label="Summer Gala",
        body_text="Doors open at 7",
        sender_email="host@example.com",
        sender_display_name="Host",
        message_id="msg-1",
    )


def _guests(*emails: str) -> list[Guest]:
    return [Guest(email=e) for e in emails]


# ===================================================================
# Test Class: dispatch_recipient
# ===================================================================

class TestDispatchRecipient:

    @pytest.mark.asyncio
    async def test_single_call_carries_all_tokens(self):
        repo = FakeTokenRepository({"a@x.com": ["t1", "t2", "t3"]})
        gateway = FakeGateway()

        outcome = await dispatch_recipient(
            Guest(email="a@x.com"), _seed(),
            token_repository=repo, gateway=gateway, timeout=1.0,
        )

        assert len(gateway.payloads) == 1
        assert gateway.payloads[0]["to"] == ["t1", "t2", "t3"]
        assert outcome.sent == 3

    @pytest.mark.asyncio
    async def test_no_tokens_skips_gateway(self):
        gateway = FakeGateway()
        outcome = await dispatch_recipient(
            Guest(email="a@x.com"), _seed(),
            token_repository=FakeTokenRepository({}), gateway=gateway, timeout=1.0,
        )
        assert gateway.payloads == []
        assert outcome.sent == 0 and outcome.errors == 0
        assert outcome.contacted is False

    @pytest.mark.asyncio
    async def test_transport_error_is_one_error_for_many_tokens(self):
        repo = FakeTokenRepository({"a@x.com": ["t1", "t2", "t3"]})
        gateway = FakeGateway(fail_for={"t1": GatewayTransportError("bad gateway", status_code=502)})

        outcome = await dispatch_recipient(
            Guest(email="a@x.com"), _seed(),
            token_repository=repo, gateway=gateway, timeout=1.0,
        )

        assert outcome.errors == 1
        assert outcome.sent == 0
        assert outcome.error_codes == ("http_502",)

    @pytest.mark.asyncio
    async def test_timeout_is_transport_failure(self):
        repo = FakeTokenRepository({"a@x.com": ["t1"]})
        gateway = FakeGateway(delay=0.5)

        outcome = await dispatch_recipient(
            Guest(email="a@x.com"), _seed(),
            token_repository=repo, gateway=gateway, timeout=0.05,
        )

        assert outcome.errors == 1
        assert outcome.contacted is True
        assert outcome.error_codes == ("timeout",)


# ===================================================================
# Test Class: dispatch_to_recipients
# ===================================================================

class TestDispatchToRecipients:

    @pytest.mark.asyncio
    async def test_lookup_failure_does_not_abort_batch(self):
        repo = FakeTokenRepository({
            "a@x.com": TokenLookupError("a@x.com", "connection reset"),
            "b@x.com": ["tb"],
            "c@x.com": ["tc"],
        })
        gateway = FakeGateway()

        result = await dispatch_to_recipients(
            _guests("a@x.com", "b@x.com", "c@x.com"), _seed(),
            token_repository=repo, gateway=gateway, concurrency_limit=2,
            recipient_timeout=1.0,
        )

        assert result.total_sent == 2
        assert result.total_errors == 1
        assert result.recipients_contacted == 2
        assert result.error_counts == {"token_lookup_failed": 1}

    @pytest.mark.asyncio
    async def test_timeout_does_not_cancel_siblings(self):
        repo = FakeTokenRepository({"slow@x.com": ["slow"], "fast@x.com": ["fast"]})
        gateway = FakeGateway(delays={"slow": 0.5, "fast": 0.0})

        result = await dispatch_to_recipients(
            _guests("slow@x.com", "fast@x.com"), _seed(),
            token_repository=repo, gateway=gateway, concurrency_limit=5,
            recipient_timeout=0.05,
        )

        assert result.total_sent == 1
        assert result.total_errors == 1
        assert result.error_counts == {"timeout": 1}

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_limit(self):
        emails = [f"r{i}@x.com" for i in range(12)]
        repo = FakeTokenRepository({e: [f"tok-{e}"] for e in emails})
        gateway = FakeGateway(delay=0.01)

        result = await dispatch_to_recipients(
            _guests(*emails), _seed(),
            token_repository=repo, gateway=gateway, concurrency_limit=3,
            recipient_timeout=1.0,
        )

        assert gateway.max_in_flight <= 3
        assert gateway.max_in_flight > 1
        assert result.total_sent == 12
        assert len(gateway.payloads) == 12

    @pytest.mark.asyncio
    async def test_deadline_keeps_completed_outcomes(self):
        repo = FakeTokenRepository({"fast@x.com": ["fast"], "slow@x.com": ["slow"]})
        gateway = FakeGateway(delays={"fast": 0.0, "slow": 1.0})

        result = await dispatch_to_recipients(
            _guests("fast@x.com", "slow@x.com"), _seed(),
            token_repository=repo, gateway=gateway, concurrency_limit=5,
            recipient_timeout=5.0, deadline=0.1,
        )

        assert result.total_sent == 1
        assert result.total_errors == 1
        assert result.error_counts == {"deadline_exceeded": 1}

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_absorbed(self):
        repo = FakeTokenRepository({"bad@x.com": ["bad"], "ok@x.com": ["ok"]})
        gateway = FakeGateway(fail_for={"bad": KeyError("boom")})

        result = await dispatch_to_recipients(
            _guests("bad@x.com", "ok@x.com"), _seed(),
            token_repository=repo, gateway=gateway, concurrency_limit=2,
            recipient_timeout=1.0,
        )

        assert result.total_sent == 1
        assert result.total_errors == 1
        assert result.error_counts == {"unexpected_error": 1}

    @pytest.mark.asyncio
    async def test_empty_recipient_list(self):
        gateway = FakeGateway()
        result = await dispatch_to_recipients(
            [], _seed(), token_repository=FakeTokenRepository({}), gateway=gateway,
        )
        assert result.total_sent == 0 and result.total_errors == 0
        assert gateway.payloads == []


class SlowTokenRepository(FakeTokenRepository):
    """Token lookups that take `delay` seconds for the listed emails."""

    def __init__(self, tokens_by_email: dict, slow: dict):
        super().__init__(tokens_by_email)
        self.slow = slow

    async def tokens_for(self, recipient):
        await asyncio.sleep(self.slow.get(recipient.email, 0))
        return await super().tokens_for(recipient)


# ===================================================================
# Test Class: timeouts on token lookup and configuration checks
# ===================================================================

class TestDispatchLimits:

    @pytest.mark.asyncio
    async def test_hung_token_lookup_counts_as_lookup_failure(self):
        repo = SlowTokenRepository(
            {"hung@x.com": ["th"], "ok@x.com": ["to"]}, slow={"hung@x.com": 5.0}
        )
        gateway = FakeGateway()

        result = await asyncio.wait_for(
            dispatch_to_recipients(
                _guests("hung@x.com", "ok@x.com"), _seed(),
                token_repository=repo, gateway=gateway, concurrency_limit=2,
                recipient_timeout=0.05,
            ),
            timeout=2.0,
        )

        assert result.total_sent == 1
        assert result.total_errors == 1
        assert result.recipients_contacted == 1
        assert result.error_counts == {"token_lookup_failed": 1}
        assert [p["to"] for p in gateway.payloads] == [["to"]]

    @pytest.mark.asyncio
    async def test_explicit_zero_limit_is_rejected(self):
        with pytest.raises(ValueError, match="PUSH_CONCURRENCY_LIMIT"):
            await dispatch_to_recipients(
                _guests("a@x.com"), _seed(),
                token_repository=FakeTokenRepository({"a@x.com": ["t"]}),
                gateway=FakeGateway(), concurrency_limit=0, recipient_timeout=1.0,
            )

    @pytest.mark.asyncio
    async def test_configured_zero_limit_is_rejected(self):
        with patch("timely_push.core.config.PUSH_CONCURRENCY_LIMIT", 0):
            with pytest.raises(ValueError, match="PUSH_CONCURRENCY_LIMIT"):
                await asyncio.wait_for(
                    dispatch_to_recipients(
                        _guests("a@x.com"), _seed(),
                        token_repository=FakeTokenRepository({"a@x.com": ["t"]}),
                        gateway=FakeGateway(),
                    ),
                    timeout=1.0,
                )

    @pytest.mark.asyncio
    async def test_non_positive_timeout_is_rejected(self):
        with pytest.raises(ValueError, match="PUSH_RECIPIENT_TIMEOUT_SECONDS"):
            await dispatch_to_recipients(
                _guests("a@x.com"), _seed(),
                token_repository=FakeTokenRepository({}), gateway=FakeGateway(),
                concurrency_limit=1, recipient_timeout=0,
            )
