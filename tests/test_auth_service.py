"""Tests for the OTP sign-in state machine."""

import asyncio

import httpx

from agrilink.domain.auth import AuthEvent, AuthPhase
from agrilink.domain.errors import (
    CooldownActiveError,
    OperationInProgressError,
    OperationSupersededError,
    ProviderError,
    format_remaining,
)
from agrilink.services.auth import AuthService, CooldownPolicy
from agrilink.services.persistence import PersistedAuthState, PersistedSession
from tests.conftest import PHONE, START_TIME, FakeAuthProvider, FakeClock, make_session


def test_first_send_sets_sixty_second_cooldown(
    auth_service: AuthService, provider: FakeAuthProvider, clock: FakeClock
) -> None:
    result = asyncio.run(auth_service.request_otp(PHONE))

    state = auth_service.state
    assert result.ok
    assert provider.requests == [PHONE]
    assert state.otp_cooldown_until == START_TIME + 60
    assert state.resend_count == 1
    assert state.otp_sent is True
    assert state.saved_phone_number == PHONE
    assert state.loading is False
    assert state.error is None
    assert state.phase is AuthPhase.OTP_REQUESTED


def test_resend_after_first_cooldown_sets_six_hour_cooldown(
    auth_service: AuthService, clock: FakeClock
) -> None:
    asyncio.run(auth_service.request_otp(PHONE))
    clock.advance(61)

    result = asyncio.run(auth_service.request_otp(PHONE))

    assert result.ok
    assert auth_service.state.otp_cooldown_until == clock.now + 21600
    assert auth_service.state.resend_count == 2


def test_cooldown_measured_from_completion_time(
    provider: FakeAuthProvider, clock: FakeClock, auth_service: AuthService
) -> None:
    real_request = provider.request_otp

    async def slow_request(phone: str) -> None:
        await real_request(phone)
        clock.advance(5)

    provider.request_otp = slow_request  # type: ignore[method-assign]

    asyncio.run(auth_service.request_otp(PHONE))

    assert auth_service.state.otp_cooldown_until == START_TIME + 5 + 60


def test_can_resend_only_after_cooldown_expires(
    auth_service: AuthService, clock: FakeClock
) -> None:
    asyncio.run(auth_service.request_otp(PHONE))

    assert auth_service.can_resend_otp() is False
    assert auth_service.resend_cooldown_remaining() == 60

    clock.advance(59.5)
    assert auth_service.can_resend_otp() is False
    assert auth_service.resend_cooldown_remaining() == 0.5

    clock.advance(0.5)
    assert auth_service.can_resend_otp() is True
    assert auth_service.resend_cooldown_remaining() == 0


def test_second_request_within_cooldown_makes_no_network_call(
    auth_service: AuthService, provider: FakeAuthProvider, clock: FakeClock
) -> None:
    asyncio.run(auth_service.request_otp(PHONE))
    clock.advance(0.8)

    result = asyncio.run(auth_service.request_otp(PHONE))

    assert not result.ok
    assert isinstance(result.error, CooldownActiveError)
    assert result.error.remaining_seconds == 60
    assert provider.requests == [PHONE]
    assert auth_service.state.error == (
        "Please wait 1m 0s before requesting another code"
    )
    assert auth_service.state.loading is False
    assert auth_service.state.resend_count == 1


def test_cooldown_message_uses_seconds_only_under_a_minute(
    auth_service: AuthService, clock: FakeClock
) -> None:
    asyncio.run(auth_service.request_otp(PHONE))
    clock.advance(15)

    result = asyncio.run(auth_service.request_otp(PHONE))

    assert result.error is not None
    assert result.error.message == "Please wait 45s before requesting another code"


def test_format_remaining() -> None:
    assert format_remaining(0) == "0s"
    assert format_remaining(59) == "59s"
    assert format_remaining(61) == "1m 1s"
    assert format_remaining(21600) == "360m 0s"


def test_failed_request_leaves_cooldown_untouched(
    auth_service: AuthService, provider: FakeAuthProvider, clock: FakeClock
) -> None:
    asyncio.run(auth_service.request_otp(PHONE))
    clock.advance(61)
    before = auth_service.state
    provider.request_error = ProviderError("SMS provider rate limit exceeded")

    result = asyncio.run(auth_service.request_otp(PHONE))

    state = auth_service.state
    assert not result.ok
    assert state.otp_cooldown_until == before.otp_cooldown_until
    assert state.resend_count == before.resend_count
    assert state.error == "SMS provider rate limit exceeded"
    assert state.loading is False
    assert state.otp_sent is False


def test_unexpected_provider_exception_is_captured(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    provider.request_error = httpx.ConnectError("boom")

    result = asyncio.run(auth_service.request_otp(PHONE))

    assert isinstance(result.error, ProviderError)
    assert auth_service.state.error == "boom"
    assert auth_service.state.resend_count == 0
    assert auth_service.state.otp_cooldown_until == 0


def test_custom_cooldown_policy(provider: FakeAuthProvider, state_store, clock) -> None:
    service = AuthService(
        provider=provider,
        state_store=state_store,
        cooldown_policy=CooldownPolicy(
            first_cooldown_seconds=30, resend_cooldown_seconds=600
        ),
        clock=clock,
    )

    asyncio.run(service.request_otp(PHONE))

    assert service.state.otp_cooldown_until == START_TIME + 30


def test_verify_success_resets_abuse_counters(
    auth_service: AuthService, provider: FakeAuthProvider, clock: FakeClock
) -> None:
    asyncio.run(auth_service.request_otp(PHONE))
    clock.advance(61)
    asyncio.run(auth_service.request_otp(PHONE))
    assert auth_service.state.resend_count == 2

    result = asyncio.run(auth_service.verify_otp(PHONE, "123456"))

    state = auth_service.state
    assert result.ok
    assert provider.verifications == [(PHONE, "123456")]
    assert state.session == provider.session
    assert state.user is not None and state.user.id == "user-1"
    assert state.resend_count == 0
    assert state.otp_cooldown_until == 0
    assert state.otp_sent is False
    assert state.verifying_otp is False
    assert state.saved_phone_number == PHONE
    assert state.phase is AuthPhase.AUTHENTICATED


def test_verify_failure_keeps_otp_sent(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    asyncio.run(auth_service.request_otp(PHONE))
    provider.verify_error = ProviderError("Token has expired or is invalid")

    result = asyncio.run(auth_service.verify_otp(PHONE, "000000"))

    state = auth_service.state
    assert not result.ok
    assert state.error == "Token has expired or is invalid"
    assert state.verifying_otp is False
    assert state.otp_sent is True
    assert state.session is None
    assert state.resend_count == 1


def test_sign_out_clears_session_and_otp_fields(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    asyncio.run(auth_service.verify_otp(PHONE, "123456"))

    result = asyncio.run(auth_service.sign_out())

    state = auth_service.state
    assert result.ok
    assert provider.sign_outs == 1
    assert state.session is None
    assert state.saved_phone_number is None
    assert state.loading is False
    assert state.error is None


def test_sign_out_clears_locally_when_provider_fails(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    asyncio.run(auth_service.verify_otp(PHONE, "123456"))
    provider.sign_out_error = ProviderError("network unreachable")

    result = asyncio.run(auth_service.sign_out())

    state = auth_service.state
    assert not result.ok
    assert state.session is None
    assert state.error == "network unreachable"
    assert state.loading is False


def test_reset_otp_state_keeps_session(
    auth_service: AuthService, clock: FakeClock
) -> None:
    asyncio.run(auth_service.verify_otp(PHONE, "123456"))
    asyncio.run(auth_service.request_otp("+255700000001"))

    auth_service.reset_otp_state()

    state = auth_service.state
    assert state.session is not None
    assert state.otp_sent is False
    assert state.resend_count == 0
    assert state.otp_cooldown_until == 0
    assert auth_service.can_resend_otp()


def test_initialize_without_session(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    result = asyncio.run(auth_service.initialize())

    state = auth_service.state
    assert result.ok
    assert state.initialized is True
    assert state.loading is False
    assert state.user is None
    assert len(provider.listeners) == 1


def test_initialize_adopts_live_session(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    provider.current_session = make_session("user-9")

    asyncio.run(auth_service.initialize())

    assert auth_service.state.user is not None
    assert auth_service.state.user.id == "user-9"


def test_initialize_restores_persisted_fields(
    auth_service: AuthService, provider: FakeAuthProvider, storage, clock
) -> None:
    persisted = PersistedAuthState(
        session=PersistedSession.from_session(make_session()),
        saved_phone_number=PHONE,
        resend_count=2,
        otp_cooldown_until=START_TIME + 1000,
    )
    asyncio.run(storage.set("agrilink-auth", persisted.model_dump_json()))
    provider.session_error = ProviderError("offline")

    result = asyncio.run(auth_service.initialize())

    state = auth_service.state
    assert not result.ok
    assert state.initialized is True
    assert state.error == "offline"
    assert state.session == make_session()
    assert state.resend_count == 2
    assert state.otp_cooldown_until == START_TIME + 1000
    assert auth_service.can_resend_otp() is False


def test_initialize_discards_expired_persisted_session(
    auth_service: AuthService, provider: FakeAuthProvider, storage
) -> None:
    expired = make_session(expires_at=int(START_TIME) - 1)
    persisted = PersistedAuthState(session=PersistedSession.from_session(expired))
    asyncio.run(storage.set("agrilink-auth", persisted.model_dump_json()))
    provider.session_error = ProviderError("offline")

    asyncio.run(auth_service.initialize())

    assert auth_service.state.session is None


def test_ensure_initialized_runs_once(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    async def run() -> None:
        await asyncio.gather(
            auth_service.ensure_initialized(), auth_service.ensure_initialized()
        )
        await auth_service.ensure_initialized()

    asyncio.run(run())

    assert len(provider.listeners) == 1
    assert auth_service.state.initialized is True


def test_reinitialize_replaces_subscription(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    asyncio.run(auth_service.initialize())
    asyncio.run(auth_service.initialize())

    assert len(provider.listeners) == 1


def test_auth_events_update_session(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    asyncio.run(auth_service.initialize())
    session = make_session("user-5", phone="+255700000005")

    provider.emit(AuthEvent.SIGNED_IN, session)
    assert auth_service.state.session == session
    assert auth_service.state.saved_phone_number == "+255700000005"

    refreshed = make_session("user-5", phone="+255700000005", expires_at=2_000_000_000)
    provider.emit(AuthEvent.TOKEN_REFRESHED, refreshed)
    assert auth_service.state.session == refreshed

    provider.emit(AuthEvent.SIGNED_OUT, None)
    assert auth_service.state.session is None
    assert auth_service.state.saved_phone_number is None


def test_close_unsubscribes_from_provider(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    asyncio.run(auth_service.initialize())

    auth_service.close()

    assert provider.listeners == []


def test_duplicate_verify_while_in_flight_is_rejected(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    async def run():
        provider.gate = asyncio.Event()
        first = asyncio.create_task(auth_service.verify_otp(PHONE, "123456"))
        await asyncio.sleep(0)
        second = await auth_service.verify_otp(PHONE, "123456")
        provider.gate.set()
        return await first, second

    first, second = asyncio.run(run())

    assert first.ok
    assert isinstance(second.error, OperationInProgressError)
    assert len(provider.verifications) == 1


def test_send_superseded_by_reset_still_counts_toward_throttle(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    async def run():
        provider.gate = asyncio.Event()
        pending = asyncio.create_task(auth_service.request_otp(PHONE))
        await asyncio.sleep(0)
        assert auth_service.state.loading is True
        auth_service.reset_otp_state()
        provider.gate.set()
        return await pending

    result = asyncio.run(run())

    state = auth_service.state
    assert isinstance(result.error, OperationSupersededError)
    assert state.otp_sent is False
    assert state.resend_count == 1
    assert state.otp_cooldown_until == START_TIME + 60
    assert state.loading is False
    assert auth_service.can_resend_otp() is False


def test_slow_request_does_not_overwrite_newer_verification(
    auth_service: AuthService, provider: FakeAuthProvider, clock: FakeClock
) -> None:
    async def run() -> None:
        request_gate = asyncio.Event()
        real_request = provider.request_otp

        async def held_request(phone: str) -> None:
            await request_gate.wait()
            await real_request(phone)

        provider.request_otp = held_request  # type: ignore[method-assign]
        pending = asyncio.create_task(auth_service.request_otp(PHONE))
        await asyncio.sleep(0)
        await auth_service.verify_otp(PHONE, "123456")
        request_gate.set()
        await pending

    asyncio.run(run())

    state = auth_service.state
    assert state.session is not None
    assert state.otp_sent is False
    assert state.resend_count == 0
    assert state.otp_cooldown_until == 0


def test_resend_superseded_by_failed_verify_keeps_long_cooldown(
    auth_service: AuthService, provider: FakeAuthProvider, clock: FakeClock
) -> None:
    asyncio.run(auth_service.request_otp(PHONE))
    clock.advance(61)

    async def run():
        request_gate = asyncio.Event()
        real_request = provider.request_otp

        async def held_request(phone: str) -> None:
            await request_gate.wait()
            await real_request(phone)

        provider.request_otp = held_request  # type: ignore[method-assign]
        provider.verify_error = ProviderError("Token has expired or is invalid")
        resend = asyncio.create_task(auth_service.request_otp(PHONE))
        await asyncio.sleep(0)
        verified = await auth_service.verify_otp(PHONE, "000000")
        request_gate.set()
        return await resend, verified

    resent, verified = asyncio.run(run())

    state = auth_service.state
    assert len(provider.requests) == 2
    assert not verified.ok
    assert isinstance(resent.error, OperationSupersededError)
    assert state.resend_count == 2
    assert state.otp_cooldown_until == clock.now + 21600
    assert auth_service.can_resend_otp() is False
    assert state.error == "Token has expired or is invalid"


def test_verify_success_is_adopted_when_resend_started_meanwhile(
    auth_service: AuthService, provider: FakeAuthProvider
) -> None:
    async def run():
        verify_gate = asyncio.Event()
        real_verify = provider.verify_otp

        async def held_verify(phone: str, code: str):
            await verify_gate.wait()
            return await real_verify(phone, code)

        provider.verify_otp = held_verify  # type: ignore[method-assign]
        pending = asyncio.create_task(auth_service.verify_otp(PHONE, "123456"))
        await asyncio.sleep(0)
        resent = await auth_service.request_otp(PHONE)
        verify_gate.set()
        return await pending, resent

    verified, resent = asyncio.run(run())

    state = auth_service.state
    assert resent.ok
    assert verified.ok
    assert state.session == provider.session
    assert state.resend_count == 0
    assert state.otp_cooldown_until == 0
    assert state.otp_sent is False
    assert state.verifying_otp is False
    assert auth_service.can_resend_otp() is True
