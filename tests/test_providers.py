import asyncio

import dns.exception
import dns.resolver
import httpx
import pytest

from contacts_validation.circuit_breaker import CircuitBreaker, CircuitState
from contacts_validation.config_loader import BreakerConfig, ProviderConfig
from contacts_validation.dns_check import MxChecker
from contacts_validation.errors import (
    CircuitOpenError,
    ProviderCredentialsError,
    ProviderCreditsExhaustedError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from contacts_validation.http_provider import error_for_status
from contacts_validation.opencage import OpenCageClient
from contacts_validation.zerobounce import ZeroBounceClient


def _config(name, **overrides):
    params = dict(
        name=name,
        base_url=f"https://{name}.test/api/",
        api_key="secret",
        timeout_ms=1000.0,
        max_retries=1,
        retry_delay_ms=0.0,
        breaker=BreakerConfig(volume_threshold=2, error_threshold_percentage=50.0),
    )
    params.update(overrides)
    return ProviderConfig(**params)


def _run(client_cls, handler, coro_factory, **config_overrides):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            provider = client_cls(_config(client_cls.__name__.lower(), **config_overrides), client=http)
            return await coro_factory(provider), provider

    return asyncio.run(go())


@pytest.mark.parametrize(
    "status,error_cls",
    [
        (401, ProviderCredentialsError),
        (403, ProviderCredentialsError),
        (402, ProviderCreditsExhaustedError),
        (429, ProviderRateLimitError),
        (503, ProviderUnavailableError),
        (400, ProviderRequestError),
    ],
)
def test_error_for_status(status, error_cls):
    error = error_for_status("zerobounce", status, "detail")
    assert isinstance(error, error_cls)
    assert error.status_code == status


def test_zerobounce_verify_parses_payload():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        return httpx.Response(
            200,
            json={
                "address": "bob@gmail.com",
                "status": "Valid",
                "sub_status": "",
                "free_email": True,
                "did_you_mean": None,
                "mx_found": "true",
                "domain_age_days": "9000",
            },
        )

    verification, _ = _run(ZeroBounceClient, handler, lambda p: p.verify("bob@gmail.com"))
    assert verification.status == "valid"
    assert verification.free_email is True
    assert verification.mx_found is True
    assert verification.domain_age_days == 9000
    assert seen["url"].startswith("https://zerobounceclient.test/api/validate?")
    assert "email=bob%40gmail.com" in seen["url"]


def test_zerobounce_error_payload_maps_to_credits():
    def handler(request):
        return httpx.Response(200, json={"error": "Not enough credits"})

    with pytest.raises(ProviderCreditsExhaustedError):
        _run(ZeroBounceClient, handler, lambda p: p.verify("bob@gmail.com"))


def test_zerobounce_get_credits_negative_means_bad_key():
    def handler(request):
        return httpx.Response(200, json={"Credits": "-1"})

    with pytest.raises(ProviderCredentialsError):
        _run(ZeroBounceClient, handler, lambda p: p.get_credits())


def test_provider_retries_server_errors_then_succeeds():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"Credits": "250"})

    credits, provider = _run(ZeroBounceClient, handler, lambda p: p.get_credits())
    assert credits == 250
    assert calls["n"] == 2
    assert provider.get_circuit_state() == "closed"


def test_provider_does_not_retry_credential_errors():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(401, text="unauthorized")

    with pytest.raises(ProviderCredentialsError):
        _run(ZeroBounceClient, handler, lambda p: p.get_credits(), max_retries=3)
    assert calls["n"] == 1


def test_provider_maps_transport_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ProviderTimeoutError):
        _run(ZeroBounceClient, handler, lambda p: p.verify("bob@gmail.com"), max_retries=0)


def test_breaker_opens_and_short_circuits():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(500, text="down")

    async def three_calls(provider):
        errors = []
        for _ in range(3):
            try:
                await provider.get_credits()
            except (ProviderUnavailableError, CircuitOpenError) as exc:
                errors.append(type(exc))
        return errors

    errors, provider = _run(ZeroBounceClient, handler, three_calls, max_retries=0)
    assert errors == [ProviderUnavailableError, ProviderUnavailableError, CircuitOpenError]
    assert calls["n"] == 2
    assert provider.get_circuit_state() == "open"


def test_unconfigured_provider_refuses_calls():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(ProviderUnavailableError):
        _run(ZeroBounceClient, handler, lambda p: p.get_credits(), api_key="")


def test_opencage_geocode_parses_best_result():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={
                "status": {"code": 200, "message": "OK"},
                "results": [
                    {
                        "confidence": 9,
                        "formatted": "1600 Amphitheatre Pkwy, Mountain View, CA 94043, USA",
                        "components": {
                            "house_number": "1600",
                            "road": "Amphitheatre Pkwy",
                            "town": "Mountain View",
                            "state": "California",
                            "state_code": "CA",
                            "postcode": "94043",
                            "country": "United States",
                            "country_code": "us",
                        },
                        "geometry": {"lat": 37.422, "lng": -122.084},
                    }
                ],
            },
        )

    match, _ = _run(
        OpenCageClient,
        handler,
        lambda p: p.geocode("1600 Amphitheatre Pkwy, Mountain View, CA", country_code="US"),
    )
    assert match.confidence == 9
    assert match.city == "Mountain View"
    assert match.state_code == "CA"
    assert match.country_code == "US"
    assert match.latitude == pytest.approx(37.422)
    assert seen["params"]["countrycode"] == "us"
    assert seen["params"]["no_annotations"] == "1"


def test_opencage_no_results_returns_none():
    def handler(request):
        return httpx.Response(200, json={"status": {"code": 200}, "results": []})

    match, _ = _run(OpenCageClient, handler, lambda p: p.geocode("nowhere"))
    assert match is None


def test_opencage_quota_status_in_body():
    def handler(request):
        return httpx.Response(200, json={"status": {"code": 402, "message": "quota"}, "results": []})

    with pytest.raises(ProviderCreditsExhaustedError):
        _run(OpenCageClient, handler, lambda p: p.geocode("somewhere"))


def test_mx_checker_caches_definitive_answers():
    calls = []

    def resolver(domain, timeout):
        calls.append(domain)
        return ["mx1." + domain]

    checker = MxChecker(resolver=resolver)
    assert asyncio.run(checker.has_mx("Gmail.com")) is True
    assert asyncio.run(checker.has_mx("gmail.com")) is True
    assert calls == ["gmail.com"]
    assert checker.cache_size == 1


def test_mx_checker_nxdomain_is_negative():
    def resolver(domain, timeout):
        raise dns.resolver.NXDOMAIN()

    checker = MxChecker(resolver=resolver)
    assert asyncio.run(checker.has_mx("no-such-domain.test")) is False
    assert checker.cache_size == 1


def test_mx_checker_lookup_failure_is_unknown_and_not_cached():
    def resolver(domain, timeout):
        raise dns.exception.Timeout()

    checker = MxChecker(resolver=resolver)
    assert asyncio.run(checker.has_mx("slow.test")) is None
    assert checker.cache_size == 0


def test_mx_checker_entries_expire():
    now = {"t": 0.0}
    calls = []

    def resolver(domain, timeout):
        calls.append(domain)
        return ["mx." + domain]

    checker = MxChecker(resolver=resolver, ttl_seconds=60, clock=lambda: now["t"])
    asyncio.run(checker.has_mx("acme.test"))
    now["t"] = 61.0
    asyncio.run(checker.has_mx("acme.test"))
    assert calls == ["acme.test", "acme.test"]


def test_mx_checker_servfail_is_unknown_and_not_cached():
    def resolver(domain, timeout):
        raise dns.resolver.NoNameservers()

    checker = MxChecker(resolver=resolver)
    assert asyncio.run(checker.has_mx("servfail.test")) is None
    assert checker.cache_size == 0


def test_cancelled_half_open_trial_does_not_wedge_the_breaker():
    now = {"t": 0.0}
    breaker = CircuitBreaker("zerobounce", volume_threshold=1, reset_timeout_seconds=30.0, clock=lambda: now["t"])
    breaker.record_failure()
    now["t"] = 31.0
    assert breaker.get_state() == CircuitState.HALF_OPEN

    async def go():
        started = asyncio.Event()

        async def handler(request):
            started.set()
            await asyncio.sleep(3600)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            provider = ZeroBounceClient(
                _config("zerobounce", timeout_ms=60000.0, max_retries=0), client=http, breaker=breaker
            )
            task = asyncio.create_task(provider.get_credits())
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    asyncio.run(go())
    assert breaker.get_state() == CircuitState.OPEN
    now["t"] = 62.0
    assert breaker.can_execute() is True
