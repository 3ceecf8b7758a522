import asyncio

import pytest

from contacts_validation.config_loader import BatchConfig, EngineConfig
from contacts_validation.dns_check import MxChecker
from contacts_validation.engine import ValidationEngine
from contacts_validation.models import FieldType, Status
from contacts_validation.store import InMemoryStore


def _engine(store=None, **config):
    def resolver(domain, timeout):
        return ["mx." + domain]

    return ValidationEngine(
        EngineConfig(**config),
        store=store,
        mx_checker=MxChecker(resolver=resolver),
    )


def test_engine_validates_each_field():
    engine = _engine()

    async def go():
        return (
            await engine.validate_email("bob@gmial.com"),
            await engine.validate_phone("+44 7911 123456"),
            await engine.validate_address({"city": "nyc"}),
            await engine.validate_name("jane doe"),
            await engine.validate_separate_names("jane", "doe"),
        )

    email, phone, address, name, separate = asyncio.run(go())
    assert email.normalized_value == "bob@gmail.com"
    assert phone.normalized_value == "+447911123456"
    assert address.component_fields["city"] == "New York"
    assert name.normalized_value == separate.normalized_value == "Jane Doe"


def test_keyword_overrides_reach_the_validator():
    engine = _engine()
    phone = asyncio.run(engine.validate_phone("0412 345 678", country="AU", use_cache=False))
    assert phone.component_fields["method"] == "explicit_country"

    name = asyncio.run(engine.validate_name("Jane Doe", client_id="0042"))
    assert str(name.check_id)[-10:-6] == "0042"


def test_batch_keeps_input_order_across_chunks():
    engine = _engine()
    emails = ["a@gmail.com", "b@gmial.com", "", "d@yahoo.com", "e@hotmial.com"]
    batch = asyncio.run(
        engine.validate_batch(emails, "email", concurrency=2, delay_between_chunks_ms=0)
    )
    assert [result.original_input for result in batch.results] == emails
    assert batch.results[1].normalized_value == "b@gmail.com"
    assert batch.summary == {"total": 5, "successful": 5, "failed": 0}
    assert batch.errors == []


def test_batch_sleeps_between_chunks_only(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("contacts_validation.engine.asyncio.sleep", fake_sleep)
    engine = _engine(batch=BatchConfig(concurrency=2, delay_between_chunks_ms=250))
    asyncio.run(engine.validate_batch(["Ann Lee", "Bo Li", "Cy Young"], FieldType.NAME))
    assert sleeps == [0.25]


def test_batch_records_item_errors(monkeypatch):
    engine = _engine()
    real_validate = engine.name.validate

    def flaky(name, options=None):
        if name == "boom":
            raise RuntimeError("boom")
        return real_validate(name, options)

    monkeypatch.setattr(engine.name, "validate", flaky)
    batch = asyncio.run(
        engine.validate_batch(["Ann Lee", "boom", "Cy Young"], "name", delay_between_chunks_ms=0)
    )
    assert batch.results[1] is None
    assert batch.results[2].normalized_value == "Cy Young"
    assert batch.errors == [{"index": 1, "input": "boom", "error": "boom"}]
    assert batch.summary == {"total": 3, "successful": 2, "failed": 1}


def test_batch_can_stop_on_first_error(monkeypatch):
    engine = _engine()

    def broken(name, options=None):
        raise RuntimeError("broken validator")

    monkeypatch.setattr(engine.name, "validate", broken)
    with pytest.raises(RuntimeError):
        asyncio.run(engine.validate_batch(["Ann Lee"], "name", continue_on_error=False))


def test_batch_rejects_unknown_field_type():
    with pytest.raises(ValueError):
        asyncio.run(_engine().validate_batch(["x"], "fax"))


def test_batch_accepts_mapping_items():
    engine = _engine()
    phones = asyncio.run(
        engine.validate_batch(
            [{"phone": "0412 345 678", "country": "AU"}, "+1 415 555 2671"],
            "phone",
            delay_between_chunks_ms=0,
        )
    )
    assert [result.normalized_value for result in phones.results] == ["+61412345678", "+14155552671"]

    names = asyncio.run(
        engine.validate_batch(
            [{"first_name": "ann", "last_name": "o'neil"}, {"full_name": "BO LI"}],
            "name",
            delay_between_chunks_ms=0,
        )
    )
    assert [result.normalized_value for result in names.results] == ["Ann O'Neil", "Bo Li"]


def test_health_check_without_providers():
    engine = _engine()
    health = engine.health_check()
    assert health["status"] == "healthy"
    assert health["providers"]["zerobounce"] == {"enabled": False, "circuit_state": None}
    assert health["providers"]["opencage"] == {"enabled": False, "circuit_state": None}
    assert health["cache_enabled"] is True
    assert health["mx_cache_size"] == 0
    assert health["reference_data"]["valid_domains"] > 0


def test_get_stats_counts_per_field():
    engine = _engine()
    asyncio.run(engine.validate_name("Jane Doe"))
    asyncio.run(engine.validate_phone("+44 7911 123456"))
    asyncio.run(engine.validate_phone("+44 7911 123456"))
    stats = engine.get_stats()
    assert stats["name"]["validations"] == 1
    assert stats["phone"]["validations"] == 2
    assert stats["phone"]["cache_hits"] == 1
    assert stats["breakers"] == {}


def test_reload_reference_data_picks_up_store_changes():
    store = InMemoryStore()
    engine = _engine(store=store)
    before = asyncio.run(engine.validate_email("sales@acme-widgets.com"))
    assert before.status == Status.UNKNOWN

    store.insert("valid_domains", {"domain": "acme-widgets.com"})
    snapshot = engine.reload_reference_data()
    assert "acme-widgets.com" in snapshot.email.valid_domains
    assert engine.email.reference is snapshot.email

    after = asyncio.run(engine.validate_email("sales@acme-widgets.com"))
    assert after.status == Status.VALID


def test_engine_closes_as_context_manager():
    async def go():
        async with _engine() as engine:
            return await engine.validate_name("Jane Doe")

    assert asyncio.run(go()).valid is True
