from __future__ import annotations

import datetime as dt

from pantry.models import CandidateResource
from pantry.models import EnrichedFields
from pantry.services.counties import Region
from pantry.services.resource_store import ResourceStore
from pantry.services.resource_store import merge_enriched

LEASE = dt.timedelta(minutes=5)


def _pending(store: ResourceStore, region: Region, name: str, address: str = "1 Main St", **kwargs) -> int:
    candidate = CandidateResource(name=name, address=address, **kwargs)
    return store.insert_resource(candidate, region).id


def test_insert_for_county_is_pending(store: ResourceStore, county_region: Region) -> None:
    resource_id = _pending(store, county_region, "Ambler Pantry", state=None, place_id="abc")

    row = store.get(resource_id)
    assert row is not None
    assert row.needs_enrichment is True
    assert row.is_verified is False
    assert row.county_geoid == "42091"
    assert row.county_name == "Montgomery County"
    assert row.state == "PA"
    assert row.place_id == "abc"
    assert row.enrichment_failure_count == 0
    assert row.exportable is True


def test_insert_for_zip_with_enrichment_is_verified(store: ResourceStore) -> None:
    region = Region.for_zip("19002")
    candidate = CandidateResource(name="Ambler Pantry", address="1 Main St", phone="555-0100")
    enriched = EnrichedFields(name="Ambler Pantry", hours="Mon 9-5", phone="", zip_code="19002")

    resource = store.insert_resource(candidate, region, enriched=enriched)

    row = store.get(resource.id)
    assert row.is_verified is True
    assert row.needs_enrichment is False
    assert row.zip_code == "19002"
    assert row.location_type == "zip"
    assert row.phone == "555-0100"
    assert row.hours == "Mon 9-5"
    assert row.last_verified_at is not None


def test_existing_dedup_keys_ignore_case_and_whitespace(store: ResourceStore, county_region: Region) -> None:
    _pending(store, county_region, "Community Pantry", "123 Main St")
    candidates = [
        CandidateResource(name="community pantry", address="123 main st"),
        CandidateResource(name="Community Pantry", address="9 Elm St"),
    ]

    existing = store.existing_dedup_keys(candidates)

    assert existing == {"community pantry-123 main st"}
    assert store.existing_dedup_keys([]) == set()


def test_existing_dedup_keys_match_python_normalization(store: ResourceStore, county_region: Region) -> None:
    _pending(store, county_region, "Community Pantry\t", "123 Main St")
    _pending(store, county_region, "ÉGLISE Pantry", "1 Rue")
    candidates = [
        CandidateResource(name="community pantry", address="123 main st"),
        CandidateResource(name="église pantry", address="1 rue"),
    ]

    existing = store.existing_dedup_keys(candidates)

    assert existing == {"community pantry-123 main st", "église pantry-1 rue"}


def test_dedup_key_follows_verified_rename(store: ResourceStore, county_region: Region) -> None:
    resource_id = _pending(store, county_region, "Hope Mission", "5 Oak St")

    store.mark_verified(resource_id, EnrichedFields(name="Hope Mission Food Pantry"))

    assert store.get(resource_id).dedup_key == "hope mission food pantry-5 oak st"
    assert store.existing_dedup_keys([CandidateResource(name="Hope Mission", address="5 Oak St")]) == set()


def test_claim_orders_newest_first_and_stamps_lease(store, clock, county_region) -> None:
    older = _pending(store, county_region, "Older Pantry")
    clock.advance(minutes=1)
    newer = _pending(store, county_region, "Newer Pantry")

    batch = store.claim_batch(1, LEASE)

    assert [row.id for row in batch] == [newer]
    assert batch[0].last_enrichment_attempt is not None
    assert store.get(newer).last_enrichment_attempt is not None
    assert store.get(older).last_enrichment_attempt is None


def test_claims_within_lease_never_overlap(store, clock, county_region) -> None:
    ids = {_pending(store, county_region, f"Pantry {i}", f"{i} Main St") for i in range(4)}

    first = {row.id for row in store.claim_batch(2, LEASE)}
    clock.advance(minutes=4)
    second = {row.id for row in store.claim_batch(5, LEASE)}
    third = store.claim_batch(5, LEASE)

    assert len(first) == 2
    assert first.isdisjoint(second)
    assert first | second == ids
    assert third == []


def test_lease_expiry_makes_row_claimable_again(store, clock, county_region) -> None:
    resource_id = _pending(store, county_region, "Ambler Pantry")
    store.claim_batch(5, LEASE)

    clock.advance(minutes=4, seconds=59)
    assert store.claim_batch(5, LEASE) == []

    clock.advance(seconds=2)
    assert [row.id for row in store.claim_batch(5, LEASE)] == [resource_id]


def test_claim_with_no_slots_returns_nothing(store, county_region) -> None:
    _pending(store, county_region, "Ambler Pantry")

    assert store.claim_batch(0, LEASE) == []


def test_third_strike_is_not_claimable(store, clock, county_region) -> None:
    resource_id = _pending(store, county_region, "Ambler Pantry")
    for _ in range(3):
        clock.advance(minutes=10)
        assert [row.id for row in store.claim_batch(5, LEASE)] == [resource_id]
        store.mark_retry(resource_id, "Not found")

    clock.advance(minutes=10)
    row = store.get(resource_id)
    assert row.enrichment_failure_count == 3
    assert row.enrichment_failure_reason == "Not found"
    assert row.needs_enrichment is True
    assert store.claim_batch(5, LEASE) == []
    assert store.enrichment_stats()["permanently_failed"] == 1
    assert store.enrichment_stats()["pending"] == 0


def test_permanent_closure_from_fresh_record(store, clock, county_region) -> None:
    resource_id = _pending(store, county_region, "Ambler Pantry")

    store.mark_permanently_closed(resource_id)
    clock.advance(days=1)

    row = store.get(resource_id)
    assert row.exportable is False
    assert row.enrichment_failure_count == 1
    assert "Permanently closed" in row.enrichment_failure_reason
    assert store.claim_batch(5, LEASE) == []
    assert store.enrichment_stats()["permanently_failed"] == 1


def test_mark_verified_merges_and_resets(store, clock, county_region) -> None:
    resource_id = _pending(store, county_region, "Ambler Pantry", phone="555-0100", hours="Tue 9-12")
    store.mark_retry(resource_id, "API error: timed out")

    store.mark_verified(
        resource_id,
        EnrichedFields(name="Ambler Pantry", phone=None, hours="Mon 9-5", latitude=40.15, place_id="xyz"),
    )

    row = store.get(resource_id)
    assert row.is_verified is True
    assert row.needs_enrichment is False
    assert row.enrichment_failure_count == 0
    assert row.enrichment_failure_reason is None
    assert row.phone == "555-0100"
    assert row.hours == "Mon 9-5"
    assert row.latitude == 40.15
    assert row.place_id == "xyz"
    assert row.last_verified_at is not None


def test_failure_count_only_grows_while_pending(store, county_region) -> None:
    resource_id = _pending(store, county_region, "Ambler Pantry")
    counts = []
    for reason in ("Not found", "Name mismatch: found Walgreens"):
        store.mark_retry(resource_id, reason)
        counts.append(store.get(resource_id).enrichment_failure_count)

    assert counts == [1, 2]


def test_enrichment_stats(store, county_region) -> None:
    _pending(store, county_region, "A Pantry", "1 A St")
    retrying = _pending(store, county_region, "B Pantry", "1 B St")
    closed = _pending(store, county_region, "C Pantry", "1 C St")
    verified = _pending(store, county_region, "D Pantry", "1 D St")
    store.mark_retry(retrying, "Not found")
    store.mark_permanently_closed(closed)
    store.mark_verified(verified, EnrichedFields(phone="555"))

    stats = store.enrichment_stats()

    assert stats == {"pending": 2, "retrying": 1, "permanently_failed": 1, "verified": 1}


def test_cache_freshness(store, clock, county_region) -> None:
    assert store.is_fresh(county_region) is False

    store.record_search(county_region, 0)
    assert store.is_fresh(county_region) is False  # searched but nothing stored

    _pending(store, county_region, "Ambler Pantry")
    assert store.is_fresh(county_region) is True

    clock.advance(days=31)
    assert store.is_fresh(county_region) is False
    assert store.searched_region_keys("county") == {"42091"}


def test_resources_for_region_scopes_by_zip_or_county(store, county_region) -> None:
    zip_region = Region.for_zip("19002")
    _pending(store, county_region, "County Pantry")
    store.insert_resource(CandidateResource(name="Zip Pantry"), zip_region, enriched=EnrichedFields())

    assert [r.name for r in store.resources_for_region(county_region)] == ["County Pantry"]
    assert [r.name for r in store.resources_for_region(zip_region)] == ["Zip Pantry"]


def test_merge_enriched_prefers_non_empty_incoming() -> None:
    merged = merge_enriched(
        {"name": "Old", "phone": "555", "hours": None},
        EnrichedFields(name="New", phone="", hours="Mon"),
    )

    assert merged["name"] == "New"
    assert merged["phone"] == "555"
    assert merged["hours"] == "Mon"
