"""Unit tests for subscription repositories and the account directory."""

import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from subscriptions.errors import StoreCorruptionError
from subscriptions.models.subscription import (
    AccountProfile,
    SubscriptionPlan,
    SubscriptionRecord,
    SubscriptionStatus,
)
from subscriptions.services.subscription_store import (
    InMemoryAccountDirectory,
    InMemorySubscriptionRepository,
    JsonFileSubscriptionRepository,
    SupabaseAccountDirectory,
    SupabaseSubscriptionRepository,
    encode_patch,
    parse_record,
)

T0 = datetime(2026, 2, 22, 12, 0, tzinfo=UTC)


def _clock(now: datetime = T0):
    return lambda: now


def trial(account_id: str = "acct-1", now: datetime = T0) -> SubscriptionRecord:
    return SubscriptionRecord(
        account_id=account_id,
        trial_ends_at=now + timedelta(days=10),
        grace_ends_at=now + timedelta(days=13),
        status=SubscriptionStatus.TRIAL,
        reason="Trial active.",
        created_at=now,
    )


class FakeQuery:
    """Minimal stand-in for the postgrest async query builder."""

    def __init__(self, table: "FakeTable"):
        self.table = table
        self.filters: list = []
        self.op = "select"
        self.payload = None
        self.ignore_duplicates = False

    def select(self, *_args):
        self.op = "select"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def limit(self, _n):
        return self

    def order(self, _column):
        return self

    def upsert(self, payload, on_conflict="", ignore_duplicates=False):
        self.op = "upsert"
        self.payload = payload
        self.ignore_duplicates = ignore_duplicates
        self.table.upserts.append((payload, ignore_duplicates))
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        self.table.updates.append(self)
        return self

    async def execute(self):
        rows = self.table.rows
        if self.op == "upsert":
            key = self.payload[self.table.key]
            if key in rows and self.ignore_duplicates:
                return SimpleNamespace(data=[])
            rows[key] = {**rows.get(key, {}), **self.payload}
            return SimpleNamespace(data=[] if self.table.no_return else [dict(rows[key])])
        if self.op == "update":
            # UPDATE never inserts: rows that do not match the filters stay untouched.
            matched = [k for k, r in rows.items() if all(f(r) for f in self.filters)]
            for k in matched:
                rows[k] = {**rows[k], **self.payload}
            return SimpleNamespace(
                data=[] if self.table.no_return else [dict(rows[k]) for k in matched]
            )
        matched = [dict(r) for r in rows.values() if all(f(r) for f in self.filters)]
        return SimpleNamespace(data=matched)


class FakeTable:
    def __init__(self, key: str, no_return: bool = False):
        self.key = key
        self.rows: dict = {}
        self.upserts: list = []
        self.updates: list = []
        self.no_return = no_return


class FakeSupabase:
    def __init__(self, **tables: FakeTable):
        self.tables = tables

    def table(self, name):
        return FakeQuery(self.tables[name])


class TestParseRecord:
    def test_rejects_non_object(self):
        with pytest.raises(StoreCorruptionError):
            parse_record("acct-1", ["not", "a", "record"])

    def test_rejects_missing_timestamps(self):
        with pytest.raises(StoreCorruptionError) as exc_info:
            parse_record("acct-1", {"account_id": "acct-1", "plan": "trial"})
        assert exc_info.value.account_id == "acct-1"


class TestEncodePatch:
    def test_converts_values_to_storage_form(self):
        encoded = encode_patch(
            {
                "last_payment_amount": Decimal("1072.50"),
                "status": SubscriptionStatus.ACTIVE,
                "period_ends_at": T0,
                "locked": False,
            }
        )

        assert encoded["last_payment_amount"] == "1072.50"
        assert encoded["status"] == "active"
        assert encoded["period_ends_at"].startswith("2026-02-22T12:00:00")
        assert encoded["locked"] is False
        json.dumps(encoded)


class TestInMemoryRepository:
    async def test_get_missing_returns_none(self):
        repo = InMemorySubscriptionRepository(_clock())
        assert await repo.get_record("nobody") is None

    async def test_create_then_get(self):
        repo = InMemorySubscriptionRepository(_clock())

        created = await repo.create_record(trial())
        fetched = await repo.get_record("acct-1")

        assert created == fetched
        assert fetched.updated_at == T0
        assert fetched.plan == SubscriptionPlan.TRIAL

    async def test_create_is_insert_if_absent(self):
        repo = InMemorySubscriptionRepository(_clock())
        first = await repo.create_record(trial())

        second = await repo.create_record(trial(now=T0 + timedelta(days=7)))

        assert second.trial_ends_at == first.trial_ends_at
        assert len(repo.rows) == 1

    async def test_upsert_merges_and_keeps_other_fields(self):
        later = T0 + timedelta(hours=1)
        repo = InMemorySubscriptionRepository(_clock(later))
        await repo.create_record(trial())

        updated = await repo.upsert_record(
            "acct-1",
            {"last_payment_session_id": "cs_1", "last_payment_amount": Decimal("48.75")},
        )
        patched = await repo.upsert_record("acct-1", {"status": SubscriptionStatus.PAST_DUE})

        assert updated.last_payment_amount == Decimal("48.75")
        assert patched.last_payment_session_id == "cs_1"
        assert patched.status == SubscriptionStatus.PAST_DUE
        assert patched.trial_ends_at == T0 + timedelta(days=10)
        assert patched.updated_at == later

    async def test_corrupt_row_reads_as_absent_and_is_replaced_on_create(self):
        repo = InMemorySubscriptionRepository(_clock())
        repo.rows["acct-1"] = {"account_id": "acct-1", "trial_ends_at": "not-a-date"}

        assert await repo.get_record("acct-1") is None
        healed = await repo.create_record(trial())

        assert healed.trial_ends_at == T0 + timedelta(days=10)

    async def test_list_skips_corrupt_rows(self):
        repo = InMemorySubscriptionRepository(_clock())
        await repo.create_record(trial("a"))
        await repo.create_record(trial("b"))
        repo.rows["broken"] = "garbage"

        records = await repo.list_records()

        assert sorted(r.account_id for r in records) == ["a", "b"]


class TestJsonFileRepository:
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "data" / "subscriptions.json"
        repo = JsonFileSubscriptionRepository(path, _clock())
        await repo.create_record(trial())
        await repo.upsert_record("acct-1", {"receipt_url": "https://pay.test/r/1"})

        reopened = JsonFileSubscriptionRepository(path, _clock())
        record = await reopened.get_record("acct-1")

        assert record is not None
        assert record.receipt_url == "https://pay.test/r/1"
        assert record.trial_ends_at == T0 + timedelta(days=10)
        assert json.loads(path.read_text())["subscriptions"][0]["account_id"] == "acct-1"
        assert not path.with_suffix(".json.tmp").exists()

    async def test_unreadable_file_is_treated_as_empty(self, tmp_path):
        path = tmp_path / "subscriptions.json"
        path.write_text("{not json", encoding="utf-8")
        repo = JsonFileSubscriptionRepository(path, _clock())

        assert await repo.get_record("acct-1") is None
        created = await repo.create_record(trial())

        assert created.account_id == "acct-1"
        assert await repo.list_records() == [created]

    async def test_missing_file_lists_nothing(self, tmp_path):
        repo = JsonFileSubscriptionRepository(tmp_path / "absent.json", _clock())
        assert await repo.list_records() == []


class TestSupabaseRepository:
    def _repo(self, no_return: bool = False):
        table = FakeTable("account_id", no_return=no_return)
        client = FakeSupabase(subscriptions=table)
        return SupabaseSubscriptionRepository(client, "subscriptions", _clock()), table

    async def test_create_uses_do_nothing_on_conflict(self):
        repo, table = self._repo()

        first = await repo.create_record(trial())
        second = await repo.create_record(trial(now=T0 + timedelta(days=3)))

        assert second.trial_ends_at == first.trial_ends_at
        assert all(ignore for _payload, ignore in table.upserts)

    async def test_create_replaces_corrupt_row(self):
        repo, table = self._repo()
        table.rows["acct-1"] = {"account_id": "acct-1", "plan": "bogus"}

        healed = await repo.create_record(trial())

        assert healed.plan == SubscriptionPlan.TRIAL
        assert table.upserts[-1][1] is False

    async def test_patch_is_an_update_filtered_by_account(self):
        repo, table = self._repo()
        await repo.create_record(trial())
        upserts_before = len(table.upserts)

        record = await repo.upsert_record("acct-1", {"locked": True})

        # Patches never go through INSERT ... ON CONFLICT.
        assert len(table.upserts) == upserts_before
        query = table.updates[-1]
        assert set(query.payload) == {"locked", "updated_at"}
        assert query.filters[0]({"account_id": "acct-1"})
        assert not query.filters[0]({"account_id": "acct-2"})
        assert record.locked is True
        assert record.reason == "Trial active."
        assert record.trial_ends_at == T0 + timedelta(days=10)

    async def test_patch_without_stored_row_inserts_nothing(self):
        repo, table = self._repo()

        with pytest.raises(StoreCorruptionError):
            await repo.upsert_record("acct-1", {"locked": True})

        assert table.rows == {}

    async def test_upsert_refetches_when_no_data_returned(self):
        repo, _ = self._repo(no_return=True)
        await repo.create_record(trial())

        record = await repo.upsert_record("acct-1", {"reason": "changed"})

        assert record.reason == "changed"


class TestAccountDirectories:
    async def test_in_memory_directory_omits_unknown(self):
        directory = InMemoryAccountDirectory(
            [AccountProfile(account_id="a", email="a@example.com", display_name="A")]
        )

        profiles = await directory.get_profiles(["a", "b"])

        assert list(profiles) == ["a"]
        assert profiles["a"].email == "a@example.com"

    async def test_supabase_directory_reads_profiles(self):
        table = FakeTable("id")
        table.rows["a"] = {"id": "a", "email": "a@example.com", "display_name": "Alice"}
        table.rows["c"] = {"id": "c", "email": "c@example.com", "display_name": None}
        directory = SupabaseAccountDirectory(FakeSupabase(user_profiles=table), "user_profiles")

        profiles = await directory.get_profiles(["a", "b"])

        assert profiles == {
            "a": AccountProfile(account_id="a", email="a@example.com", display_name="Alice")
        }

    async def test_supabase_directory_empty_input(self):
        directory = SupabaseAccountDirectory(FakeSupabase(), "user_profiles")
        assert await directory.get_profiles([]) == {}
