"""Subscription record repositories and the account directory used by reports."""

import asyncio
import json
from pathlib import Path
from typing import Any, Protocol

import pydantic
import structlog
from pydantic import TypeAdapter

from subscriptions.errors import StoreCorruptionError
from subscriptions.models.subscription import AccountProfile, SubscriptionRecord
from subscriptions.services.clock import NowProvider, utcnow

logger = structlog.get_logger(__name__)


def parse_record(account_id: str, raw: Any) -> SubscriptionRecord:
    """Validate a stored row. Raises StoreCorruptionError when it is unusable."""
    if not isinstance(raw, dict):
        raise StoreCorruptionError(account_id, f"expected object, got {type(raw).__name__}")
    try:
        return SubscriptionRecord.model_validate(raw)
    except pydantic.ValidationError as e:
        raise StoreCorruptionError(account_id, str(e)) from e


def _parse_or_none(account_id: str, raw: Any) -> SubscriptionRecord | None:
    if raw is None:
        return None
    try:
        return parse_record(account_id, raw)
    except StoreCorruptionError as e:
        logger.warning("subscription_record_corrupt", account_id=account_id, error=e.reason)
        return None


_PATCH_ADAPTER = TypeAdapter(dict[str, Any])


def encode_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Convert datetimes, decimals and enums into their JSON/storage form."""
    return _PATCH_ADAPTER.dump_python(patch, mode="json")


class SubscriptionRepository(Protocol):
    """Storage contract for subscription records, keyed by account id."""

    async def get_record(self, account_id: str) -> SubscriptionRecord | None:
        """Fetch a record. Corrupt rows are reported as absent."""

    async def create_record(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """Insert ``record`` unless a valid one already exists; return the stored record."""

    async def upsert_record(self, account_id: str, patch: dict[str, Any]) -> SubscriptionRecord:
        """Merge ``patch`` into the stored record (created beforehand) and set ``updated_at``."""

    async def list_records(self) -> list[SubscriptionRecord]:
        """All valid records."""


class InMemorySubscriptionRepository:
    """In-memory repository used for tests and local fallback."""

    def __init__(self, now_provider: NowProvider = utcnow) -> None:
        self.rows: dict[str, Any] = {}
        self.now_provider = now_provider

    async def get_record(self, account_id: str) -> SubscriptionRecord | None:
        return _parse_or_none(account_id, self.rows.get(account_id))

    async def create_record(self, record: SubscriptionRecord) -> SubscriptionRecord:
        existing = await self.get_record(record.account_id)
        if existing is not None:
            return existing
        row = record.model_dump(mode="json")
        row["updated_at"] = self.now_provider().isoformat()
        self.rows[record.account_id] = row
        return parse_record(record.account_id, row)

    async def upsert_record(self, account_id: str, patch: dict[str, Any]) -> SubscriptionRecord:
        current = self.rows.get(account_id)
        base = dict(current) if isinstance(current, dict) else {}
        row = {
            **base,
            **encode_patch(patch),
            "account_id": account_id,
            "updated_at": self.now_provider().isoformat(),
        }
        self.rows[account_id] = row
        return parse_record(account_id, row)

    async def list_records(self) -> list[SubscriptionRecord]:
        records = [_parse_or_none(account_id, raw) for account_id, raw in self.rows.items()]
        return [record for record in records if record is not None]


class JsonFileSubscriptionRepository:
    """Single-file JSON repository for small deployments without a database.

    The whole file is rewritten atomically (temp file + rename) on every
    write. An unreadable file is treated as empty.
    """

    root_key = "subscriptions"

    def __init__(self, path: Path | str, now_provider: NowProvider = utcnow) -> None:
        self.path = Path(path)
        self.now_provider = now_provider
        self._lock = asyncio.Lock()

    def _read_rows(self) -> dict[str, Any]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            items = payload.get(self.root_key, [])
            if not isinstance(items, list):
                raise ValueError("root is not a list")
        except FileNotFoundError:
            return {}
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("subscription_store_unreadable", path=str(self.path), error=str(e))
            return {}

        rows: dict[str, Any] = {}
        for item in items:
            account_id = item.get("account_id") if isinstance(item, dict) else None
            if account_id:
                rows[str(account_id)] = item
        return rows

    def _write_rows(self, rows: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        payload = {self.root_key: list(rows.values())}
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    async def get_record(self, account_id: str) -> SubscriptionRecord | None:
        rows = await asyncio.to_thread(self._read_rows)
        return _parse_or_none(account_id, rows.get(account_id))

    async def create_record(self, record: SubscriptionRecord) -> SubscriptionRecord:
        async with self._lock:
            rows = await asyncio.to_thread(self._read_rows)
            existing = _parse_or_none(record.account_id, rows.get(record.account_id))
            if existing is not None:
                return existing
            row = record.model_dump(mode="json")
            row["updated_at"] = self.now_provider().isoformat()
            rows[record.account_id] = row
            await asyncio.to_thread(self._write_rows, rows)
            return parse_record(record.account_id, row)

    async def upsert_record(self, account_id: str, patch: dict[str, Any]) -> SubscriptionRecord:
        async with self._lock:
            rows = await asyncio.to_thread(self._read_rows)
            current = rows.get(account_id)
            base = dict(current) if isinstance(current, dict) else {}
            row = {
                **base,
                **encode_patch(patch),
                "account_id": account_id,
                "updated_at": self.now_provider().isoformat(),
            }
            rows[account_id] = row
            await asyncio.to_thread(self._write_rows, rows)
            return parse_record(account_id, row)

    async def list_records(self) -> list[SubscriptionRecord]:
        rows = await asyncio.to_thread(self._read_rows)
        records = [_parse_or_none(account_id, raw) for account_id, raw in rows.items()]
        return [record for record in records if record is not None]


class SupabaseSubscriptionRepository:
    """Supabase-backed repository for subscription records.

    Rows are created whole by ``create_record``; patches are applied with
    ``UPDATE ... WHERE account_id = ?`` so only the patch columns change.
    """

    def __init__(self, client, records_table: str, now_provider: NowProvider = utcnow):
        self.client = client
        self.records_table = records_table
        self.now_provider = now_provider

    async def _fetch_row(self, account_id: str) -> dict | None:
        response = (
            await self.client.table(self.records_table)
            .select("*")
            .eq("account_id", account_id)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return rows[0] if rows else None

    async def get_record(self, account_id: str) -> SubscriptionRecord | None:
        return _parse_or_none(account_id, await self._fetch_row(account_id))

    async def create_record(self, record: SubscriptionRecord) -> SubscriptionRecord:
        payload = record.model_dump(mode="json")
        payload["updated_at"] = self.now_provider().isoformat()

        # ON CONFLICT DO NOTHING: a concurrent first query keeps the original trial dates.
        await (
            self.client.table(self.records_table)
            .upsert(payload, on_conflict="account_id", ignore_duplicates=True)
            .execute()
        )
        stored = await self.get_record(record.account_id)
        if stored is not None:
            return stored

        # The existing row is corrupt; replace it.
        response = (
            await self.client.table(self.records_table)
            .upsert(payload, on_conflict="account_id")
            .execute()
        )
        rows = response.data or []
        return parse_record(record.account_id, rows[0] if rows else payload)

    async def upsert_record(self, account_id: str, patch: dict[str, Any]) -> SubscriptionRecord:
        payload = encode_patch(patch)
        payload.pop("account_id", None)
        payload["updated_at"] = self.now_provider().isoformat()
        response = (
            await self.client.table(self.records_table)
            .update(payload)
            .eq("account_id", account_id)
            .execute()
        )
        rows = response.data or []
        if rows:
            return parse_record(account_id, rows[0])
        # Some Supabase responses return no data unless `returning=representation`.
        row = await self._fetch_row(account_id)
        if row is None:
            raise StoreCorruptionError(account_id, "no row to update")
        return parse_record(account_id, row)

    async def list_records(self) -> list[SubscriptionRecord]:
        response = (
            await self.client.table(self.records_table)
            .select("*")
            .order("created_at")
            .execute()
        )
        records = [
            _parse_or_none(str(row.get("account_id", "")), row) for row in response.data or []
        ]
        return [record for record in records if record is not None]


class AccountDirectory(Protocol):
    """Read-only identity lookup for the admin report."""

    async def get_profiles(self, account_ids: list[str]) -> dict[str, AccountProfile]:
        """Profiles keyed by account id; unknown accounts are omitted."""


class InMemoryAccountDirectory:
    def __init__(self, profiles: list[AccountProfile] | None = None) -> None:
        self.profiles = {p.account_id: p for p in profiles or []}

    async def get_profiles(self, account_ids: list[str]) -> dict[str, AccountProfile]:
        return {i: self.profiles[i] for i in account_ids if i in self.profiles}


class SupabaseAccountDirectory:
    """Reads email and display name from the profiles table."""

    def __init__(self, client, profiles_table: str):
        self.client = client
        self.profiles_table = profiles_table

    async def get_profiles(self, account_ids: list[str]) -> dict[str, AccountProfile]:
        if not account_ids:
            return {}
        response = (
            await self.client.table(self.profiles_table)
            .select("id, email, display_name")
            .in_("id", account_ids)
            .execute()
        )
        return {
            str(row["id"]): AccountProfile(
                account_id=str(row["id"]),
                email=row.get("email"),
                display_name=row.get("display_name"),
            )
            for row in response.data or []
        }
