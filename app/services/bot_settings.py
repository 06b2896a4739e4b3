import logging
from typing import Any, Dict, Union

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from app import settings as env
from app.schemas import BotSettings, BotSettingsUpdate
from app.storage.db import Database
from app.storage.models import BotSettingsRecord

log = logging.getLogger("bot_settings")

SETTINGS_ID = "default"


class SettingsError(Exception):
    """Stored or submitted bot settings are invalid."""
    pass


def default_settings() -> BotSettings:
    return BotSettings(verify_token=env.WHATSAPP_VERIFY_TOKEN)


def _to_record(bs: BotSettings, rec: BotSettingsRecord) -> None:
    rec.is_active = bs.is_active
    rec.business_hours = bs.business_hours.model_dump(mode="json")
    rec.auto_reply = bs.auto_reply.model_dump(mode="json")
    rec.webhook_url = bs.webhook_url
    rec.verify_token = bs.verify_token
    rec.access_token = bs.access_token
    rec.phone_number_id = bs.phone_number_id


def _from_record(rec: BotSettingsRecord) -> BotSettings:
    try:
        return BotSettings(
            is_active=rec.is_active,
            business_hours=rec.business_hours or {},
            auto_reply=rec.auto_reply or {},
            webhook_url=rec.webhook_url or "",
            verify_token=rec.verify_token or env.WHATSAPP_VERIFY_TOKEN,
            access_token=rec.access_token or "",
            phone_number_id=rec.phone_number_id or "",
            updated_at=rec.updated_at,
        )
    except ValidationError as e:
        raise SettingsError(f"stored settings are invalid: {e.error_count()} error(s)") from e


class SettingsRepository:
    """The single bot settings row: created with defaults on first read."""

    def __init__(self, db: Database):
        self.db = db

    def get(self) -> BotSettings:
        with self.db.session() as s:
            rec = s.get(BotSettingsRecord, SETTINGS_ID)
            if rec is not None:
                return _from_record(rec)
        try:
            with self.db.session() as s:
                rec = BotSettingsRecord(id=SETTINGS_ID)
                _to_record(default_settings(), rec)
                s.add(rec)
            log.info({"event": "settings_initialized"})
        except IntegrityError:
            # concurrent first read inserted it
            pass
        with self.db.session() as s:
            return _from_record(s.get(BotSettingsRecord, SETTINGS_ID))

    def update(self, changes: Union[BotSettingsUpdate, Dict[str, Any]]) -> BotSettings:
        if not isinstance(changes, BotSettingsUpdate):
            try:
                changes = BotSettingsUpdate.model_validate(changes)
            except ValidationError as e:
                raise SettingsError(str(e)) from e
        data = self.get().model_dump()
        # a section that is sent replaces the stored section whole
        data.update(changes.model_dump(include=changes.model_fields_set, exclude_none=True))
        try:
            merged = BotSettings.model_validate(data)
        except ValidationError as e:
            raise SettingsError(str(e)) from e

        with self.db.session() as s:
            rec = s.get(BotSettingsRecord, SETTINGS_ID)
            _to_record(merged, rec)
        log.info({"event": "settings_updated", "fields": sorted(changes.model_fields_set)})
        return self.get()

    def reset(self) -> BotSettings:
        with self.db.session() as s:
            rec = s.get(BotSettingsRecord, SETTINGS_ID)
            if rec is None:
                rec = BotSettingsRecord(id=SETTINGS_ID)
                s.add(rec)
            _to_record(default_settings(), rec)
        log.info({"event": "settings_reset"})
        return self.get()
