"""Typed runtime configuration for login protection.

Administrators override the defaults from ``Settings`` by writing rows into
``protection_settings``. Each row carries its value as text plus a type tag; the
tag is resolved once, when a :class:`ProtectionConfig` is loaded, so components
only ever see plain ``int``/``bool``/``str`` attributes.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, fields, replace

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from accessguard.core.clock import utcnow
from accessguard.core.config import Settings, settings
from accessguard.db.models import ProtectionSetting


logger = logging.getLogger(__name__)


class SettingType(str, enum.Enum):
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    FLOAT = "float"


_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class ProtectionConfig:
    max_login_attempts: int = 5
    lockout_duration: int = 900
    reset_time: int = 900
    enable_ip_denylist: bool = True
    enable_ip_safelist: bool = False
    enable_username_denylist: bool = True
    enable_username_safelist: bool = False
    show_remaining_attempts: bool = True
    lockout_message: str = "Too many failed login attempts. Please try again in {minutes} minutes."
    notify_admin_lockout: bool = False
    admin_email: str = ""

    @classmethod
    def from_settings(cls, s: Settings) -> "ProtectionConfig":
        return cls(
            max_login_attempts=s.protection_max_login_attempts,
            lockout_duration=s.protection_lockout_duration,
            reset_time=s.protection_reset_time,
            enable_ip_denylist=s.protection_enable_ip_denylist,
            enable_ip_safelist=s.protection_enable_ip_safelist,
            enable_username_denylist=s.protection_enable_username_denylist,
            enable_username_safelist=s.protection_enable_username_safelist,
            show_remaining_attempts=s.protection_show_remaining_attempts,
            lockout_message=s.protection_lockout_message,
            notify_admin_lockout=s.protection_notify_admin_lockout,
            admin_email=s.protection_admin_email,
        )

    def as_dict(self) -> dict[str, object]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _setting_type_for(value: object) -> SettingType:
    if isinstance(value, bool):
        return SettingType.BOOLEAN
    if isinstance(value, int):
        return SettingType.INTEGER
    if isinstance(value, float):
        return SettingType.FLOAT
    return SettingType.STRING


SETTING_TYPES: dict[str, SettingType] = {
    f.name: _setting_type_for(f.default) for f in fields(ProtectionConfig)
}


def cast_setting_value(raw: str, setting_type: SettingType) -> object:
    if setting_type is SettingType.INTEGER:
        return int(raw.strip())
    if setting_type is SettingType.FLOAT:
        return float(raw.strip())
    if setting_type is SettingType.BOOLEAN:
        s = raw.strip().lower()
        if s in _TRUE_STRINGS:
            return True
        if s in _FALSE_STRINGS:
            return False
        raise ValueError(f"invalid boolean value: {raw!r}")
    return raw


def _serialize_value(value: object, setting_type: SettingType) -> str:
    if setting_type is SettingType.BOOLEAN:
        return "1" if value else "0"
    return str(value)


def _validate(name: str, value: object) -> object:
    setting_type = SETTING_TYPES.get(name)
    if setting_type is None:
        raise KeyError(name)

    if isinstance(value, str) and setting_type is not SettingType.STRING:
        value = cast_setting_value(value, setting_type)

    if setting_type is SettingType.BOOLEAN:
        if not isinstance(value, bool):
            raise ValueError(f"{name} must be a boolean")
    elif setting_type is SettingType.INTEGER:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be an integer")
        if value <= 0:
            raise ValueError(f"{name} must be a positive integer")
    elif setting_type is SettingType.FLOAT:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number")
        value = float(value)
    elif not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


def load_protection_config(db: Session, *, base: Settings | None = None) -> ProtectionConfig:
    """Resolve defaults plus stored overrides into a typed config.

    A store failure or an unparseable row falls back to the default for that
    value; a broken settings table must not take login down with it.
    """
    config = ProtectionConfig.from_settings(base or settings)
    try:
        rows = list(db.execute(select(ProtectionSetting)).scalars().all())
    except SQLAlchemyError:
        logger.exception("failed to load protection settings; using defaults")
        db.rollback()
        return config

    overrides: dict[str, object] = {}
    for row in rows:
        expected = SETTING_TYPES.get(row.setting_name)
        if expected is None:
            continue
        try:
            stored_type = SettingType(row.setting_type)
            value = cast_setting_value(row.setting_value, stored_type)
            overrides[row.setting_name] = _validate(row.setting_name, value)
        except (ValueError, KeyError):
            logger.warning(
                "ignoring invalid protection setting %s=%r (%s)",
                row.setting_name,
                row.setting_value,
                row.setting_type,
            )
    if not overrides:
        return config
    return replace(config, **overrides)  # type: ignore[arg-type]


def update_setting(db: Session, *, name: str, value: object) -> ProtectionSetting:
    """Upsert one override. Raises ``KeyError`` for unknown names and ``ValueError``
    for values that do not match the setting's type."""
    checked = _validate(name, value)
    setting_type = SETTING_TYPES[name]

    row = db.execute(
        select(ProtectionSetting).where(ProtectionSetting.setting_name == name)
    ).scalar_one_or_none()
    if row is None:
        row = ProtectionSetting(setting_name=name)
        db.add(row)
    row.setting_type = setting_type.value
    row.setting_value = _serialize_value(checked, setting_type)
    row.updated_at = utcnow()
    db.flush()
    return row
