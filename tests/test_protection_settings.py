# pyright: reportMissingImports=false

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from accessguard.core.config import Settings
from accessguard.db.models import ProtectionSetting
from accessguard.services.protection_settings import (
    SETTING_TYPES,
    ProtectionConfig,
    SettingType,
    cast_setting_value,
    load_protection_config,
    update_setting,
)


def test_defaults_follow_settings(db: Session) -> None:
    base = Settings(protection_max_login_attempts=7, protection_admin_email="sec@example.com")
    config = load_protection_config(db, base=base)
    assert config.max_login_attempts == 7
    assert config.admin_email == "sec@example.com"
    assert config.lockout_duration == 900
    assert config.reset_time == 900
    assert config.enable_ip_denylist is True
    assert config.enable_ip_safelist is False
    assert config.show_remaining_attempts is True


def test_setting_types_are_derived_from_defaults() -> None:
    assert SETTING_TYPES["max_login_attempts"] is SettingType.INTEGER
    assert SETTING_TYPES["enable_ip_safelist"] is SettingType.BOOLEAN
    assert SETTING_TYPES["lockout_message"] is SettingType.STRING
    assert set(SETTING_TYPES) == set(ProtectionConfig().as_dict())


def test_update_setting_round_trips_typed_values(db: Session) -> None:
    _ = update_setting(db, name="max_login_attempts", value=3)
    _ = update_setting(db, name="enable_ip_safelist", value="true")
    _ = update_setting(db, name="lockout_message", value="Wait {seconds}s")
    db.commit()

    rows = {
        r.setting_name: (r.setting_value, r.setting_type)
        for r in db.execute(select(ProtectionSetting)).scalars().all()
    }
    assert rows["max_login_attempts"] == ("3", "integer")
    assert rows["enable_ip_safelist"] == ("1", "boolean")
    assert rows["lockout_message"] == ("Wait {seconds}s", "string")

    config = load_protection_config(db, base=Settings())
    assert config.max_login_attempts == 3
    assert config.enable_ip_safelist is True
    assert config.lockout_message == "Wait {seconds}s"


def test_update_setting_overwrites_existing_row(db: Session) -> None:
    _ = update_setting(db, name="reset_time", value=60)
    _ = update_setting(db, name="reset_time", value=120)
    db.commit()

    rows = list(db.execute(select(ProtectionSetting)).scalars().all())
    assert len(rows) == 1
    assert load_protection_config(db, base=Settings()).reset_time == 120


@pytest.mark.parametrize(
    ("name", "value", "exc"),
    [
        ("no_such_setting", 1, KeyError),
        ("max_login_attempts", 0, ValueError),
        ("max_login_attempts", "abc", ValueError),
        ("max_login_attempts", True, ValueError),
        ("enable_ip_denylist", "maybe", ValueError),
        ("lockout_message", 5, ValueError),
    ],
)
def test_update_setting_rejects_bad_values(
    db: Session, name: str, value: object, exc: type[Exception]
) -> None:
    with pytest.raises(exc):
        _ = update_setting(db, name=name, value=value)


def test_invalid_stored_rows_are_ignored(db: Session) -> None:
    for name, value in [
        ("max_login_attempts", "-4"),
        ("lockout_duration", "ten"),
        ("unknown_thing", "1"),
        ("reset_time", "30"),
    ]:
        db.add(ProtectionSetting(setting_name=name, setting_value=value, setting_type="integer"))
    db.commit()

    config = load_protection_config(db, base=Settings())
    assert config.max_login_attempts == 5
    assert config.lockout_duration == 900
    assert config.reset_time == 30


def test_cast_setting_value() -> None:
    assert cast_setting_value(" 12 ", SettingType.INTEGER) == 12
    assert cast_setting_value("1.5", SettingType.FLOAT) == 1.5
    assert cast_setting_value("off", SettingType.BOOLEAN) is False
    assert cast_setting_value("YES", SettingType.BOOLEAN) is True
    assert cast_setting_value(" raw ", SettingType.STRING) == " raw "
    with pytest.raises(ValueError):
        _ = cast_setting_value("perhaps", SettingType.BOOLEAN)
