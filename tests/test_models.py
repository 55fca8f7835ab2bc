from datetime import datetime, timezone

import pytest

from ticketune.models import (
    ArchiveDuration,
    Channel,
    ChannelType,
    CreateMessageParams,
    CreateThreadParams,
    EditChannelPermissionsParams,
    PermissionTarget,
    ThreadMember,
    ThreadMetadata,
    ThreadType,
)


def test_empty_message_params_serialise_to_empty_object():
    assert CreateMessageParams().to_dict() == {}


def test_message_params_include_set_fields_only():
    mentions = {"users": ["42"]}
    params = CreateMessageParams(content="hello", allowed_mentions=mentions)
    assert params.to_dict() == {"content": "hello", "allowed_mentions": mentions}


def test_message_params_flags_and_components():
    component = {"type": 17}
    params = CreateMessageParams(flags=1 << 15, components=[component], tts=True)
    body = params.to_dict()
    assert body["flags"] == 1 << 15
    assert body["components"] == [component]
    assert body["tts"] is True
    assert "content" not in body


def test_thread_params_always_send_name_and_invitable():
    assert CreateThreadParams(name="x").to_dict() == {"name": "x", "invitable": False}


def test_thread_params_with_type_and_duration():
    body = CreateThreadParams(
        name="t",
        type=ThreadType.PRIVATE,
        auto_archive_duration=ArchiveDuration.WEEK,
        rate_limit_per_user=5,
    ).to_dict()
    assert body["type"] == ThreadType.PRIVATE
    assert body["auto_archive_duration"] == ArchiveDuration.WEEK
    assert body["rate_limit_per_user"] == 5


def test_channel_from_dict_full():
    data = {
        "id": "1000",
        "type": 12,
        "guild_id": "2000",
        "name": "Password Help - someone",
        "parent_id": "3000",
        "thread_metadata": {
            "archived": False,
            "auto_archive_duration": 1440,
            "archive_timestamp": "2024-01-02T03:04:05.000000+00:00",
            "locked": True,
        },
    }
    channel = Channel.from_dict(data)
    assert channel.id == 1000
    assert channel.type is ChannelType.PRIVATE_THREAD
    assert channel.guild_id == 2000
    assert channel.parent_id == 3000
    assert channel.name == "Password Help - someone"
    assert channel.thread_metadata is not None
    assert channel.thread_metadata.locked is True
    assert channel.thread_metadata.auto_archive_duration is ArchiveDuration.DAY
    assert channel.thread_metadata.create_timestamp is None


def test_channel_without_metadata():
    channel = Channel.from_dict({"id": "5", "type": 0})
    assert channel.thread_metadata is None
    assert channel.parent_id == 0
    assert channel.type is ChannelType.GUILD_TEXT


def test_channel_mention_uses_id():
    channel = Channel.from_dict({"id": "123"})
    assert channel.mention() == "<#123>"


@pytest.mark.parametrize("bad", ["abc", "-1", "18446744073709551616", "1.5"])
def test_channel_rejects_invalid_snowflake(bad):
    with pytest.raises(ValueError):
        Channel.from_dict({"id": bad})


def test_channel_rejects_non_object():
    with pytest.raises(TypeError):
        Channel.from_dict(["not", "an", "object"])


def test_timestamp_with_z_and_short_fraction():
    meta = ThreadMetadata.from_dict({"create_timestamp": "2024-01-02T03:04:05.5Z"})
    assert meta.create_timestamp == datetime(2024, 1, 2, 3, 4, 5, 500000, tzinfo=timezone.utc)


def test_invalid_timestamp_raises():
    with pytest.raises(ValueError):
        ThreadMetadata.from_dict({"archive_timestamp": "yesterday"})


def test_unknown_archive_duration_kept_as_int():
    meta = ThreadMetadata.from_dict({"auto_archive_duration": 7})
    assert meta.auto_archive_duration == 7
    assert not isinstance(meta.auto_archive_duration, ArchiveDuration)


def test_thread_member_from_dict():
    member = ThreadMember.from_dict(
        {"id": "10", "user_id": "20", "join_timestamp": "2024-01-02T03:04:05+00:00"}
    )
    assert (member.id, member.user_id) == (10, 20)
    assert member.join_timestamp is not None
    assert member.join_timestamp.tzinfo is not None


def test_edit_permissions_params_send_bitfield_as_string():
    params = EditChannelPermissionsParams(type=PermissionTarget.MEMBER, allow=1024)
    assert params.to_dict() == {"allow": "1024", "type": PermissionTarget.MEMBER}


def test_edit_permissions_params_omit_zero_bitfields():
    body = EditChannelPermissionsParams(type=PermissionTarget.ROLE).to_dict()
    assert body == {"type": PermissionTarget.ROLE}