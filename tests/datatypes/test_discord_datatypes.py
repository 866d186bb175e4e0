import pytest

from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, Snowflake, UserID


class DummyObj:
    def __init__(self, id_val):
        self.id = id_val


def test_userid_from_int_and_str_and_equality_and_hash():
    u1 = UserID(12345)
    assert int(u1) == 12345
    assert str(u1) == "12345"
    assert repr(u1) == "UserID(12345)"

    u2 = UserID("12345")
    assert u1 == u2

    u3 = UserID.from_discord(DummyObj(67890))
    assert isinstance(u3, UserID)
    assert u3.to_int() == 67890

    # equality with raw types
    assert u1 == 12345
    assert u1 == " 12345 "

    # hashing and set membership
    assert len({u1, u2, u3}) == 2


def test_snowflake_accepts_other_snowflake():
    role = RoleID(GuildID(5))
    assert isinstance(role, RoleID)
    assert role == 5


def test_different_wrapper_types_do_not_compare_by_type():
    assert GuildID(1) == 1
    assert GuildID(1) != UserID(2)


@pytest.mark.parametrize("bad", [[], None, True, -1, "abc", 1.5])
def test_snowflake_rejects_invalid_values(bad):
    with pytest.raises(ValueError):
        UserID(bad)  # type: ignore[arg-type]


@pytest.mark.parametrize("cls", [GuildID, ChannelID, RoleID])
def test_id_wrappers_common_behaviour(cls):
    inst = cls(222)
    assert int(inst) == 222
    assert inst == cls("222")
    assert hash(inst) == hash(222)


def test_snowflakes_sort_by_value():
    assert sorted([UserID(3), UserID(1), UserID(2)]) == [1, 2, 3]
    assert isinstance(Snowflake(1), Snowflake)
