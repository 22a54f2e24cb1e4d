import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from droidfleet.core.errors import ProfileNotFoundError
from droidfleet.db.base import Base
from droidfleet.modules.profiles.manager import ProfileManager


@pytest.fixture()
def manager(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'profiles.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield ProfileManager(TestingSessionLocal)
    engine.dispose()


@pytest.mark.asyncio
async def test_create_get_and_list(manager):
    created = await manager.create_profile("main", "LDPlayer-1", port=5555, metadata={"accounts": {}})

    fetched = await manager.get_profile(created.id)
    assert fetched.name == "main"
    assert fetched.instance_name == "LDPlayer-1"
    assert fetched.port == 5555
    assert fetched.status == "inactive"
    assert fetched.metadata == {"accounts": {}}
    assert fetched.to_dict()["created_at"]

    await manager.create_profile("second", "LDPlayer-2")
    assert [p.name for p in await manager.list_profiles()] == ["main", "second"]


@pytest.mark.asyncio
async def test_missing_profile(manager):
    assert await manager.get_profile(404) is None
    with pytest.raises(ProfileNotFoundError):
        await manager.require_profile(404)
    with pytest.raises(ProfileNotFoundError):
        await manager.update_profile(404, {"status": "active"})


@pytest.mark.asyncio
async def test_update_replaces_or_merges_metadata(manager):
    profile = await manager.create_profile("p", "LDPlayer", metadata={"accounts": {"x": {}}, "note": "a"})

    merged = await manager.update_profile(
        profile.id, {"status": "running", "metadata": {"last_log": "ok"}}, merge_metadata=True
    )
    assert merged.status == "running"
    assert merged.metadata == {"accounts": {"x": {}}, "note": "a", "last_log": "ok"}

    replaced = await manager.update_profile(profile.id, {"port": 5557, "metadata": {"only": 1}})
    assert replaced.port == 5557
    assert replaced.metadata == {"only": 1}
    assert (await manager.get_profile(profile.id)).metadata == {"only": 1}


@pytest.mark.asyncio
async def test_snapshot_is_detached(manager):
    profile = await manager.create_profile("p", "LDPlayer", metadata={"accounts": {}})
    profile.metadata["accounts"]["x"] = {"username": "u"}
    assert (await manager.get_profile(profile.id)).metadata == {"accounts": {}}


@pytest.mark.asyncio
async def test_unknown_fields_are_ignored(manager):
    profile = await manager.create_profile("p", "LDPlayer")
    updated = await manager.update_profile(profile.id, {"id": 999, "created_at": None, "name": "renamed"})
    assert updated.id == profile.id
    assert updated.name == "renamed"
