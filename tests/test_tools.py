import pytest

from addon_catalog import crud, models
from tools.reconcile_orphans import reconcile


@pytest.mark.asyncio
async def test_reconcile_lists_then_removes_placeholder_rows(session, store, actors, zip_bytes, capsys):
    author_id = actors["developer"].id
    orphan = await crud.insert_placeholder_package(session, {"name": "Interrupted", "author_id": author_id})
    complete = models.Package(name="Complete", author_id=author_id, file_path="/x.mcaddon", file_hash="f" * 64)
    session.add(complete)
    await session.commit()
    store.save_addon(orphan.id, "Interrupted", zip_bytes)

    assert await reconcile(session, store, apply=False) == 1
    assert "name=Interrupted" in capsys.readouterr().out
    assert await crud.get_package(session, orphan.id) is not None

    assert await reconcile(session, store, apply=True) == 1
    assert await crud.get_package(session, orphan.id) is None
    assert await crud.get_package(session, complete.id) is not None
    assert not store.addon_dir(orphan.id, "Interrupted").exists()

    assert await reconcile(session, store, apply=False) == 0
