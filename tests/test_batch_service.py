import asyncio
from collections import Counter

import pytest

from voiceingest.core.storage import LocalStorage
from voiceingest.ingest.errors import BatchStateError, EmptyBatch, PersistFailure, RejectReason
from voiceingest.ingest.models import BatchPhase, TransientHandle
from voiceingest.ingest.pickers import LocalFilePicker
from voiceingest.services.accumulator import SELECTION_ERROR

from tests.conftest import MIB, FakeEngine, FlakyStorage, Script, clip, make_service


@pytest.fixture()
def releases(monkeypatch):
    counts = Counter()
    real_release = TransientHandle.release

    def counting(self):
        released = real_release(self)
        if released:
            counts[self.path.name] += 1
        return released

    monkeypatch.setattr(TransientHandle, "release", counting)
    return counts


def _scenario_a():
    engine = FakeEngine({"intro.mp3": Script(signal=90.0), "corrupt.ogg": Script(signal=None, query=0.0)})
    descriptors = [clip("intro.mp3", 2 * MIB), clip("big.wav", 11 * MIB), clip("corrupt.ogg", 1 * MIB)]
    return engine, descriptors


def test_mixed_batch_keeps_only_the_valid_clip(settings):
    engine, descriptors = _scenario_a()
    service = make_service(settings, engine)

    state = asyncio.run(service.select_descriptors(descriptors))

    assert state.phase is BatchPhase.ready
    assert (state.processed, state.total, state.in_progress) == (3, 3, False)
    assert [(e.display_name, e.duration_s) for e in state.entries] == [("Intro", 90.0)]
    assert [(r.name, r.reason) for r in state.rejections] == [
        ("big.wav", RejectReason.too_large),
        ("corrupt.ogg", RejectReason.duration_unavailable),
    ]
    assert "big.wav" not in engine.loads


def test_too_long_clip_leaves_nothing_to_commit(settings):
    engine = FakeEngine({"long_call.wav": Script(signal=360.0)})
    service = make_service(settings, engine)

    async def run():
        state = await service.select_descriptors([clip("long_call.wav", 4 * MIB)])
        with pytest.raises(EmptyBatch):
            await service.commit()
        return state

    state = asyncio.run(run())

    assert state.processed == 1
    assert state.entries == []
    assert state.rejections[0].reason is RejectReason.too_long
    assert state.last_error == "Please select at least one valid audio file"
    assert state.phase is BatchPhase.ready


def test_fallback_duration_is_accepted(settings):
    engine = FakeEngine({"quiet.wav": Script(signal=None, query=45.0, query_delay_s=0.01)})
    service = make_service(settings, engine)

    state = asyncio.run(service.select_descriptors([clip("quiet.wav")]))

    assert [(e.display_name, e.duration_s) for e in state.entries] == [("Quiet", 45.0)]


def test_cancel_mid_probe_discards_the_batch(settings, staging_dir, releases):
    holder = {}

    def cancel_on_second(name):
        if name == "b.wav":
            holder["service"].cancel()

    engine = FakeEngine(
        {"a.wav": Script(signal=10.0), "b.wav": Script(signal=20.0), "c.wav": Script(signal=30.0)},
        memory=False,
        on_load=cancel_on_second,
    )
    storage = FlakyStorage(settings.storage_base_path)
    service = make_service(settings, engine, storage)
    holder["service"] = service

    async def run():
        state = await service.select_descriptors([clip("a.wav"), clip("b.wav"), clip("c.wav")])
        with pytest.raises(EmptyBatch):
            await service.commit()
        return state

    state = asyncio.run(run())

    assert state.phase is BatchPhase.idle
    assert state.entries == []
    assert engine.loads == ["a.wav", "b.wav"]
    assert storage.saves == 0
    assert sorted(releases) == sorted(p.name for p in engine.loaded_paths)
    assert set(releases.values()) == {1}
    assert list(staging_dir.iterdir()) == []


def test_rename_only_touches_the_matching_entry(settings):
    engine = FakeEngine({"a.mp3": Script(signal=5.0), "b.mp3": Script(signal=6.0)})
    service = make_service(settings, engine)
    state = asyncio.run(service.select_descriptors([clip("a.mp3"), clip("b.mp3")]))
    first, second = state.entries

    assert service.rename(first.id, "Narrator")
    assert not service.rename("missing", "Nobody")

    assert [e.display_name for e in service.state.entries] == ["Narrator", "B"]
    assert second.duration_s == 6.0


def test_remove_releases_the_transient_file(settings, staging_dir, releases):
    engine = FakeEngine({"a.m4a": Script(signal=5.0), "b.m4a": Script(signal=6.0)}, memory=False)
    service = make_service(settings, engine)
    state = asyncio.run(service.select_descriptors([clip("a.m4a"), clip("b.m4a")]))
    first = state.entries[0]
    first_path = first.handle.path

    assert service.remove(first.id)
    assert not service.remove(first.id)

    assert not first_path.exists()
    assert releases[first_path.name] == 1
    assert [e.display_name for e in service.state.entries] == ["B"]


def test_edits_require_a_ready_batch(settings):
    service = make_service(settings, FakeEngine())

    with pytest.raises(BatchStateError):
        service.rename("x", "y")
    with pytest.raises(BatchStateError):
        service.remove("x")


def test_cancel_is_idempotent(settings, staging_dir, releases):
    engine = FakeEngine({"a.wav": Script(signal=5.0)}, memory=False)
    service = make_service(settings, engine)
    asyncio.run(service.select_descriptors([clip("a.wav")]))

    service.cancel()
    service.cancel()

    assert service.state.phase is BatchPhase.idle
    assert service.state.entries == []
    assert list(releases.values()) == [1]
    assert list(staging_dir.iterdir()) == []


def test_every_transient_file_is_released_once(settings, staging_dir, releases):
    engine = FakeEngine(
        {
            "keep.wav": Script(signal=10.0),
            "long.wav": Script(signal=400.0),
            "corrupt.wav": Script(signal=None, query=0.0),
            "drop.wav": Script(signal=20.0),
            "broken.wav": Script(error=RuntimeError("boom")),
        },
        memory=False,
    )
    service = make_service(settings, engine)
    names = ["keep.wav", "long.wav", "corrupt.wav", "drop.wav", "broken.wav", "huge.wav"]
    descriptors = [clip(name, 11 * MIB if name == "huge.wav" else MIB) for name in names]

    async def run():
        state = await service.select_descriptors(descriptors)
        assert state.processed == state.total == 6
        drop = next(e for e in state.entries if e.descriptor.name == "drop.wav")
        service.remove(drop.id)
        return await service.commit()

    records = asyncio.run(run())

    assert [r.display_name for r in records] == ["Keep"]
    assert len(engine.loaded_paths) == 5
    assert sorted(releases) == sorted(p.name for p in engine.loaded_paths)
    assert set(releases.values()) == {1}
    assert list(staging_dir.iterdir()) == []


def test_commit_hands_records_to_storage_and_resets(settings):
    engine = FakeEngine({"hello_world.mp3": Script(signal=12.0), "b.mp3": Script(signal=3.0)})
    storage = LocalStorage(settings.storage_base_path)
    service = make_service(settings, engine, storage)

    async def run():
        state = await service.select_descriptors([clip("hello_world.mp3"), clip("b.mp3")])
        service.rename(state.entries[1].id, "Second")
        return await service.commit()

    records = asyncio.run(run())

    assert [(r.display_name, r.duration_s, r.source_name) for r in records] == [
        ("Hello World", 12.0, "hello_world.mp3"),
        ("Second", 3.0, "b.mp3"),
    ]
    assert all(storage.exists(r.uri) for r in records)
    assert records[0].content == b"hello_world.mp3"
    assert service.state.phase is BatchPhase.idle
    assert service.state.entries == []


def test_persist_failure_keeps_the_batch_ready(settings, staging_dir):
    engine = FakeEngine({"a.wav": Script(signal=5.0), "b.wav": Script(signal=6.0)}, memory=False)
    storage = FlakyStorage(settings.storage_base_path, fail_on=2)
    service = make_service(settings, engine, storage)

    async def run():
        await service.select_descriptors([clip("a.wav"), clip("b.wav")])
        with pytest.raises(PersistFailure) as excinfo:
            await service.commit()
        return excinfo.value

    failure = asyncio.run(run())

    assert isinstance(failure.cause, OSError)
    assert service.state.phase is BatchPhase.ready
    assert len(service.state.entries) == 2
    assert service.state.last_error == "Error preparing files for upload. Please try again."
    assert list(storage.list()) == []
    assert all(e.handle.path.exists() for e in service.state.entries)

    storage.fail_on = None
    records = asyncio.run(service.commit())
    assert len(records) == 2
    assert list(staging_dir.iterdir()) == []


def test_new_selection_replaces_previous_entries(settings, staging_dir):
    engine = FakeEngine({"a.wav": Script(signal=5.0), "b.wav": Script(signal=6.0)}, memory=False)
    service = make_service(settings, engine)

    async def run():
        await service.select_descriptors([clip("a.wav")])
        return await service.select_descriptors([clip("b.wav")])

    state = asyncio.run(run())

    assert [e.display_name for e in state.entries] == ["B"]
    assert len(list(staging_dir.iterdir())) == 1


def test_empty_or_abandoned_selection_returns_to_idle(settings):
    service = make_service(settings, FakeEngine())

    state = asyncio.run(service.select_descriptors([]))

    assert state.phase is BatchPhase.idle
    assert state.total == 0


def test_picker_failure_is_reported(settings):
    class ExplodingPicker:
        async def pick(self):
            raise PermissionError("denied")

    service = make_service(settings, FakeEngine())

    state = asyncio.run(service.select(ExplodingPicker()))

    assert state.phase is BatchPhase.idle
    assert state.last_error == SELECTION_ERROR


def test_local_picker_skips_unsupported_files(settings, tmp_path):
    voice = tmp_path / "greeting.mp3"
    voice.write_bytes(b"greeting.mp3")
    notes = tmp_path / "notes.txt"
    notes.write_text("not audio")
    picker = LocalFilePicker([voice, notes, tmp_path / "missing.wav"], is_allowed=settings.is_allowed_name)
    service = make_service(settings, FakeEngine({"greeting.mp3": Script(signal=8.0)}))

    state = asyncio.run(service.select(picker))

    assert [e.display_name for e in state.entries] == ["Greeting"]
    assert picker.skipped == [notes, tmp_path / "missing.wav"]


def test_dispose_releases_and_closes(settings, staging_dir):
    engine = FakeEngine({"a.wav": Script(signal=5.0)}, memory=False)
    service = make_service(settings, engine)

    async def run():
        await service.select_descriptors([clip("a.wav")])
        await service.dispose()
        await service.dispose()

    asyncio.run(run())

    assert engine.closed
    assert list(staging_dir.iterdir()) == []
    with pytest.raises(BatchStateError):
        asyncio.run(service.select_descriptors([clip("a.wav")]))


def test_snapshot_is_detached_from_later_edits(settings):
    engine = FakeEngine({"a.mp3": Script(signal=5.0), "b.mp3": Script(signal=6.0)})
    service = make_service(settings, engine)
    state = asyncio.run(service.select_descriptors([clip("a.mp3"), clip("b.mp3")]))

    snapshot = service.snapshot()
    service.rename(state.entries[1].id, "Renamed")
    service.remove(state.entries[0].id)

    assert len(snapshot.entries) == 2
    assert [e.display_name for e in snapshot.entries] == ["A", "B"]
    assert len(service.state.entries) == 1
    assert snapshot.phase is BatchPhase.ready


def test_progress_advances_once_per_clip(settings):
    seen = []
    holder = {}
    engine = FakeEngine(
        {"a.mp3": Script(signal=5.0), "b.mp3": Script(signal=400.0), "c.mp3": Script(signal=6.0)},
        on_load=lambda name: seen.append(holder["service"].progress()),
    )
    service = make_service(settings, engine)
    holder["service"] = service

    asyncio.run(service.select_descriptors([clip("a.mp3"), clip("b.mp3"), clip("c.mp3")]))
    final = service.progress()

    assert [(p.processed, p.total, p.in_progress) for p in seen] == [(0, 3, True), (1, 3, True), (2, 3, True)]
    assert (final.processed, final.total, final.in_progress) == (3, 3, False)


def test_returned_state_survives_later_cancel(settings):
    engine = FakeEngine({"a.wav": Script(signal=5.0)}, memory=False)
    service = make_service(settings, engine)

    state = asyncio.run(service.select_descriptors([clip("a.wav")]))
    service.cancel()

    assert [e.display_name for e in state.entries] == ["A"]
    assert state.entries[0].handle is None
    assert service.state.entries == []
    assert service.state.phase is BatchPhase.idle
