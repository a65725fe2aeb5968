# tests/Storage/test_directory_store.py
# Description: Tests for the directory mirror: file layout, corrupt entry handling and the existing-data check.
#
# Imports
import json
#
# Third-party imports
import pytest
#
# Local imports
from aitools_Storage_API.app.core.Storage.Directory_Store import (
    DirectoryStore,
    directory_has_data,
    photo_folder_parts,
    record_paths,
)
from aitools_Storage_API.app.core.Storage.exceptions import DirectoryStoreError, InputError
from aitools_Storage_API.app.core.Storage.models import EntityKind, SiteSettings
from aitools_Storage_API.tests.test_utils import (
    make_dataset,
    make_event,
    make_note,
    make_note_recording,
    make_photo,
    make_recording,
    make_template,
)
#
########################################################################################################################
#
# Functions


@pytest.fixture
def store(sync_dir):
    return DirectoryStore(sync_dir)


class TestLayout:
    def test_record_paths(self):
        assert record_paths(EntityKind.NOTES, make_note("n1")) == ("notes/n1.json", None)
        assert record_paths(EntityKind.RECORDINGS, make_recording("r1")) == ("recordings/r1.json", "recordings/r1.webm")
        assert record_paths(EntityKind.NOTE_RECORDINGS, make_note_recording("nr1")) == (
            "note_recordings/nr1.json", "note_recordings/nr1.webm")
        assert record_paths(EntityKind.TEMPLATES, make_template()) == ("templates.json", None)
        assert record_paths(EntityKind.CALENDAR_EVENTS, make_event()) == ("calendar_events.json", None)

    def test_photo_paths_follow_folder_and_mime(self):
        assert record_paths(EntityKind.PHOTOS, make_photo("p1", folder="Receipts", mime="image/jpeg")) == (
            "photos/Receipts/p1.json", "photos/Receipts/p1.jpeg")
        assert record_paths(EntityKind.PHOTOS, make_photo("p2", folder="notes/scans/n1", mime="image/png")) == (
            "photos/notes/scans/n1/p2.json", "photos/notes/scans/n1/p2.png")

    @pytest.mark.parametrize("folder, expected", [
        ("", ["General"]),
        (None, ["General"]),
        ("../../etc", ["etc"]),
        ("a\\b", ["a", "b"]),
        ("/x//y/", ["x", "y"]),
    ])
    def test_photo_folder_parts_stay_inside_root(self, folder, expected):
        assert photo_folder_parts(folder) == expected

    def test_files_written_where_expected(self, store, sync_dir):
        store.save(EntityKind.RECORDINGS, make_recording("r1", audio=b"AUDIO"))
        store.save(EntityKind.PHOTOS, make_photo("p1", folder="Receipts", image=b"IMG"))
        assert (sync_dir / "recordings" / "r1.webm").read_bytes() == b"AUDIO"
        meta = json.loads((sync_dir / "recordings" / "r1.json").read_text(encoding="utf-8"))
        assert meta["id"] == "r1"
        assert "audioBlob" not in meta
        assert (sync_dir / "photos" / "Receipts" / "p1.jpeg").read_bytes() == b"IMG"
        assert not list(sync_dir.rglob("*.tmp"))


class TestLoadAndSave:
    def test_save_all_then_load_dataset(self, store, sample_dataset):
        store.save_all(sample_dataset)
        loaded, errors = store.load_dataset()
        assert errors == []
        assert loaded == sample_dataset

    def test_collection_upsert_and_delete(self, store):
        store.save(EntityKind.TEMPLATES, make_template("t1"))
        store.save(EntityKind.TEMPLATES, make_template("t2"))
        changed = make_template("t1")
        changed.name = "Renamed"
        store.save(EntityKind.TEMPLATES, changed)
        records = store.load_templates().records
        assert [t.id for t in records] == ["t1", "t2"]
        assert records[0].name == "Renamed"
        assert store.delete(EntityKind.TEMPLATES, "t1") is True
        assert store.delete(EntityKind.TEMPLATES, "t1") is False
        assert [t.id for t in store.load_templates().records] == ["t2"]

    def test_delete_removes_binary(self, store, sync_dir):
        store.save(EntityKind.NOTE_RECORDINGS, make_note_recording("nr1"))
        assert store.delete(EntityKind.NOTE_RECORDINGS, "nr1") is True
        assert not (sync_dir / "note_recordings" / "nr1.webm").exists()
        assert store.delete(EntityKind.NOTE_RECORDINGS, "nr1") is False

    def test_photo_move_removes_old_copy(self, store, sync_dir):
        store.save(EntityKind.PHOTOS, make_photo("p1", folder="Inbox", mime="image/jpeg"))
        store.save(EntityKind.PHOTOS, make_photo("p1", folder="Archive", mime="image/png"))
        assert not (sync_dir / "photos" / "Inbox" / "p1.json").exists()
        assert not (sync_dir / "photos" / "Inbox" / "p1.jpeg").exists()
        photos = store.load_photos().records
        assert len(photos) == 1
        assert photos[0].folder == "Archive"
        assert store.delete(EntityKind.PHOTOS, "p1") is True
        assert store.load_photos().records == []

    def test_photos_in_dot_folders_are_loaded(self, store, sync_dir):
        photo = make_photo("p1", folder=".private/...")
        store.save(EntityKind.PHOTOS, photo)
        (sync_dir / "photos" / ".private" / ".p2.json.x.tmp").write_text("{}", encoding="utf-8")
        assert store.load_photos().records == [photo]

    def test_wrong_record_type(self, store):
        with pytest.raises(InputError):
            store.save(EntityKind.RECORDINGS, make_note())

    def test_settings(self, store):
        assert store.load_settings() is None
        store.save_settings(SiteSettings(company_name="Folder Co"))
        assert store.load_settings().company_name == "Folder Co"

    def test_missing_root(self, tmp_path):
        with pytest.raises(DirectoryStoreError, match="does not exist"):
            DirectoryStore(tmp_path / "nope")


class TestCorruptEntries:
    def test_metadata_without_binary_is_skipped(self, store, sync_dir):
        store.save(EntityKind.RECORDINGS, make_recording("good"))
        (sync_dir / "recordings" / "half.json").write_text(json.dumps({"id": "half", "name": "x"}), encoding="utf-8")
        result = store.load_recordings()
        assert [r.id for r in result.records] == ["good"]
        assert any("half" in e for e in result.errors)

    def test_unparsable_metadata_is_skipped(self, store, sync_dir):
        store.save(EntityKind.NOTES, make_note("ok"))
        (sync_dir / "notes" / "broken.json").write_text("{ nope", encoding="utf-8")
        result = store.load_notes()
        assert [n.id for n in result.records] == ["ok"]
        assert len(result.errors) == 1

    def test_bad_collection_file(self, store, sync_dir):
        (sync_dir / "log_entries.json").write_text('{"not": "a list"}', encoding="utf-8")
        result = store.load_log_entries()
        assert result.records == []
        assert result.errors

    def test_collection_skips_bad_items(self, store, sync_dir):
        (sync_dir / "calendar_events.json").write_text(
            json.dumps([{"id": "e1", "title": "ok"}, "garbage", {"title": "no id"}]), encoding="utf-8")
        result = store.load_calendar_events()
        assert [e.id for e in result.records] == ["e1"]
        assert len(result.errors) == 2

    def test_hidden_and_temp_files_are_ignored(self, store, sync_dir):
        store.save(EntityKind.NOTES, make_note("n1"))
        (sync_dir / "notes" / ".n2.json.abc.tmp").write_text("{}", encoding="utf-8")
        assert [n.id for n in store.load_notes().records] == ["n1"]

    def test_photo_folder_comes_from_location(self, store, sync_dir):
        target = sync_dir / "photos" / "Moved"
        target.mkdir(parents=True)
        (target / "p9.json").write_text(json.dumps({"id": "p9", "folder": "Elsewhere",
                                                    "imageMimeType": "image/webp"}), encoding="utf-8")
        (target / "p9.webp").write_bytes(b"WEBP")
        photo = store.load_photos().records[0]
        assert photo.folder == "Moved"
        assert photo.image_blob == b"WEBP"

    def test_metadata_with_unusable_id_is_skipped(self, store, sync_dir):
        store.save(EntityKind.RECORDINGS, make_recording("good"))
        (sync_dir / "recordings" / "bad.json").write_text(json.dumps({"id": "x/y"}), encoding="utf-8")
        (sync_dir / "recordings" / "dots.json").write_text(json.dumps({"id": ".."}), encoding="utf-8")
        result = store.load_recordings()
        assert [r.id for r in result.records] == ["good"]
        assert len(result.errors) == 2


class TestRecordIds:
    @pytest.mark.parametrize("record_id", ["../../escaped", "a/b", "a\\b", "..", "."])
    def test_unusable_ids_are_rejected(self, store, tmp_path, record_id):
        with pytest.raises(InputError, match="Invalid record id"):
            store.save(EntityKind.NOTES, make_note(record_id))
        with pytest.raises(InputError):
            store.delete(EntityKind.RECORDINGS, record_id)
        assert not (tmp_path / "escaped.json").exists()
        assert not list((tmp_path).glob("*.json"))

    def test_collection_kinds_reject_unusable_ids(self, store, sync_dir):
        with pytest.raises(InputError):
            store.save(EntityKind.TEMPLATES, make_template("../t"))
        assert not (sync_dir / "templates.json").exists()

    def test_photo_folder_is_normalized_once(self, store):
        photo = make_photo("p1", folder="Trips/")
        assert photo.folder == "Trips"
        store.save(EntityKind.PHOTOS, photo)
        assert store.load_photos().records == [photo]


class TestFileBrowser:
    def test_list_contents_folders_first(self, store, sync_dir):
        store.save_all(make_dataset())
        (sync_dir / "zeta.txt").write_text("z", encoding="utf-8")
        (sync_dir / "Alpha").mkdir()
        entries = store.list_contents("")
        directories = [e.name for e in entries if e.is_directory]
        files = [e.name for e in entries if not e.is_directory]
        assert [e.name for e in entries] == directories + files
        assert directories == ["Alpha", "note_recordings", "notes", "photos", "recordings"]
        assert files == sorted(files, key=str.casefold)
        zeta = next(e for e in entries if e.name == "zeta.txt")
        assert zeta.size == 1
        assert zeta.last_modified is not None

    def test_list_nested_and_missing(self, store, sync_dir):
        store.save(EntityKind.PHOTOS, make_photo("p1", folder="notes/scans/n1", mime="image/png"))
        assert [e.name for e in store.list_contents("photos/notes/scans/n1")] == ["p1.json", "p1.png"]
        assert store.list_contents("photos/nowhere") == []

    def test_read_file(self, store):
        store.save(EntityKind.RECORDINGS, make_recording("r1", audio=b"AUDIO"))
        meta = store.read_file("recordings/r1.json")
        assert isinstance(meta, str)
        assert json.loads(meta)["id"] == "r1"
        assert store.read_file("recordings/r1.webm") == b"AUDIO"

    def test_read_file_errors(self, store):
        with pytest.raises(InputError, match="Invalid file path"):
            store.read_file("")
        with pytest.raises(DirectoryStoreError, match="File not found"):
            store.read_file("notes/missing.json")

    def test_paths_cannot_leave_the_root(self, store):
        with pytest.raises(InputError):
            store.list_contents("../")
        with pytest.raises(InputError):
            store.read_file("notes/../../secret.txt")
        with pytest.raises(InputError):
            store.delete_item(["..", "outside"], "x.txt")

    def test_rename_item(self, store, sync_dir):
        (sync_dir / "Inbox").mkdir()
        (sync_dir / "Inbox" / "a.txt").write_text("a", encoding="utf-8")
        store.rename_item("Inbox", "a.txt", "b.txt")
        assert (sync_dir / "Inbox" / "b.txt").read_text(encoding="utf-8") == "a"
        assert not (sync_dir / "Inbox" / "a.txt").exists()
        store.rename_item(["Inbox"], "b.txt", "b.txt")
        assert (sync_dir / "Inbox" / "b.txt").exists()

    @pytest.mark.parametrize("new_name", ["", "a/b", ".", ".."])
    def test_rename_rejects_bad_names(self, store, sync_dir, new_name):
        (sync_dir / "a.txt").write_text("a", encoding="utf-8")
        with pytest.raises(InputError, match="Invalid new name"):
            store.rename_item("", "a.txt", new_name)

    def test_rename_never_overwrites(self, store, sync_dir):
        (sync_dir / "a.txt").write_text("a", encoding="utf-8")
        (sync_dir / "b").mkdir()
        with pytest.raises(InputError, match='An item named "b" already exists'):
            store.rename_item("", "a.txt", "b")
        with pytest.raises(DirectoryStoreError):
            store.rename_item("", "missing.txt", "c.txt")

    def test_delete_item(self, store, sync_dir):
        store.save_all(make_dataset())
        assert store.delete_item("", "templates.json") is True
        assert store.delete_item("", "templates.json") is False
        with pytest.raises(DirectoryStoreError):
            store.delete_item("", "photos")
        assert store.delete_item("", "photos", recursive=True) is True
        assert not (sync_dir / "photos").exists()
        assert store.load_photos().records == []


class TestDirectoryHasData:
    def test_empty_directory(self, sync_dir):
        assert directory_has_data(sync_dir) is False

    def test_empty_files_and_dirs_do_not_count(self, sync_dir):
        (sync_dir / "settings.json").write_text("", encoding="utf-8")
        (sync_dir / "notes").mkdir()
        assert directory_has_data(sync_dir) is False

    def test_settings_file_counts(self, sync_dir):
        (sync_dir / "settings.json").write_text("{}", encoding="utf-8")
        assert directory_has_data(sync_dir) is True

    def test_populated_record_dir_counts(self, sync_dir):
        (sync_dir / "photos" / "General").mkdir(parents=True)
        assert directory_has_data(sync_dir) is True

    def test_after_seeding(self, store, sync_dir):
        store.save_all(make_dataset())
        assert store.has_data() is True

#
# End of test_directory_store.py
########################################################################################################################
