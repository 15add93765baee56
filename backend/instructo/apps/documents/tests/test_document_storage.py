from __future__ import annotations

import io
from types import SimpleNamespace

import pytest

from instructo.apps.documents.storage import DocumentStorage
from instructo.errors import FileTooLarge, ValidationError
from instructo.utils.identifiers import unique_filename


def _upload(name, content):
    return SimpleNamespace(filename=name, file=io.BytesIO(content), content_type=None)


def test_unique_filename_is_sanitised():
    name = unique_filename("../../Final Report (v2).PDF")

    assert name.startswith("Final_Report_v2_")
    assert name.endswith(".pdf")
    assert "/" not in name
    assert unique_filename(None).startswith("file_")


def test_save_streams_into_folder(tmp_path):
    storage = DocumentStorage(tmp_path, max_bytes=64)

    stored = storage.save(_upload("notes.txt.pdf", b"abc"), folder="trainees/t1")

    assert stored.size_bytes == 3
    assert stored.original_name == "notes.txt.pdf"
    assert stored.path.startswith("trainees/t1/")
    assert storage.exists(stored.path)


def test_save_enforces_size_cap_and_cleans_up(tmp_path):
    storage = DocumentStorage(tmp_path, max_bytes=8)

    with pytest.raises(FileTooLarge) as excinfo:
        storage.save(_upload("big.pdf", b"0123456789"), folder="trainees/t1")

    assert excinfo.value.status_code == 413
    assert list((tmp_path / "trainees" / "t1").iterdir()) == []


def test_paths_cannot_escape_root(tmp_path):
    storage = DocumentStorage(tmp_path / "uploads")

    with pytest.raises(ValidationError):
        storage.resolve("../secrets.txt")
    with pytest.raises(ValidationError):
        storage.save(_upload("x.pdf", b"data"), folder="../../outside")

    # delete() never touches anything outside the root
    outside = tmp_path / "keep.pdf"
    outside.write_bytes(b"keep")
    storage.delete("../keep.pdf")
    assert outside.exists()


def test_allowed_extensions_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path))
    monkeypatch.setenv("ALLOWED_FILE_TYPES", "pdf, .PNG")
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "0")

    storage = DocumentStorage.from_env()

    assert storage.allowed_extensions == {"pdf", "png"}
    assert storage.max_bytes == 0
    with pytest.raises(ValidationError):
        storage.check_extension("sheet.xlsx")
