from __future__ import annotations

import json

import pytest

from geocascade.kernel.observable import Observable
from geocascade.kernel.types import NONE
from geocascade.persistence import SelectionMemento, SelectionStateError, SelectionStateFile


class _Holders:
    def __init__(self, *values):
        self.fields = [Observable(value) for value in values]

    def persisted_fields(self):
        return self.fields


def test_capture_and_restore_keep_field_order():
    source = _Holders(1, 11, 111)
    memento = SelectionMemento.capture(source)

    target = _Holders(NONE, NONE, NONE)
    memento.restore_to(target)

    assert memento.fields == (1, 11, 111)
    assert [holder.get() for holder in target.fields] == [1, 11, 111]


def test_levels_below_an_empty_selection_are_dropped():
    memento = SelectionMemento.from_fields([1, NONE, 111])

    assert memento == SelectionMemento(1, NONE, NONE)
    assert SelectionMemento.from_fields([NONE, 5, 6]).fields == (NONE, NONE, NONE)


@pytest.mark.parametrize("values", [[1, 2], [1, 2, 3, 4], [True, 2, 3], [1.5, 2, 3], [None, 2, 3]])
def test_invalid_fields_are_rejected(values):
    with pytest.raises(SelectionStateError):
        SelectionMemento.from_fields(values)


def test_restore_rejects_wrong_holder_count():
    with pytest.raises(SelectionStateError):
        SelectionMemento(1, 2, 3).restore_to(_Holders(1, 2))


def test_state_file_save_and_load(tmp_path):
    store = SelectionStateFile(tmp_path / "ctx" / "selection.json")

    assert store.load() is None
    path = store.save(SelectionMemento("US", "US-TX", NONE))

    assert json.loads(path.read_text(encoding="utf-8")) == {"version": 1, "fields": ["US", "US-TX", -1]}
    assert store.load() == SelectionMemento("US", "US-TX", NONE)
    assert not (tmp_path / "ctx" / "selection.json.tmp").exists()


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps([1, 2, 3]),
        json.dumps({"version": 1}),
        json.dumps({"version": 2, "fields": [1, 2, 3]}),
        json.dumps({"version": 1, "fields": [1, {"id": 2}, 3]}),
    ],
)
def test_state_file_rejects_bad_content(tmp_path, content):
    path = tmp_path / "selection.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(SelectionStateError):
        SelectionStateFile(path).load()
