"""
Name: Summary Grouping Tests

Responsibilities:
  - Groups are contiguous, non-overlapping and cover [0, total_chunks)
  - The last group may be shorter; degenerate inputs are handled
"""

import pytest

from enhancer.application.summary_grouping import groups_for

pytestmark = pytest.mark.unit


def test_groups_cover_all_indices_with_short_last_group():
    groups = groups_for(5, 2)

    assert [g.chunk_indices for g in groups] == [(0, 1), (2, 3), (4,)]
    assert [(g.start_index, g.end_index) for g in groups] == [(0, 1), (2, 3), (4, 4)]


@pytest.mark.parametrize("total,size", [(1, 1), (7, 3), (10, 10), (3, 8)])
def test_groups_are_contiguous_and_disjoint(total, size):
    groups = groups_for(total, size)

    flattened = [i for g in groups for i in g.chunk_indices]
    assert flattened == list(range(total))
    assert all(len(g.chunk_indices) <= size for g in groups)


def test_no_chunks_gives_no_groups():
    assert groups_for(0, 2) == []
    assert groups_for(-1, 2) == []


def test_group_size_below_one_is_clamped():
    groups = groups_for(3, 0)

    assert [g.chunk_indices for g in groups] == [(0,), (1,), (2,)]


def test_to_dict_is_json_friendly():
    assert groups_for(2, 2)[0].to_dict() == {
        "start_index": 0,
        "end_index": 1,
        "chunk_indices": [0, 1],
    }
