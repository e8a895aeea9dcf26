########################################################################################
##
##                                  TESTS FOR
##                            'utils/timeseries_data.py'
##
########################################################################################

# IMPORTS ==============================================================================

import logging
import unittest

import numpy as np
import pandas as pd
import pytest

from ctgrowth.errors import InvalidRecord
from ctgrowth.utils.timeseries_data import (
    Observation,
    SubjectSeries,
    build_subject_series,
    build_panel,
)


# HELPERS ==============================================================================

def _wide_table():
    """Three subjects on three occasions; subject 'c' has nothing usable."""
    return pd.DataFrame(
        {
            "oy0": [10.0, 11.0, np.nan],
            "oy1": [12.0, np.nan, np.nan],
            "oy2": [15.0, 14.0, 9.0],
            "age0": [0.0, 0.5, 1.0],
            "age1": [1.1, 1.4, 2.0],
            "age2": [2.3, 2.2, np.nan],
        },
        index=["a", "b", "c"],
    )


# TESTS ================================================================================

class TestSubjectSeries:

    def test_basic(self):
        s = SubjectSeries(time=[0.0, 1.0, 2.5], data=[1.0, 2.0, 3.0], subject_id=7)
        assert len(s) == 3
        assert s.length == 3
        assert s.subject_id == 7
        assert not s.is_empty
        assert s.duration == pytest.approx(2.5)
        np.testing.assert_array_equal(s.occasion, [0, 1, 2])

    def test_iter_yields_observations(self):
        s = SubjectSeries(time=[0.0, 1.0], data=[5.0, 6.0], occasion=[0, 3])
        obs = list(s)
        assert obs == [Observation(0.0, 5.0, 0), Observation(1.0, 6.0, 3)]
        assert s.observations == obs

    def test_arrays_are_read_only(self):
        s = SubjectSeries(time=[0.0, 1.0], data=[1.0, 2.0])
        with pytest.raises(ValueError):
            s.time[0] = 5.0
        with pytest.raises(ValueError):
            s.data[0] = 5.0

    def test_copies_input(self):
        t = np.array([0.0, 1.0])
        s = SubjectSeries(time=t, data=[1.0, 2.0])
        t[0] = -3.0
        assert s.time[0] == 0.0

    def test_empty_series(self):
        s = SubjectSeries(time=[], data=[])
        assert s.is_empty
        assert len(s) == 0
        assert s.duration == 0.0

    def test_length_mismatch_raises(self):
        with pytest.raises(InvalidRecord, match="same length"):
            SubjectSeries(time=[0.0, 1.0], data=[1.0])

    def test_non_increasing_time_raises(self):
        with pytest.raises(InvalidRecord, match="strictly increasing"):
            SubjectSeries(time=[0.0, 1.0, 1.0], data=[1.0, 2.0, 3.0])

    def test_negative_time_raises(self):
        with pytest.raises(InvalidRecord, match="non-negative"):
            SubjectSeries(time=[-1.0, 1.0], data=[1.0, 2.0])

    def test_nan_raises(self):
        with pytest.raises(InvalidRecord, match="finite"):
            SubjectSeries(time=[0.0, 1.0], data=[1.0, np.nan])

    def test_repr(self):
        r = repr(SubjectSeries(time=[0.0], data=[1.0], subject_id="s1"))
        assert "s1" in r
        assert "n=1" in r


class TestBuildSubjectSeries:

    def test_filters_missing_pairs(self):
        s = build_subject_series(
            [10.0, np.nan, 12.0, 13.0],
            [0.0, 1.0, np.nan, 3.0],
            subject_id="x",
        )
        np.testing.assert_array_equal(s.time, [0.0, 3.0])
        np.testing.assert_array_equal(s.data, [10.0, 13.0])
        np.testing.assert_array_equal(s.occasion, [0, 3])
        assert s.subject_id == "x"

    def test_none_is_missing(self):
        s = build_subject_series([1.0, None, 3.0], [0.0, 1.0, 2.0])
        np.testing.assert_array_equal(s.time, [0.0, 2.0])

    def test_extra_missing_marker(self):
        s = build_subject_series([1.0, -99.0, 3.0], [0.0, 1.0, 2.0], missing=[-99])
        np.testing.assert_array_equal(s.data, [1.0, 3.0])
        np.testing.assert_array_equal(s.occasion, [0, 2])

    def test_length_mismatch_raises(self):
        with pytest.raises(InvalidRecord, match="same length"):
            build_subject_series([1.0, 2.0, 3.0], [0.0, 1.0])

    def test_non_numeric_raises(self):
        with pytest.raises(InvalidRecord, match="non-numeric"):
            build_subject_series([1.0, "abc"], [0.0, 1.0])

    def test_decreasing_ages_raise(self):
        with pytest.raises(InvalidRecord, match="strictly increasing"):
            build_subject_series([1.0, 2.0], [2.0, 1.0], subject_id=4)

    def test_error_carries_subject_id(self):
        with pytest.raises(InvalidRecord) as info:
            build_subject_series([1.0, 2.0], [2.0, 1.0], subject_id=4)
        assert info.value.subject_id == 4
        assert "subject 4" in str(info.value)

    def test_all_missing_raises(self):
        with pytest.raises(InvalidRecord, match="no valid observations"):
            build_subject_series([np.nan, np.nan], [0.0, 1.0])

    def test_all_missing_allowed(self):
        s = build_subject_series([np.nan, np.nan], [0.0, 1.0], allow_empty=True)
        assert s.is_empty

    def test_single_observation(self):
        s = build_subject_series([4.0], [0.0])
        assert len(s) == 1
        assert s.time[0] == 0.0


class TestBuildPanel(unittest.TestCase):

    def test_one_series_per_usable_row(self):
        panel = build_panel(_wide_table())
        self.assertEqual([s.subject_id for s in panel], ["a", "b"])

        a, b = panel
        np.testing.assert_array_equal(a.time, [0.0, 1.1, 2.3])
        np.testing.assert_array_equal(a.data, [10.0, 12.0, 15.0])
        np.testing.assert_array_equal(b.time, [0.5, 2.2])
        np.testing.assert_array_equal(b.occasion, [0, 2])

    def test_empty_subject_dropped_with_warning(self):
        with self.assertLogs("ctgrowth.data", level=logging.WARNING) as cm:
            build_panel(_wide_table())
        self.assertTrue(any("dropped 1 subject" in m for m in cm.output))

    def test_keep_empty(self):
        panel = build_panel(_wide_table(), drop_empty=False)
        self.assertEqual(len(panel), 3)
        self.assertTrue(panel[2].is_empty)

    def test_n_occasions_limits_columns(self):
        panel = build_panel(_wide_table(), n_occasions=2, drop_empty=True)
        a = panel[0]
        np.testing.assert_array_equal(a.time, [0.0, 1.1])
        # subject 'b' only keeps occasion 0
        np.testing.assert_array_equal(panel[1].occasion, [0])

    def test_occasion_indices_follow_column_suffix(self):
        df = pd.DataFrame(
            {"oy3": [1.0], "oy7": [2.0], "age3": [0.0], "age7": [1.0]},
            index=[1],
        )
        (s,) = build_panel(df)
        np.testing.assert_array_equal(s.occasion, [3, 7])

    def test_custom_prefixes(self):
        df = pd.DataFrame({"y0": [1.0], "y1": [2.0], "t0": [0.0], "t1": [1.0]})
        (s,) = build_panel(df, value_prefix="y", age_prefix="t")
        np.testing.assert_array_equal(s.data, [1.0, 2.0])

    def test_unpaired_columns_raise(self):
        df = _wide_table().drop(columns=["age2"])
        with self.assertRaises(InvalidRecord):
            build_panel(df)

    def test_no_value_columns_raise(self):
        df = pd.DataFrame({"age0": [0.0]})
        with self.assertRaises(InvalidRecord):
            build_panel(df)

    def test_non_numeric_cell_raises(self):
        df = _wide_table().astype(object)
        df.loc["a", "oy1"] = "twelve"
        with self.assertRaises(InvalidRecord):
            build_panel(df)

    def test_bad_row_fails_whole_panel(self):
        df = _wide_table()
        df.loc["b", "age2"] = 0.1
        with self.assertRaises(InvalidRecord):
            build_panel(df)

    def test_requires_dataframe(self):
        with self.assertRaises(TypeError):
            build_panel({"oy0": [1.0], "age0": [0.0]})
