import os
import tempfile
import textwrap
import unittest

import numpy as np

from simtlogreg.table import load_arff, make_separable, table_from_arrays


ARFF = textwrap.dedent("""\
    % toy training set
    @RELATION toy

    @ATTRIBUTE height NUMERIC
    @ATTRIBUTE 'body weight' REAL
    @ATTRIBUTE label {neg, pos}
    @attribute age integer

    @DATA
    1.0, 10.0, pos, 30
    2.0, 20.0, neg, 40
    % a comment inside the data block

    3.0, 30.0, pos, 50
    4.0, 40.0, neg, 60
    """)


class ArffTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, text: str) -> str:
        path = os.path.join(self.tmp.name, "data.arff")
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path


class TestLoadArff(ArffTestCase):
    def test_shapes_and_labels(self):
        table = load_arff(self.write(ARFF))
        self.assertEqual(table.num_instances, 4)
        self.assertEqual(table.num_features, 3)
        self.assertEqual([a.name for a in table.attrs], ["height", "body weight", "age"])
        self.assertEqual(table.class_values, ["neg", "pos"])
        self.assertEqual(table.labels.tolist(), [1, 0, 1, 0])

    def test_row_major_layout(self):
        table = load_arff(self.write(ARFF))
        # instance 2, feature 1 -> offset 2 * 3 + 1
        self.assertEqual(table.features[2 * 3 + 1], 30.0)
        self.assertEqual(table.features[3 * 3 + 2], 60.0)

    def test_transposed_layout_matches(self):
        table = load_arff(self.write(ARFF))
        n, f = table.num_instances, table.num_features
        for j in range(n):
            for i in range(f):
                self.assertEqual(table.features_t[i * n + j], table.features[j * f + i])

    def test_statistics(self):
        table = load_arff(self.write(ARFF))
        height = table.attrs[0]
        self.assertEqual((height.min, height.max), (1.0, 4.0))
        self.assertAlmostEqual(height.mean, 2.5)
        self.assertAlmostEqual(height.std, np.std([1.0, 2.0, 3.0, 4.0]))

    def test_transposed_optional(self):
        table = load_arff(self.write(ARFF), transposed=False)
        self.assertIsNone(table.features_t)
        with self.assertRaises(ValueError):
            table.matrix_t()
        table.build_transposed()
        np.testing.assert_array_equal(table.matrix_t(), table.matrix().T)

    def test_class_values_that_look_like_missing_markers(self):
        table = load_arff(self.write("@ATTRIBUTE a NUMERIC\n@ATTRIBUTE c {None, Some}\n@DATA\n1.0,Some\n2.0,None\n"))
        self.assertEqual(table.class_values, ["None", "Some"])
        self.assertEqual(table.labels.tolist(), [1, 0])

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_arff(os.path.join(self.tmp.name, "nope.arff"))


class TestArffErrors(ArffTestCase):
    def assertRejected(self, text: str):
        with self.assertRaises(ValueError):
            load_arff(self.write(text))

    def test_no_data_section(self):
        self.assertRejected("@RELATION r\n@ATTRIBUTE a NUMERIC\n@ATTRIBUTE c {0, 1}\n")

    def test_no_class_attribute(self):
        self.assertRejected("@RELATION r\n@ATTRIBUTE a NUMERIC\n@DATA\n1.0\n")

    def test_two_nominal_attributes(self):
        self.assertRejected("@ATTRIBUTE a {x, y}\n@ATTRIBUTE c {0, 1}\n@DATA\nx,0\n")

    def test_three_class_values(self):
        self.assertRejected("@ATTRIBUTE a NUMERIC\n@ATTRIBUTE c {0, 1, 2}\n@DATA\n1,0\n")

    def test_string_attribute(self):
        self.assertRejected("@ATTRIBUTE a STRING\n@ATTRIBUTE c {0, 1}\n@DATA\nx,0\n")

    def test_unknown_class_value(self):
        self.assertRejected("@ATTRIBUTE a NUMERIC\n@ATTRIBUTE c {0, 1}\n@DATA\n1,0\n2,7\n")

    def test_missing_value(self):
        self.assertRejected("@ATTRIBUTE a NUMERIC\n@ATTRIBUTE c {0, 1}\n@DATA\n?,0\n")

    def test_short_row(self):
        self.assertRejected("@ATTRIBUTE a NUMERIC\n@ATTRIBUTE b NUMERIC\n@ATTRIBUTE c {0, 1}\n@DATA\n1,0\n")

    def test_wide_rows(self):
        # one field more than declared on every row
        self.assertRejected("@ATTRIBUTE c {0, 1}\n@ATTRIBUTE a NUMERIC\n@ATTRIBUTE b NUMERIC\n@DATA\n1,0,5,1\n0,1,0,0\n")

    def test_ragged_rows(self):
        self.assertRejected("@ATTRIBUTE a NUMERIC\n@ATTRIBUTE c {0, 1}\n@DATA\n1,0\n2,1,7\n")


class TestInMemoryTables(unittest.TestCase):
    def test_from_arrays(self):
        X = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        table = table_from_arrays(X, np.array([0, 1, 1]))
        np.testing.assert_array_equal(table.matrix(), X)
        np.testing.assert_array_equal(table.matrix_t(), X.T)
        self.assertEqual(table.attrs[1].max, 6.0)

    def test_labels_must_be_binary(self):
        with self.assertRaises(ValueError):
            table_from_arrays(np.zeros((2, 1)), np.array([0, 2]))

    def test_make_separable(self):
        table = make_separable(100, seed=3, margin=0.5)
        X = table.matrix()
        self.assertEqual(X.shape, (100, 2))
        self.assertTrue(np.all(np.abs(X[:, 0] - X[:, 1]) >= 0.5))
        np.testing.assert_array_equal(table.labels, (X[:, 0] > X[:, 1]).astype(int))


if __name__ == "__main__":
    unittest.main()
