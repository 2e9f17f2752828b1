from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

import numpy as np

from spca_jax import io
from spca_jax.errors import SchemaError


def _write(tmp: Path, name: str, text: str) -> Path:
    path = tmp / name
    path.write_text(text)
    return path


class TestPairing(unittest.TestCase):
    def test_duplicate_header_mangling(self) -> None:
        self.assertEqual(io.pair_locus_name("locus_1", "locus_1.1"), "locus_1")

    def test_suffix_pairs(self) -> None:
        self.assertEqual(io.pair_locus_name("Ma12_a", "Ma12_b"), "Ma12")
        self.assertEqual(io.pair_locus_name("Ma12.1", "Ma12.2"), "Ma12")
        self.assertEqual(io.pair_locus_name("Ma12-1", "Ma12-2"), "Ma12")
        self.assertEqual(io.pair_locus_name("Ma12a", "Ma12b"), "Ma12")

    def test_unpaired_columns(self) -> None:
        self.assertIsNone(io.pair_locus_name("locus_1", "locus_2.1"))
        self.assertIsNone(io.pair_locus_name("A_a", "B_b"))

    def test_locus_names_odd_count(self) -> None:
        with self.assertRaises(SchemaError):
            io.locus_names_from_columns(["L1", "L1.1", "L2"])

    def test_locus_names_bad_pair(self) -> None:
        with self.assertRaises(SchemaError):
            io.locus_names_from_columns(["L1", "L2", "L1.1", "L2.1"])

    def test_locus_names_duplicates(self) -> None:
        with self.assertRaises(SchemaError):
            io.locus_names_from_columns(["L1_a", "L1_b", "L1_1", "L1_2"])


class TestReadGenotypes(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_read_and_missing_codes(self) -> None:
        path = _write(
            self.tmp,
            "geno.csv",
            "ID,L1,L1.1,L2,L2.1\n"
            "S1,01,02,120,124\n"
            "S2,00,00,-999,124\n"
            "S3,02,02,000,\n",
        )
        g = io.read_genotype_table(path)
        self.assertEqual(g.sample_ids, ["S1", "S2", "S3"])
        self.assertEqual(g.loci, ["L1", "L2"])
        self.assertEqual(g.n_ind, 3)
        self.assertEqual(g.n_loci, 2)
        # Leading zeros survive: codes are read as strings.
        self.assertEqual(g.allele1[0, 0], "01")
        self.assertIsNone(g.allele1[1, 0])
        self.assertIsNone(g.allele2[1, 0])
        self.assertIsNone(g.allele1[1, 1])
        self.assertEqual(g.allele2[1, 1], "124")
        self.assertIsNone(g.allele1[2, 1])
        self.assertIsNone(g.allele2[2, 1])

    def test_ill_paired_columns(self) -> None:
        path = _write(self.tmp, "geno.csv", "ID,L1,L2,L1.1,L2.1\nS1,1,1,2,2\n")
        with self.assertRaises(SchemaError):
            io.read_genotype_table(path)

    def test_duplicate_sample_ids(self) -> None:
        path = _write(self.tmp, "geno.csv", "ID,L1,L1.1\nS1,1,2\nS1,1,1\n")
        with self.assertRaises(SchemaError):
            io.read_genotype_table(path)

    def test_too_few_columns(self) -> None:
        path = _write(self.tmp, "geno.csv", "ID,L1\nS1,1\n")
        with self.assertRaises(SchemaError):
            io.read_genotype_table(path)

    def test_write_then_read(self) -> None:
        g = io.GenotypeTable(
            sample_ids=["a", "b"],
            loci=["X", "Y"],
            allele1=np.array([["1", None], ["2", "7"]], dtype=object),
            allele2=np.array([["1", None], ["3", "8"]], dtype=object),
        )
        path = self.tmp / "out" / "g.csv"
        io.write_genotype_table(g, path)
        back = io.read_genotype_table(path)
        self.assertEqual(back.loci, ["X", "Y"])
        self.assertEqual(back.allele1[1, 0], "2")
        self.assertIsNone(back.allele1[0, 1])


class TestReadStrata(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_aliases_and_blanks(self) -> None:
        path = _write(
            self.tmp,
            "strata.csv",
            "Sample,Latitude,Longitude,Region,Site\n"
            "S1,45.1,-10.5,north,a\n"
            "S2, ,3.0,  ,b\n"
            "S3,44.0,abc,south,\n",
        )
        df = io.read_strata_table(path)
        self.assertEqual(list(df.columns), ["sample_id", "lat", "lon", "Region", "Site"])
        self.assertAlmostEqual(df.loc[0, "lon"], -10.5)
        self.assertTrue(np.isnan(df.loc[1, "lat"]))
        self.assertTrue(df["Region"].isna().iloc[1])
        self.assertTrue(np.isnan(df.loc[2, "lon"]))
        self.assertTrue(df["Site"].isna().iloc[2])

    def test_missing_latitude_column(self) -> None:
        path = _write(self.tmp, "strata.csv", "id,lon,pop\nS1,1.0,A\n")
        with self.assertRaises(SchemaError):
            io.read_strata_table(path)

    def test_missing_sample_column(self) -> None:
        path = _write(self.tmp, "strata.csv", "name,lat,lon,pop\nS1,1.0,2.0,A\n")
        with self.assertRaises(SchemaError):
            io.read_strata_table(path)

    def test_no_grouping_column(self) -> None:
        path = _write(self.tmp, "strata.csv", "id,lat,lon\nS1,1.0,2.0\n")
        with self.assertRaises(SchemaError):
            io.read_strata_table(path)


class TestSessionStore(unittest.TestCase):
    def test_write_and_read_store_roundtrip(self) -> None:
        session = io.SessionState(
            sample_ids=["S1", "S2", "S3"],
            groups=np.array(["A", "A", "B"]),
            lat=np.array([1.0, 2.0, 3.0]),
            lon=np.array([-1.0, 0.0, 1.0]),
            loci=["L1", "L2"],
            genotypes=np.array([["1/2", ""], ["2/2", "3/3"], ["1/1", "3/4"]]),
            monomorphic=["L9"],
            allele_labels=["L1.1", "L1.2", "L2.3", "L2.4"],
            freq=np.array([[0.5, 0.5, 0.5, 0.5], [0.0, 1.0, 1.0, 0.0], [1.0, 0.0, 0.5, 0.5]]),
            eigenvalues=np.array([0.5, 0.1, -0.2, -0.3]),
            axis_index=np.array([0, 3]),
            variance=np.array([0.8, 0.6]),
            moran=np.array([0.625, -0.5]),
            scores=np.arange(6, dtype=float).reshape(3, 2),
            lag_scores=np.ones((3, 2)),
            loadings=np.eye(4)[:, :2],
            weights=np.full((3, 3), 0.5) - 0.5 * np.eye(3),
            adjacency=~np.eye(3, dtype=bool),
            tests={
                "global": {"observed": 0.3, "pvalue": 0.01, "alter": "greater", "sim": np.zeros(9)},
            },
            counts={"n_joined": 4, "n_dropped_group": 1, "n_dropped_coords": 0, "n_retained": 3},
            params={"scheme": "pop", "nperm": 9},
        )
        with tempfile.TemporaryDirectory() as tmp:
            store = Path(tmp) / "run.session.zarr"
            io.write_session_store(session, store)
            back = io.read_session_store(store)

        self.assertEqual(back.sample_ids, session.sample_ids)
        self.assertEqual(back.loci, session.loci)
        self.assertEqual(back.monomorphic, ["L9"])
        np.testing.assert_array_equal(back.groups, session.groups)
        np.testing.assert_array_equal(back.genotypes, session.genotypes)
        np.testing.assert_allclose(back.eigenvalues, session.eigenvalues)
        np.testing.assert_allclose(back.scores, session.scores)
        np.testing.assert_allclose(back.weights, session.weights)
        self.assertAlmostEqual(back.tests["global"]["pvalue"], 0.01)
        self.assertEqual(back.tests["global"]["sim"].shape, (9,))
        self.assertEqual(back.params["scheme"], "pop")
        np.testing.assert_allclose(back.freq, session.freq)
        np.testing.assert_array_equal(back.axis_index, [0, 3])
        self.assertEqual(back.axis_index.dtype, np.int64)
        np.testing.assert_allclose(back.variance, session.variance)
        np.testing.assert_allclose(back.moran, session.moran)
        np.testing.assert_array_equal(back.adjacency, session.adjacency)
        self.assertEqual(back.adjacency.dtype, bool)
        self.assertEqual(back.counts, session.counts)


if __name__ == "__main__":
    unittest.main()
