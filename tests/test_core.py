from __future__ import annotations

import unittest

import numpy as np
import pandas as pd

from spca_jax import genotypes, io, qc, sim, summary
from spca_jax.errors import DataQualityError, SchemaError


def _table(ids, a1, a2, loci=None) -> io.GenotypeTable:
    a1 = np.asarray(a1, dtype=object)
    a2 = np.asarray(a2, dtype=object)
    loci = loci or [f"L{j + 1}" for j in range(a1.shape[1])]
    return io.GenotypeTable(sample_ids=list(ids), loci=loci, allele1=a1, allele2=a2)


class TestFilter(unittest.TestCase):
    def setUp(self) -> None:
        # 5 genotyped samples; S5 is not in the strata, S3 has no group,
        # S4 has no longitude. L2 becomes monomorphic once S3 and S4 are gone.
        self.geno = _table(
            ["S2", "S1", "S3", "S4", "S5"],
            [["1", "7"], ["2", "7"], ["1", "8"], ["2", "9"], ["1", "7"]],
            [["2", "7"], ["2", "7"], ["1", "8"], ["2", "9"], ["1", "7"]],
        )
        self.strata = pd.DataFrame(
            {
                "sample_id": ["S1", "S2", "S3", "S4", "S6"],
                "lat": [1.0, 2.0, 3.0, 4.0, 5.0],
                "lon": [10.0, 20.0, 30.0, np.nan, 50.0],
                "pop": ["B", "A", None, "A", "A"],
            }
        )

    def test_join_and_drop_counts(self) -> None:
        fr = qc.filter_for_scheme(self.geno, self.strata, "pop")
        self.assertEqual(fr.n_joined, 4)
        self.assertEqual(fr.n_dropped_group, 1)
        self.assertEqual(fr.n_dropped_coords, 1)
        self.assertEqual(fr.n_dropped, 2)
        self.assertEqual(fr.n_retained, 2)

    def test_sorted_by_group_then_id(self) -> None:
        fr = qc.filter_for_scheme(self.geno, self.strata, "pop")
        self.assertEqual(fr.sample_ids, ["S2", "S1"])
        np.testing.assert_array_equal(fr.groups, ["A", "B"])
        np.testing.assert_allclose(fr.lat, [2.0, 1.0])
        np.testing.assert_allclose(fr.lon, [20.0, 10.0])

    def test_monomorphic_on_retained_samples(self) -> None:
        fr = qc.filter_for_scheme(self.geno, self.strata, "pop")
        self.assertEqual(fr.monomorphic, ["L2"])
        self.assertEqual(fr.polymorphic, ["L1"])
        self.assertEqual(fr.genotypes.loci, ["L1"])
        self.assertEqual(fr.genotypes.allele1.shape, (2, 1))

    def test_unknown_scheme(self) -> None:
        with self.assertRaises(SchemaError):
            qc.filter_for_scheme(self.geno, self.strata, "region")
        with self.assertRaises(SchemaError):
            qc.filter_for_scheme(self.geno, self.strata, "lat")

    def test_no_samples_left(self) -> None:
        strata = self.strata.assign(pop=None)
        with self.assertRaises(DataQualityError):
            qc.filter_for_scheme(self.geno, strata, "pop")

    def test_no_polymorphic_loci(self) -> None:
        geno = _table(["S1", "S2"], [["1"], ["1"]], [["1"], [None]])
        with self.assertRaises(DataQualityError):
            qc.filter_for_scheme(geno, self.strata, "pop")

    def test_all_missing_locus_is_monomorphic(self) -> None:
        geno = _table(
            ["S1", "S2"],
            [["1", None], ["2", None]],
            [["1", None], ["2", None]],
        )
        fr = qc.filter_for_scheme(geno, self.strata, "pop")
        self.assertEqual(fr.monomorphic, ["L2"])

    def test_half_typed_genotypes_do_not_count(self) -> None:
        # L2 only varies through genotypes with one allele missing
        geno = _table(
            ["S1", "S2"],
            [["1", "5"], ["2", None]],
            [["2", "5"], ["1", "6"]],
        )
        fr = qc.filter_for_scheme(geno, self.strata, "pop")
        self.assertEqual(fr.monomorphic, ["L2"])
        self.assertEqual(fr.polymorphic, ["L1"])
        np.testing.assert_array_equal(
            qc.distinct_allele_counts(geno.allele1, geno.allele2), [2, 1]
        )

    def test_all_half_typed_raises(self) -> None:
        geno = _table(["S1", "S2"], [["1"], [None]], [[None], ["2"]])
        with self.assertRaises(DataQualityError):
            qc.filter_for_scheme(geno, self.strata, "pop")

    def test_numeric_groups_sort_as_numbers(self) -> None:
        geno = _table(
            ["S1", "S2", "S3", "S4"],
            [["1"], ["2"], ["1"], ["2"]],
            [["1"], ["2"], ["2"], ["2"]],
        )
        strata = pd.DataFrame(
            {
                "sample_id": ["S1", "S2", "S3", "S4"],
                "lat": [1.0, 2.0, 3.0, 4.0],
                "lon": [1.0, 2.0, 3.0, 4.0],
                "site": ["10", "2", "1", "2"],
            }
        )
        fr = qc.filter_for_scheme(geno, strata, "site")
        self.assertEqual(fr.sample_ids, ["S3", "S2", "S4", "S1"])
        np.testing.assert_array_equal(fr.groups, ["1", "2", "2", "10"])
        table = summary.per_stratum_summary(fr)
        self.assertEqual(list(table["site"]), ["1", "2", "10"])
        self.assertEqual(list(table["n_samples"]), [1, 2, 1])


class TestSimulatedScenario(unittest.TestCase):
    """50 samples x 10 loci, all in stratum A, with locus_7 fixed for allele 1."""

    def setUp(self) -> None:
        data = sim.simulate_cline(n_ind=50, n_loci=10, seed=7, monomorphic=[6])
        self.fr = qc.filter_for_scheme(data.genotypes, data.strata, "all")

    def test_one_monomorphic_locus(self) -> None:
        self.assertEqual(self.fr.monomorphic, ["locus_7"])
        self.assertEqual(len(self.fr.polymorphic), 9)
        self.assertNotIn("locus_7", self.fr.genotypes.loci)
        self.assertEqual(self.fr.n_retained, 50)

    def test_summaries(self) -> None:
        composite = genotypes.combine_alleles(self.fr.genotypes)
        alleles = genotypes.allele_frequency_table(composite)

        strata = summary.per_stratum_summary(self.fr)
        self.assertEqual(list(strata["all"]), ["A"])
        self.assertEqual(int(strata.loc[0, "n_samples"]), 50)

        loci = summary.per_locus_summary(self.fr, alleles)
        self.assertEqual(list(loci["locus"]), self.fr.polymorphic)
        self.assertTrue((loci["n_alleles"] == 2).all())
        self.assertTrue((loci["missing_frac"] == 0.0).all())
        self.assertTrue(((loci["het_exp"] > 0.0) & (loci["het_exp"] <= 0.5)).all())

        samples = summary.per_sample_summary(self.fr)
        self.assertEqual(len(samples), 50)
        self.assertTrue((samples["n_typed"] == 9).all())

        mono = summary.monomorphic_table(self.fr)
        self.assertEqual(mono["locus"].tolist(), ["locus_7"])


class TestReshape(unittest.TestCase):
    def setUp(self) -> None:
        self.table = _table(
            ["a", "b", "c"],
            [["120", "1"], ["124", None], ["124", "2"]],
            [["124", "1"], ["124", None], ["128", "2"]],
            loci=["M1", "M2"],
        )

    def test_combine_alleles(self) -> None:
        comp = genotypes.combine_alleles(self.table)
        self.assertEqual(list(comp.columns), ["M1", "M2"])
        self.assertEqual(list(comp.index), ["a", "b", "c"])
        self.assertEqual(comp.loc["a", "M1"], "120/124")
        self.assertTrue(pd.isna(comp.loc["b", "M2"]))

    def test_custom_separator(self) -> None:
        comp = genotypes.combine_alleles(self.table, sep=":")
        self.assertEqual(comp.loc["c", "M1"], "124:128")
        a1, a2 = genotypes.split_genotypes(comp, sep=":")
        self.assertEqual(a1[2, 0], "124")
        self.assertEqual(a2[2, 0], "128")

    def test_split_rejects_bad_genotype(self) -> None:
        comp = pd.DataFrame({"M1": ["1/2/3"]}, dtype=object)
        with self.assertRaises(ValueError):
            genotypes.split_genotypes(comp)

    def test_allele_frequencies(self) -> None:
        comp = genotypes.combine_alleles(self.table)
        at = genotypes.allele_frequency_table(comp)
        self.assertEqual(at.labels, ["M1.120", "M1.124", "M1.128", "M2.1", "M2.2"])
        np.testing.assert_array_equal(at.locus_of_column, [0, 0, 0, 1, 1])
        np.testing.assert_allclose(at.freq[0, :3], [0.5, 0.5, 0.0])
        np.testing.assert_allclose(at.freq[1, :3], [0.0, 1.0, 0.0])
        # Untyped sample b at M2 takes the column means of a and c.
        np.testing.assert_allclose(at.freq[1, 3:], [0.5, 0.5])
        np.testing.assert_array_equal(at.typed[:, 1], [True, False, True])
        # Each locus block sums to 1 per sample.
        np.testing.assert_allclose(at.freq[:, :3].sum(axis=1), 1.0)
        np.testing.assert_allclose(at.freq[:, 3:].sum(axis=1), 1.0)

    def test_heterozygosity(self) -> None:
        het = genotypes.observed_heterozygosity(self.table)
        np.testing.assert_array_equal(het[:, 0], [1.0, 0.0, 1.0])
        self.assertTrue(np.isnan(het[1, 1]))

        at = genotypes.allele_frequency_table(genotypes.combine_alleles(self.table))
        he = genotypes.expected_heterozygosity(at)
        # M2: a is 1/1, c is 2/2 -> p = (0.5, 0.5).
        self.assertAlmostEqual(he[1], 0.5)


if __name__ == "__main__":
    unittest.main()
