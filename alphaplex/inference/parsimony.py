"""Parsimonious accession inference for peptides shared between multiple accessions.

The peptide to accession relation is held as two adjacency mappings:

pep_to_prots : dict
    for each peptide (=key) a set of accessions (=value), e.g. {peptide: {accession, ...}, ...}
prot_to_peps : dict
    for each accession (=key) a set of peptides (=value), e.g. {accession: {peptide, ...}, ...}
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field

import pandas as pd

from alphaplex.constants.keys import PsmCols
from alphaplex.exceptions import InsufficientDataError
from alphaplex.identification.store import Filter, IdentificationStore
from alphaplex.workflow.base import ProcessingStep

logger = logging.getLogger()

PARSIMONY_FILTER = "parsimonious_accessions"


@dataclass
class ParsimonyResult:
    """Outcome of the accession inference.

    Attributes
    ----------
    assignment : dict[str, str]
        Accession assigned to each retained peptide.

    removed_peptides : set[str]
        Peptides discarded because they are shared (only in unique_only mode).

    n_iterations : int
        Number of reassignment rounds performed.

    converged : bool
        False if the iteration cap was reached and the fallback assignment is used.
    """

    assignment: dict[str, str]
    removed_peptides: set[str] = field(default_factory=set)
    n_iterations: int = 0
    converged: bool = True


def build_mappings(
    psm_df: pd.DataFrame,
    peptide_column: str = PsmCols.SEQUENCE,
    accession_column: str = PsmCols.ACCESSION,
) -> tuple[dict[str, set[str]], dict[str, set[str]]]:
    """Build the peptide to accession and accession to peptide mappings from a PSM table with one accession per row."""
    pep_to_prots = defaultdict(set)
    for peptide, accession in zip(
        psm_df[peptide_column], psm_df[accession_column], strict=True
    ):
        pep_to_prots[peptide].add(accession)
    pep_to_prots = dict(pep_to_prots)
    return pep_to_prots, _invert_mapping(pep_to_prots)


def _invert_mapping(mapping: dict[str, set[str]]) -> dict[str, set[str]]:
    """Converts a protein to peptide or peptide to protein mapping."""
    inverted = defaultdict(set)
    for key, values in mapping.items():
        for value in values:
            inverted[value].add(key)
    return dict(inverted)


def find_unique_accessions(pep_to_prots: dict[str, set[str]]) -> set[str]:
    """Accessions that are mapped to at least one unique peptide."""
    return {
        next(iter(accessions))
        for accessions in pep_to_prots.values()
        if len(accessions) == 1
    }


def find_sameset_accessions(prot_to_peps: dict[str, set[str]]) -> list[set[str]]:
    """Find accessions that are mapped to an identical set of peptides.

    These accessions can not be distinguished by the observed peptides.

    Returns
    -------
    list[set[str]]
        Groups of at least two accessions sharing equal peptide evidence.
    """
    equal_evidence = defaultdict(set)
    for accession, peptides in prot_to_peps.items():
        equal_evidence[tuple(sorted(peptides))].add(accession)
    return [group for group in equal_evidence.values() if len(group) > 1]


def _pick(candidates: list[str], counts: Counter, current: str | None = None) -> str:
    """Accession with the highest count, ties broken by ascending accession.

    The peptide's own contribution to its current accession is not counted.
    """

    def _score(accession: str) -> int:
        return counts[accession] - (accession == current)

    return min(candidates, key=lambda accession: (-_score(accession), accession))


def resolve_parsimonious_accessions(
    pep_to_prots: dict[str, set[str]],
    unique_only: bool = False,
    max_iterations: int = 100,
) -> ParsimonyResult:
    """Assign each peptide to exactly one accession.

    Procedure:
    1.  Count the peptides uniquely mapping to each accession.
    2.  Accessions with at least one unique peptide survive. Shared peptides are only assigned to surviving
        accessions; a peptide mapping exclusively to accessions without unique peptides keeps all of them as
        candidates.
    3.  Each shared peptide is assigned to the candidate with the most peptides assigned to it,
        ties are broken by ascending alphanumeric accession.
    4.  Counts are recomputed from the assignment and step 3 is repeated for all peptides at once, until no
        assignment changes.

    This greedy maximum coverage heuristic does not guarantee the globally minimal accession set.
    If no fixed point is reached within `max_iterations` rounds, the assignment of the first round, which is
    based on unique peptide counts alone, is returned.

    Parameters
    ----------
    pep_to_prots : dict[str, set[str]]
        For each peptide the set of accessions it maps to.

    unique_only : bool, default False
        Discard all shared peptides instead of assigning them.

    max_iterations : int, default 100
        Maximum number of reassignment rounds.

    Returns
    -------
    ParsimonyResult
        The assignment and convergence information.
    """
    unique = {
        peptide: next(iter(accessions))
        for peptide, accessions in pep_to_prots.items()
        if len(accessions) == 1
    }
    shared = sorted(p for p, accessions in pep_to_prots.items() if len(accessions) > 1)

    if unique_only:
        return ParsimonyResult(assignment=unique, removed_peptides=set(shared))

    survivors = set(unique.values())
    candidates = {
        peptide: sorted(pep_to_prots[peptide] & survivors)
        or sorted(pep_to_prots[peptide])
        for peptide in shared
    }

    unique_counts = Counter(unique.values())
    first = {peptide: _pick(candidates[peptide], unique_counts) for peptide in shared}

    current = first
    converged = not shared
    n_iterations = 1
    while not converged and n_iterations < max_iterations:
        counts = unique_counts + Counter(current.values())
        updated = {
            peptide: _pick(candidates[peptide], counts, current[peptide])
            for peptide in shared
        }
        n_iterations += 1
        if updated == current:
            converged = True
        current = updated

    if not converged:
        logger.warning(
            f"Accession inference did not converge within {max_iterations} iterations, "
            "using the assignment based on unique peptide counts"
        )
        current = first

    return ParsimonyResult(
        assignment={**unique, **current},
        n_iterations=n_iterations,
        converged=converged,
    )


class ParsimoniousSetResolver(ProcessingStep):
    def __init__(self, unique_only: bool = False, max_iterations: int = 100) -> None:
        """Reduce the active PSMs to one accession per peptide.

        Peptides are compared by their plain sequence, so modified forms of a peptide share their assignment.
        The inference is expressed as a filter keeping the (peptide, assigned accession) rows, the
        accession_group annotation lists the accessions indistinguishable from the assigned one.

        Parameters
        ----------
        unique_only : bool, default False
            Discard peptides matching more than one accession.

        max_iterations : int, default 100
            Maximum number of reassignment rounds.
        """
        super().__init__()
        self.unique_only = unique_only
        self.max_iterations = max_iterations
        self.result: ParsimonyResult | None = None

    def validate(self, store: IdentificationStore) -> bool:
        return PsmCols.SEQUENCE in store.records.columns

    def forward(self, store: IdentificationStore) -> IdentificationStore:
        active = store.active_rows()
        if len(active) == 0:
            raise InsufficientDataError("No active PSMs left for accession inference")

        pep_to_prots, prot_to_peps = build_mappings(active)
        result = resolve_parsimonious_accessions(
            pep_to_prots, self.unique_only, self.max_iterations
        )
        self.result = result

        # groups span the rows active before accession inference
        _, group_prot_to_peps = build_mappings(
            store.active_rows(exclude=[PARSIMONY_FILTER])
        )
        accession_group = {accession: accession for accession in group_prot_to_peps}
        for group in find_sameset_accessions(group_prot_to_peps):
            label = ";".join(sorted(group))
            for accession in group:
                accession_group[accession] = label
        store.annotate(
            PsmCols.ACCESSION_GROUP,
            store.records[PsmCols.ACCESSION].map(accession_group),
        )

        assignment = result.assignment
        store.apply_filter(
            Filter(
                PARSIMONY_FILTER,
                lambda records: records[PsmCols.SEQUENCE]
                .map(assignment)
                .eq(records[PsmCols.ACCESSION])
                .to_numpy(),
            )
        )

        n_retained = len(set(assignment.values()))
        logger.info(
            f"Inferred {n_retained:,} of {len(prot_to_peps):,} accessions "
            f"({len(prot_to_peps) - n_retained:,} redundant) in {result.n_iterations} iterations"
        )
        if result.removed_peptides:
            logger.info(
                f"Removed {len(result.removed_peptides):,} shared peptides in unique only mode"
            )
        return store
