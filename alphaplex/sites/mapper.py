"""Mapping of modification sites from peptide sequences onto reference protein coordinates."""

import logging
import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd

from alphaplex.constants.keys import NoMatchPolicy, PsmCols, SiteCols, SiteStatus
from alphaplex.exceptions import AmbiguousSiteWarning, NoMatchError
from alphaplex.identification.preprocessing import strip_flanking_residues
from alphaplex.identification.store import IdentificationStore
from alphaplex.workflow.base import ProcessingStep

logger = logging.getLogger()

DEFAULT_MARKERS = {"*": "Phospho"}


@dataclass(frozen=True)
class Site:
    """A modified residue on a reference protein, position is 1-based."""

    accession: str
    position: int
    residue: str
    modification: str


@dataclass(frozen=True)
class SiteMapping:
    """Placement of a peptide on its reference sequence."""

    accession: str
    start: int
    sites: tuple[Site, ...]
    ambiguous: bool

    @property
    def site_id(self) -> str | None:
        """Composite identifier, e.g. ``P12345-S37sT40t``. None for unmodified peptides."""
        if not self.sites:
            return None
        residues = "".join(
            f"{site.residue}{site.position}{site.residue.lower()}" for site in self.sites
        )
        return f"{self.accession}-{residues}"


def parse_modified_peptide(
    peptide: str, markers: dict[str, str] | None = None
) -> tuple[str, list[tuple[int, str]]]:
    """Separate a peptide into its plain sequence and its modified residues.

    A marker annotates the residue it follows. A marker preceding the first residue annotates the first residue.
    Characters that are neither residues nor configured markers are ignored.

    Parameters
    ----------
    peptide : str
        Peptide with in-line markers, e.g. ``VL*AAG``. Flanking residues are removed.

    markers : dict[str, str], optional
        Marker symbol to modification name, defaults to ``{"*": "Phospho"}``.

    Returns
    -------
    tuple[str, list[tuple[int, str]]]
        Plain sequence and a list of (1-based offset within the peptide, modification) pairs.
    """
    if markers is None:
        markers = DEFAULT_MARKERS

    residues = []
    modifications = []
    leading = []
    for char in strip_flanking_residues(peptide):
        if char in markers:
            if residues:
                modifications.append((len(residues), markers[char]))
            else:
                leading.append(markers[char])
        elif "A" <= char <= "Z":
            residues.append(char)

    if leading and residues:
        modifications = [(1, m) for m in leading] + modifications

    return "".join(residues), modifications


def locate_peptide(sequence: str, reference: str) -> list[int]:
    """All 0-based offsets at which `sequence` occurs in `reference`, overlapping occurrences included."""
    offsets = []
    start = reference.find(sequence)
    while start != -1 and sequence:
        offsets.append(start)
        start = reference.find(sequence, start + 1)
    return offsets


def map_peptide(
    peptide: str,
    accession: str,
    reference: str,
    markers: dict[str, str] | None = None,
) -> SiteMapping:
    """Project the modification markers of a peptide onto its reference sequence.

    If the peptide occurs more than once, the lowest offset is used and the mapping is flagged as ambiguous.

    Raises
    ------
    NoMatchError
        If the plain peptide sequence does not occur verbatim in the reference.
    """
    sequence, modifications = parse_modified_peptide(peptide, markers)
    offsets = locate_peptide(sequence, reference)
    if not offsets:
        raise NoMatchError(f"Peptide {peptide} not found in sequence of {accession}")

    start = offsets[0] + 1
    sites = []
    for offset, modification in modifications:
        position = start + offset - 1
        residue = reference[position - 1]
        if residue != sequence[offset - 1]:
            raise NoMatchError(
                f"Residue {sequence[offset - 1]}{offset} of peptide {peptide} does not match "
                f"residue {residue}{position} of {accession}"
            )
        sites.append(Site(accession, position, residue, modification))

    return SiteMapping(
        accession=accession,
        start=start,
        sites=tuple(sites),
        ambiguous=len(offsets) > 1,
    )


class SiteMapper(ProcessingStep):
    def __init__(
        self,
        sequences: dict[str, str],
        markers: dict[str, str] | None = None,
        min_ascore: float = 17.0,
        on_no_match: str = NoMatchPolicy.RAISE,
    ) -> None:
        """Annotate the active PSMs of an identification store with their modification sites.

        Every distinct (peptide, accession) pair is mapped once. PSMs whose accession has no reference sequence
        are marked unresolved instead of failing the batch.

        Parameters
        ----------
        sequences : dict[str, str]
            Reference protein sequences by accession.

        markers : dict[str, str], optional
            Marker symbol to modification name, defaults to ``{"*": "Phospho"}``.

        min_ascore : float, default 17.0
            Minimum localization score for a site to be flagged confident, if an ascore column is present.

        on_no_match : str, default "raise"
            "raise" aborts with a NoMatchError if a peptide is not found in its reference sequence,
            "flag" marks the PSM as no_match and continues.
        """
        super().__init__()
        if on_no_match not in NoMatchPolicy.get_values():
            raise ValueError(f"on_no_match must be one of {NoMatchPolicy.get_values()}")
        self.sequences = sequences
        self.markers = DEFAULT_MARKERS if markers is None else markers
        self.min_ascore = min_ascore
        self.on_no_match = on_no_match

    def validate(self, store: IdentificationStore) -> bool:
        if len(self.sequences) == 0:
            logger.error("No reference sequences provided for site mapping")
            return False
        return True

    def _map_pair(self, peptide: str, accession: str, index: int) -> dict:
        annotation = {
            SiteCols.SITE: None,
            SiteCols.START: np.nan,
            SiteCols.POSITIONS: None,
            SiteCols.RESIDUES: None,
            SiteCols.MODIFICATIONS: None,
            SiteCols.AMBIGUOUS: False,
        }

        _, modifications = parse_modified_peptide(peptide, self.markers)
        if not modifications:
            return {**annotation, SiteCols.STATUS: SiteStatus.UNMODIFIED}

        if accession not in self.sequences:
            return {**annotation, SiteCols.STATUS: SiteStatus.UNRESOLVED}

        try:
            mapping = map_peptide(peptide, accession, self.sequences[accession], self.markers)
        except NoMatchError as e:
            if self.on_no_match == NoMatchPolicy.RAISE:
                raise NoMatchError(
                    f"Peptide {peptide} not found in sequence of {accession} (row {index})"
                ) from e
            return {**annotation, SiteCols.STATUS: SiteStatus.NO_MATCH}

        return {
            SiteCols.SITE: mapping.site_id,
            SiteCols.START: mapping.start,
            SiteCols.POSITIONS: ";".join(str(s.position) for s in mapping.sites),
            SiteCols.RESIDUES: ";".join(s.residue for s in mapping.sites),
            SiteCols.MODIFICATIONS: ";".join(s.modification for s in mapping.sites),
            SiteCols.AMBIGUOUS: mapping.ambiguous,
            SiteCols.STATUS: SiteStatus.MAPPED,
        }

    def forward(self, store: IdentificationStore) -> IdentificationStore:
        active = store.active_rows()
        if len(active) == 0:
            logger.warning("No active PSMs left for site mapping")
            return store

        pairs = active.drop_duplicates(subset=[PsmCols.PEPTIDE, PsmCols.ACCESSION])

        annotations = pd.DataFrame(
            [
                {
                    PsmCols.PEPTIDE: peptide,
                    PsmCols.ACCESSION: accession,
                    **self._map_pair(peptide, accession, index),
                }
                for index, peptide, accession in zip(
                    pairs.index, pairs[PsmCols.PEPTIDE], pairs[PsmCols.ACCESSION], strict=True
                )
            ]
        )
        annotated = (
            active[[PsmCols.PEPTIDE, PsmCols.ACCESSION]]
            .reset_index()
            .merge(annotations, on=[PsmCols.PEPTIDE, PsmCols.ACCESSION], how="left")
            .set_index("index")
        )

        mapped = annotated[SiteCols.STATUS] == SiteStatus.MAPPED
        confident = mapped & ~annotated[SiteCols.AMBIGUOUS].astype(bool)
        if PsmCols.ASCORE in active.columns:
            confident &= active[PsmCols.ASCORE].reindex(annotated.index) >= self.min_ascore
        annotated[SiteCols.CONFIDENT] = confident

        for column in SiteCols.get_values():
            store.annotate(column, annotated[column])

        status_counts = annotated[SiteCols.STATUS].value_counts()
        logger.info(
            "Site mapping: "
            + ", ".join(f"{count:,} {status}" for status, count in status_counts.items())
        )

        n_ambiguous = int(annotations[SiteCols.AMBIGUOUS].sum())
        if n_ambiguous > 0:
            message = f"{n_ambiguous} peptides match their reference sequence at multiple positions, the first position is used"
            logger.warning(message)
            warnings.warn(message, AmbiguousSiteWarning, stacklevel=2)

        return store
