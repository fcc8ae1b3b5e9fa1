"""Reporter ion quantification.

Reporter intensities are normalized by a reference expression per plex and quant block
and aggregated into a feature by measurement matrix.
"""

from alphaplex.quant.crosstab import build_crosstab
from alphaplex.quant.reporter import ReporterIntensityTable
from alphaplex.quant.study_design import StudyDesign
