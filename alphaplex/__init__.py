#!python


__project__ = "alphaplex"
__version__ = "0.1.0"
__license__ = "Apache"
__description__ = "Identification filtering and reporter ion quantification for isobaric labeling studies"
__author__ = "Mann Labs"
__author_email__ = "opensource@alphapept.com"
__keywords__ = [
    "bioinformatics",
    "proteomics",
    "TMT",
    "iTRAQ",
]
__python_version__ = ">=3.10"
