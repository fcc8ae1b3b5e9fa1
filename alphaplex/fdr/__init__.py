"""False discovery rate controlled filtering of identifications.

Thresholds on one or more score columns are searched such that the estimated FDR of
peptides or accessions stays below a target.
"""
