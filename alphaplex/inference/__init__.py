"""Parsimonious assignment of shared peptides to accessions."""
