"""Candidate extraction and semantic gating."""
