"""Deterministic decoders for Italian tax identifiers."""

from bustapaga.decoders.tax_ids import decode_cf, validate_company_tax_id, validate_partita_iva

__all__ = ["decode_cf", "validate_company_tax_id", "validate_partita_iva"]
