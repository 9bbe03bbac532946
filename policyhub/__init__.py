"""Group insurance quotation and underwriting interception service."""
