"""Update-site reconciliation engine."""
