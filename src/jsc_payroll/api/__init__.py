"""HTTP API for the JSC payroll engine."""
